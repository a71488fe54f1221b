"""Tests for btbsim.distributions — frequency tables and samplers."""

import numpy as np
import pytest

from btbsim.distributions import IntegerDistribution, hypergeometric, select_many


# ── IntegerDistribution tests ────────────────────────────────────────

class TestIntegerDistribution:
    def test_from_values(self):
        d = IntegerDistribution.from_values([1, 1, 3])
        assert d.frequency(1) == 2
        assert d.frequency(3) == 1
        assert d.frequency(2) == 0
        assert d.total() == 3

    def test_bins_sorted(self):
        d = IntegerDistribution({5: 1, 2: 3, 9: 0})
        assert d.bins() == [2, 5, 9]

    def test_negative_frequency_rejected(self):
        with pytest.raises(ValueError, match="Negative"):
            IntegerDistribution({1: -1})

    def test_merge(self):
        a = IntegerDistribution({1: 2})
        a.merge(IntegerDistribution({1: 1, 4: 5}))
        assert a == IntegerDistribution({1: 3, 4: 5})

    def test_equality_ignores_empty_bins(self):
        assert IntegerDistribution({1: 2, 3: 0}) == IntegerDistribution({1: 2})

    def test_filtered(self):
        d = IntegerDistribution({1: 1, 5: 2, 10: 3})
        assert d.filtered(5) == IntegerDistribution({1: 1, 5: 2})
        # the original is untouched
        assert d.frequency(10) == 3

    def test_restricted_to(self):
        d = IntegerDistribution({0: 4, 1: 2, 7: 1})
        r = d.restricted_to([1, 2])
        assert r.bins() == [1, 2]
        assert r.frequency(2) == 0
        assert r.total() == 2

    def test_mean(self):
        assert IntegerDistribution({2: 1, 4: 1}).mean() == 3.0
        assert IntegerDistribution().mean() == 0.0

    def test_to_text(self):
        assert IntegerDistribution({3: 1, 1: 2}).to_text() == "1:2\n3:1"


class TestRandomBin:
    def test_empty_table_samples_zero(self):
        assert IntegerDistribution().random_bin(np.random.default_rng(0)) == 0

    def test_single_bin(self):
        rng = np.random.default_rng(1)
        d = IntegerDistribution({7: 3})
        assert all(d.random_bin(rng) == 7 for _ in range(20))

    def test_zero_frequency_bin_never_drawn(self):
        rng = np.random.default_rng(2)
        d = IntegerDistribution({1: 5, 2: 0, 3: 5})
        draws = {d.random_bin(rng) for _ in range(500)}
        assert draws == {1, 3}

    def test_proportional_to_frequency(self):
        rng = np.random.default_rng(3)
        d = IntegerDistribution({1: 1, 2: 3})
        draws = np.array([d.random_bin(rng) for _ in range(20_000)])
        assert abs(np.mean(draws == 2) - 0.75) < 0.02


class TestNormalised:
    def test_sums_exactly_to_n(self):
        d = IntegerDistribution({0: 1, 1: 1, 2: 1})
        for n in (1, 2, 7, 10, 101):
            assert d.normalised(n).total() == n

    def test_proportions_kept(self):
        d = IntegerDistribution({0: 10, 1: 30})
        assert d.normalised(8) == IntegerDistribution({0: 2, 1: 6})

    def test_largest_remainder(self):
        # exact shares 1.2, 1.8 → floors 1, 1 → the leftover goes to bin 1
        d = IntegerDistribution({0: 2, 1: 3})
        r = d.normalised(3)
        assert r.frequency(0) == 1
        assert r.frequency(1) == 2

    def test_empty_stays_empty(self):
        d = IntegerDistribution({0: 0, 1: 0})
        assert d.normalised(5).total() == 0


# ── sampler tests ────────────────────────────────────────────────────

class TestHypergeometric:
    def test_no_batch_or_no_infected(self):
        rng = np.random.default_rng(0)
        assert hypergeometric(rng, 10, 0, 5) == 0
        assert hypergeometric(rng, 10, 5, 0) == 0

    def test_whole_unit_moves_every_infected(self):
        rng = np.random.default_rng(0)
        assert hypergeometric(rng, 10, 10, 4) == 4

    def test_ill_posed(self):
        rng = np.random.default_rng(0)
        with pytest.raises(ValueError, match="ill-posed"):
            hypergeometric(rng, 5, 3, 6)
        with pytest.raises(ValueError, match="ill-posed"):
            hypergeometric(rng, 5, 6, 1)

    def test_zero_infected_probability(self):
        """Batch of 2 from 5 animals, 2 infected: P(0 infected) = C(3,2)/C(5,2) = 0.3."""
        rng = np.random.default_rng(11)
        draws = np.array([hypergeometric(rng, 5, 2, 2) for _ in range(20_000)])
        assert abs(np.mean(draws == 0) - 0.3) < 0.015
        assert draws.max() <= 2


class TestSelectMany:
    def test_distinct(self):
        rng = np.random.default_rng(0)
        chosen = select_many(rng, list(range(20)), 8)
        assert len(chosen) == 8
        assert len(set(chosen)) == 8

    def test_k_capped_at_population(self):
        rng = np.random.default_rng(0)
        assert sorted(select_many(rng, ['a', 'b'], 5)) == ['a', 'b']

    def test_zero(self):
        rng = np.random.default_rng(0)
        assert select_many(rng, ['a', 'b'], 0) == []
        assert select_many(rng, [], 3) == []

"""Transmission tree and observed-tree pruning.

The tree is a networkx DiGraph keyed on animal id; every vertex carries its
TransmissionNode under the 'node' attribute. Edges run infector → infectee.
Every non-root vertex has exactly one parent, so the graph is a forest
hanging off the synthetic ROOT.

The observed tree is a pruned copy: vertices whose animal was not sampled
and sequenced are removed, and each removed vertex's children are joined to
its parent. The forest shape survives any removal order.
"""

from __future__ import annotations

import dataclasses
import itertools
import logging
from typing import Iterator, List, Mapping, Optional

import networkx as nx
import numpy as np

from .config import calendar_year
from .distributions import IntegerDistribution
from .genetics import snp_distance
from .types import ROOT_ID, SimulationInvariantError, TransmissionNode

logger = logging.getLogger(__name__)


class TransmissionTree:
    """Who-infected-whom forest rooted at ROOT."""

    def __init__(self, graph: Optional[nx.DiGraph] = None):
        if graph is None:
            graph = nx.DiGraph()
            graph.add_node(ROOT_ID, node=TransmissionNode(ROOT_ID, ROOT_ID, is_cow=False))
        self.graph = graph

    # ── construction ────────────────────────────────────────────────

    def add_infection(self, parent_id: str, node: TransmissionNode) -> None:
        """Add `node` as a child of `parent_id` (ROOT for seeded animals)."""
        if parent_id not in self.graph:
            raise SimulationInvariantError(
                f"Infector {parent_id} of {node.id} is not in the transmission tree"
            )
        if node.id in self.graph:
            raise SimulationInvariantError(
                f"{node.id} is already in the transmission tree"
            )
        self.graph.add_node(node.id, node=node)
        self.graph.add_edge(parent_id, node.id)

    def set_detection_date(self, animal_id: str, date: int) -> None:
        node = self.node(animal_id)
        if node.detection_date is None:
            node.detection_date = date

    # ── queries ─────────────────────────────────────────────────────

    def node(self, animal_id: str) -> TransmissionNode:
        return self.graph.nodes[animal_id]['node']

    def nodes(self) -> List[TransmissionNode]:
        return [data['node'] for _, data in self.graph.nodes(data=True)]

    def parent(self, animal_id: str) -> Optional[str]:
        preds = list(self.graph.predecessors(animal_id))
        return preds[0] if preds else None

    def __contains__(self, animal_id: str) -> bool:
        return animal_id in self.graph

    def __len__(self) -> int:
        return self.graph.number_of_nodes()

    def __iter__(self) -> Iterator[str]:
        return iter(self.graph.nodes)

    def is_forest(self) -> bool:
        """Every non-root vertex has one parent and is reachable from ROOT."""
        if not nx.is_directed_acyclic_graph(self.graph):
            return False
        for v in self.graph.nodes:
            if v != ROOT_ID and self.graph.in_degree(v) != 1:
                return False
        reachable = nx.descendants(self.graph, ROOT_ID) | {ROOT_ID}
        return reachable == set(self.graph.nodes)

    def copy(self) -> 'TransmissionTree':
        """Independent copy; vertex payloads are copied too."""
        graph = nx.DiGraph()
        for v, data in self.graph.nodes(data=True):
            graph.add_node(v, node=dataclasses.replace(data['node']))
        graph.add_edges_from(self.graph.edges)
        return TransmissionTree(graph)

    # ── mutation ────────────────────────────────────────────────────

    def collapse(self, animal_id: str) -> None:
        """Remove a vertex, joining each of its parents to each of its children."""
        if animal_id == ROOT_ID:
            raise SimulationInvariantError("ROOT cannot be removed from the tree")
        parents = list(self.graph.predecessors(animal_id))
        children = list(self.graph.successors(animal_id))
        for p in parents:
            for c in children:
                self.graph.add_edge(p, c)
        self.graph.remove_node(animal_id)


# ═══════════════════════════════════════════════════════════════════════
# OBSERVED TREE
# ═══════════════════════════════════════════════════════════════════════

def sampling_probability(
    node: TransmissionNode,
    cattle_rates: Mapping[int, float],
    badger_rates: Mapping[int, float],
    zero_date: str,
) -> float:
    """Probability that a detected animal is sequenced (0 if never detected)."""
    if node.detection_date is None:
        return 0.0
    year = calendar_year(node.detection_date, zero_date)
    rates = cattle_rates if node.is_cow else badger_rates
    return float(rates.get(year, 0.0))


def prune_observed_tree(
    tree: TransmissionTree,
    cattle_rates: Mapping[int, float],
    badger_rates: Mapping[int, float],
    zero_date: str,
    rng: np.random.Generator,
) -> TransmissionTree:
    """Copy of `tree` keeping ROOT and the sampled vertices only.

    Each detected vertex survives with its species' sampling rate for the
    year of detection; undetected vertices never survive.
    """
    observed = tree.copy()
    for animal_id in list(tree):
        if animal_id == ROOT_ID:
            continue
        node = tree.node(animal_id)
        p = sampling_probability(node, cattle_rates, badger_rates, zero_date)
        if p > 0 and rng.random() < p:
            continue
        observed.collapse(animal_id)
    logger.debug(
        "Observed tree keeps %d of %d vertices", len(observed), len(tree)
    )
    return observed


def pairwise_distances(tree: TransmissionTree) -> IntegerDistribution:
    """Distribution of SNP distances over all unordered vertex pairs."""
    nodes = tree.nodes()
    dist = IntegerDistribution()
    for a, b in itertools.combinations(nodes, 2):
        dist.add(snp_distance(a.snps, b.snps))
    return dist


def merge_edge_counts(
    merged: nx.DiGraph,
    tree: TransmissionTree,
) -> None:
    """Add one to the 'weight' of every edge of `tree` in `merged`."""
    for u, v in tree.graph.edges:
        if merged.has_edge(u, v):
            merged[u][v]['weight'] += 1
        else:
            merged.add_edge(u, v, weight=1)


def edge_list_lines(graph: nx.DiGraph, weighted: bool = False) -> List[str]:
    """Edge list as 'source target[ weight]' lines."""
    data: object = ['weight'] if weighted else False
    return list(nx.generate_edgelist(graph, delimiter=' ', data=data))

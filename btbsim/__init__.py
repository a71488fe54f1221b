"""btbsim: bovine tuberculosis spread between cattle herds and badger reservoirs.

A stochastic, tau-leaping simulation over a static farm ↔ reservoir contact
network, with:
  - S→E→T→I disease progression in cattle, a single infectious state in badgers
  - Empirical cattle and badger movements with pre-movement testing
  - Whole-herd testing, movement restriction and abattoir surveillance
  - Infinite-alleles SNP accumulation along the transmission tree
  - Multinomial scoring of simulated SNP distances against observed data
"""

__version__ = "0.1.0"

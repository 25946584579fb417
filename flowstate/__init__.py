"""
flowstate: state and metrics resolution for discrete-time flow simulation runs.

Reconstructs per-bin and per-window views of every node and edge of a run
from its topology and recorded series, filling gaps with derivation rules
and annotating data-quality problems with warnings.
"""

__version__ = "1.0.0"

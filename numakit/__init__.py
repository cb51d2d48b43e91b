"""NUMA topology, node and CPU mask parsing, IO affinity, graph kernels and a Mersenne twister."""

__version__ = "0.1.0"
__all__ = [
    "affinity",
    "bitmask",
    "distance",
    "kernels",
    "mt",
    "nodestring",
    "topology",
]
"""Node distance table read from sysfs."""

from __future__ import annotations

import re
import warnings

from numakit.bitmask import Bitmask
from numakit.topology import NODE_DIR, NumaTopology, NumaWarning

_NUMBER = re.compile(r"\s*([+-]?)(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*)")


def _to_int(text: str) -> int:
    if text[:2] in ("0x", "0X"):
        return int(text, 16)
    if len(text) > 1 and text[0] == "0":
        return int(text, 8)
    return int(text)


def parse_numbers(line: str, nodes: Bitmask, maxnode: int) -> list[int]:
    """Parse one distance row, placing values at the configured nodes only.

    Returns a list of ``maxnode + 1`` entries; slots for absent nodes stay 0.
    """
    row = [0] * (maxnode + 1)
    pos = 0
    j = 0
    for _ in range(maxnode + 1):
        match = _NUMBER.match(line, pos)
        while j <= maxnode and not nodes.isbitset(j):
            j += 1
        if match is None:
            break
        value = _to_int(match.group(2))
        if match.group(1) == "-":
            value = -value
        if j <= maxnode:
            row[j] = value
        pos = match.end()
        j += 1
    return row


class DistanceTable:
    """Lazily loaded matrix of distances between nodes."""

    def __init__(self, topology: NumaTopology) -> None:
        self._topology = topology
        self._table: list[list[int]] | None = None

    def _load(self) -> list[list[int]] | None:
        size = self._topology.max_node() + 1
        nodes = self._topology.nodes
        node_dir = self._topology.sysfs_root / NODE_DIR
        rows: list[list[int]] | None = None
        ok = False
        reason = "no distance data"
        nd = 0
        while True:
            try:
                with open(node_dir / f"node{nd}" / "distance", encoding="ascii") as fh:
                    line = fh.readline()
            except OSError as exc:
                if isinstance(exc, FileNotFoundError):
                    ok = True
                reason = exc.strerror or str(exc)
                if ok and nd < size:
                    nd += 1
                    continue
                break
            if not line:
                break
            if rows is None:
                rows = [[0] * size for _ in range(size)]
            if nd < size:
                rows[nd] = parse_numbers(line, nodes, size - 1)
            nd += 1

        if not ok:
            warnings.warn(
                f"Cannot parse distance information in sysfs: {reason}",
                NumaWarning,
                stacklevel=3,
            )
            return None
        return rows

    def distance(self, a: int, b: int) -> int:
        """Distance from node ``a`` to node ``b``; 0 when unknown."""
        if self._table is None:
            self._table = self._load()
            if self._table is None:
                return 0
        size = len(self._table)
        if not (0 <= a < size and 0 <= b < size):
            return 0
        return self._table[a][b]
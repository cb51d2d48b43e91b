"""Parse node and CPU list strings such as ``1,3,5-7``, ``+0-2``, ``!4`` or ``all``."""

from __future__ import annotations

import re
import string

from numakit.affinity import AffinityError, resolve_affinity
from numakit.bitmask import Bitmask
from numakit.topology import NumaTopology

_NUMBER = re.compile(r"\s*([+-]?)(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*)")


class ParseError(ValueError):
    """A node or CPU list string could not be turned into a mask."""


def _to_int(text: str) -> int:
    if text[:2] in ("0x", "0X"):
        return int(text, 16)
    if len(text) > 1 and text[0] == "0":
        return int(text, 8)
    return int(text)


def _get_nr(s: str, pos: int, allowed: Bitmask, relative: bool) -> tuple[int, int] | None:
    """Read a number at ``pos``; return it with the position after it, or None.

    In relative mode the number selects the n-th set bit of ``allowed``;
    a number past the last set bit maps to an index outside the mask.
    """
    match = _NUMBER.match(s, pos)
    if match is None:
        return None
    value = _to_int(match.group(2))
    if match.group(1) == "-" and value:
        value = -value
    if relative and value >= 0:
        members = list(allowed)
        value = members[value] if value < len(members) else len(allowed)
    return value, match.end()


def _parse_list(
    s: str,
    *,
    mask: Bitmask,
    allowed: Bitmask,
    conf_count: int,
    kind: str,
    sysfs_root=None,
) -> Bitmask:
    if not s:
        return mask

    pos = 0
    invert = s.startswith("!")
    if invert:
        pos += 1
    relative = s.startswith("+", pos)
    if relative:
        pos += 1

    while True:
        rest = s[pos:]
        if rest == "all":
            mask.copy_from(allowed)
            break
        if sysfs_root is not None and rest[:1] and rest[0] in string.ascii_letters:
            try:
                resolved = resolve_affinity(rest, mask, sysfs_root)
            except AffinityError as exc:
                raise ParseError(str(exc)) from exc
            if resolved:
                break

        first = _get_nr(s, pos, allowed, relative)
        if first is None:
            raise ParseError(f"unparseable {kind} description `{rest}'")
        arg, pos = first
        if not allowed.isbitset(arg):
            raise ParseError(f"{kind} argument {arg} is out of range")
        mask.setbit(arg)

        if s.startswith("-", pos):
            pos += 1
            second = _get_nr(s, pos, allowed, relative)
            if second is None:
                raise ParseError(f"missing {kind} argument {s[pos:]}")
            arg2, pos = second
            if not allowed.isbitset(arg2):
                raise ParseError(f"{kind} argument {arg2} out of range")
            for i in range(arg, arg2 + 1):
                if allowed.isbitset(i):
                    mask.setbit(i)

        if s.startswith(",", pos):
            pos += 1
            continue
        if pos != len(s):
            raise ParseError(f"unparseable {kind} description `{s[pos:]}'")
        break

    if invert:
        for i in range(conf_count):
            if mask.isbitset(i):
                mask.clearbit(i)
            else:
                mask.setbit(i)
    return mask


def _parse_nodes(s: str, topology: NumaTopology, allowed: Bitmask) -> Bitmask:
    return _parse_list(
        s,
        mask=topology.allocate_nodemask(),
        allowed=allowed,
        conf_count=topology.num_configured_nodes(),
        kind="node",
        sysfs_root=topology.sysfs_root,
    )


def _parse_cpus(s: str, topology: NumaTopology, allowed: Bitmask) -> Bitmask:
    return _parse_list(
        s,
        mask=topology.allocate_cpumask(),
        allowed=allowed,
        conf_count=topology.num_configured_cpus(),
        kind="cpu",
    )


def parse_nodestring(s: str, topology: NumaTopology) -> Bitmask:
    """Node mask from ``s``, limited to the nodes this task may use."""
    return _parse_nodes(s, topology, topology.all_nodes)


def parse_nodestring_all(s: str, topology: NumaTopology) -> Bitmask:
    """Node mask from ``s``, limited to the nodes present in the system."""
    return _parse_nodes(s, topology, topology.possible_nodes)


def parse_cpustring(s: str, topology: NumaTopology) -> Bitmask:
    """CPU mask from ``s``, limited to the CPUs this task may use."""
    return _parse_cpus(s, topology, topology.all_cpus)


def parse_cpustring_all(s: str, topology: NumaTopology) -> Bitmask:
    """CPU mask from ``s``, limited to the CPUs present in the system."""
    return _parse_cpus(s, topology, topology.possible_cpus)
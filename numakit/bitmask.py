"""Fixed-size bit sets used for node and CPU masks, plus the kernel text formats."""

from __future__ import annotations

import itertools
import re
from collections.abc import Iterator

BITS_PER_LONG = 64
BITS_PER_INT = 32
_BYTES_PER_LONG = BITS_PER_LONG // 8
_ULONG_MAX = (1 << BITS_PER_LONG) - 1
_UINT_MASK = (1 << BITS_PER_INT) - 1
_HEX_FIELD = re.compile(r"[0-9a-fA-F]+")


def _longs_for_bits(nbits: int) -> int:
    return (nbits + BITS_PER_LONG - 1) // BITS_PER_LONG


class Bitmask:
    """A bit set of fixed size; bits outside the size are silently ignored."""

    __slots__ = ("_size", "_bits")

    def __init__(self, size: int) -> None:
        if size < 1:
            raise ValueError(f"request to allocate mask for invalid number {size}")
        self._size = size
        self._bits = 0

    def _assign(self, value: int) -> None:
        self._bits = value & ((1 << self._size) - 1)

    def isbitset(self, i: int) -> bool:
        """Return whether bit ``i`` is set; out-of-range bits read as clear."""
        return 0 <= i < self._size and bool((self._bits >> i) & 1)

    def setbit(self, i: int) -> Bitmask:
        if 0 <= i < self._size:
            self._bits |= 1 << i
        return self

    def clearbit(self, i: int) -> Bitmask:
        if 0 <= i < self._size:
            self._bits &= ~(1 << i)
        return self

    def setall(self) -> Bitmask:
        self._bits = (1 << self._size) - 1
        return self

    def clearall(self) -> Bitmask:
        self._bits = 0
        return self

    def weight(self) -> int:
        """Number of set bits."""
        return bin(self._bits).count("1")

    def nbytes(self) -> int:
        """Size of the mask storage in bytes, rounded up to whole longs."""
        return _longs_for_bits(self._size) * _BYTES_PER_LONG

    def copy_from(self, other: Bitmask) -> Bitmask:
        """Copy the bits of ``other``, truncating or zero-filling to this size."""
        self._assign(other._bits)
        return self

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Bitmask):
            return NotImplemented
        return self._bits == other._bits

    __hash__ = None  # type: ignore[assignment]

    def __iter__(self) -> Iterator[int]:
        bits = self._bits
        while bits:
            lowest = bits & -bits
            yield lowest.bit_length() - 1
            bits ^= lowest

    def __len__(self) -> int:
        return self._size

    def __repr__(self) -> str:
        return f"Bitmask(size={self._size}, bits={list(self)})"


def parse_bitmap(line: str, size: int) -> Bitmask:
    """Parse a kernel cpumap line such as ``"00000000,0000000f\\n"``.

    Comma-separated 32-bit hex fields are read from the right, two at a
    time, into 64-bit words.  Raises ValueError on malformed input or when
    the line holds more words than a mask of ``size`` bits.
    """
    newline = line.find("\n")
    if newline < 0:
        raise ValueError("bitmap line is not newline-terminated")
    mask = Bitmask(size)
    body = line[:newline]
    if not body:
        return mask

    fields = body.split(",")
    limit = _longs_for_bits(size)
    value = 0
    for word in itertools.count():
        if not fields:
            break
        if word >= limit:
            raise ValueError(f"bitmap {body!r} does not fit in {size} bits")
        chunk = fields[-2:]
        del fields[-2:]
        if not all(_HEX_FIELD.fullmatch(field) for field in chunk):
            raise ValueError(f"cannot parse bitmap {body!r}")
        value |= min(int("".join(chunk), 16), _ULONG_MAX) << (BITS_PER_LONG * word)
    mask._assign(value)
    return mask


def read_mask(text: str, size: int) -> Bitmask:
    """Parse a ``/proc/<pid>/status`` style mask, highest 32-bit field first.

    Leading zero fields are skipped; an all-zero mask yields an empty
    Bitmask.  Raises ValueError if the text is not hex or holds more
    significant fields than fit in ``size`` bits.
    """
    mask = Bitmask(size)
    stripped = text.strip()
    if not stripped:
        return mask
    try:
        values = [int(part, 16) & _UINT_MASK for part in stripped.split(",")]
    except ValueError:
        raise ValueError(f"cannot parse mask {stripped!r}") from None

    significant = list(itertools.dropwhile(lambda v: v == 0, values))
    if not significant:
        return mask
    capacity = (size + BITS_PER_INT - 1) // BITS_PER_INT
    if len(significant) > capacity:
        raise ValueError(f"mask {stripped!r} does not fit in {size} bits")

    value = 0
    for field in significant:
        value = (value << BITS_PER_INT) | field
    mask._assign(value)
    return mask
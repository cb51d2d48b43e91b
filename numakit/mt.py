"""A 32-bit Mersenne twister seeded from the C library's ``rand()`` stream."""

from __future__ import annotations

MT_LEN = 624
_MT_IA = 397
_UPPER_MASK = 0x80000000
_LOWER_MASK = 0x7FFFFFFF
_MATRIX_A = 0x9908B0DF
_MASK32 = 0xFFFFFFFF

_RAND_DEGREE = 31
_RAND_SEP = 3
_RAND_DISCARD = 310


def glibc_rand_sequence(seed: int, count: int) -> list[int]:
    """Return the first ``count`` values of ``rand()`` after ``srand(seed)``.

    Reproduces the additive feedback generator of the GNU C library.
    """
    if count < 0:
        raise ValueError("count must not be negative")
    seed &= _MASK32
    if seed == 0:
        seed = 1
    word = seed - (1 << 32) if seed & 0x80000000 else seed

    state = [word]
    for _ in range(_RAND_DEGREE - 1):
        quotient = abs(word) // 127773
        hi = quotient if word >= 0 else -quotient
        lo = word - hi * 127773
        word = 16807 * lo - 2836 * hi
        if word < 0:
            word += 2147483647
        state.append(word)

    state = [value & _MASK32 for value in state]
    state += state[:_RAND_SEP]
    first = len(state) + _RAND_DISCARD
    while len(state) < first + count:
        state.append((state[-_RAND_DEGREE] + state[-_RAND_SEP]) & _MASK32)
    return [value >> 1 for value in state[first:]]


class MersenneTwister:
    """Deterministic generator: the initial buffer is ``rand()`` after ``srand(1)``."""

    def __init__(self) -> None:
        self._buffer = glibc_rand_sequence(1, MT_LEN)
        self._index = 0

    def refill(self) -> None:
        """Twist the whole buffer and restart from its beginning."""
        b = self._buffer
        for i in range(MT_LEN):
            s = (b[i] & _UPPER_MASK) | (b[(i + 1) % MT_LEN] & _LOWER_MASK)
            magic = _MATRIX_A if s & 1 else 0
            b[i] = b[(i + _MT_IA) % MT_LEN] ^ (s >> 1) ^ magic
        self._index = 0

    def random(self) -> int:
        """Return the next 32-bit value, refilling when the buffer is used up."""
        if self._index == MT_LEN:
            self.refill()
        value = self._buffer[self._index]
        self._index += 1
        return value
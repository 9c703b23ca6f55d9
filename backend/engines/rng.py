"""
DeterministicRandom — reproducible shuffles and offsets from a string seed.

FNV-1a (32-bit) turns the seed string into the initial state, xorshift32
advances it. No module-level generator exists: every caller builds its own
instance from an explicit seed (room id + purpose/round), so the same seed and
input always give the same result on every peer.
"""
from typing import List, Sequence, TypeVar

T = TypeVar("T")

_MASK = 0xFFFFFFFF
_FNV_OFFSET = 2166136261
_FNV_PRIME = 16777619
# xorshift32 is stuck at zero; any fixed non-zero constant works as a fallback
_ZERO_STATE_FALLBACK = 0x9E3779B9


def fnv1a_32(text: str) -> int:
    h = _FNV_OFFSET
    for byte in text.encode("utf-8"):
        h ^= byte
        h = (h * _FNV_PRIME) & _MASK
    return h


class DeterministicRandom:
    def __init__(self, seed: str):
        self.seed = seed
        self._state = fnv1a_32(seed) or _ZERO_STATE_FALLBACK

    def next_u32(self) -> int:
        x = self._state
        x ^= (x << 13) & _MASK
        x ^= x >> 17
        x ^= (x << 5) & _MASK
        self._state = x
        return x

    def below(self, n: int) -> int:
        """Uniform-ish integer in [0, n)."""
        if n <= 0:
            raise ValueError("n must be positive")
        return self.next_u32() % n

    def shuffle(self, items: Sequence[T]) -> List[T]:
        """Fisher-Yates over a copy; the input is never touched."""
        out = list(items)
        for i in range(len(out) - 1, 0, -1):
            j = self.below(i + 1)
            out[i], out[j] = out[j], out[i]
        return out


def deterministic_shuffle(items: Sequence[T], seed: str) -> List[T]:
    return DeterministicRandom(seed).shuffle(items)


def stable_offset(seed: str, modulo: int) -> int:
    """Offset in [0, modulo) derived from the seed alone (no generator state)."""
    return fnv1a_32(seed) % modulo

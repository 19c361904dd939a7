"""
Random Source — seeded, cryptographic-strength shuffle/choice primitives.

Draws and coin tosses never use a process-wide generator. A RandomSource is
created from a seed (fresh from `secrets` when not supplied) and expands it
with HMAC-SHA256 in counter mode, so the same seed always replays the same
sequence while an unknown seed stays unpredictable.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import List, Optional, Sequence, TypeVar

T = TypeVar("T")

DRAW_SEED_BYTES = 16
_U64 = 1 << 64


def generate_draw_seed() -> str:
    """Return a 16-byte hex seed for audit trails."""
    return secrets.token_hex(DRAW_SEED_BYTES)


class RandomSource:
    """Deterministic random stream derived from a seed string."""

    def __init__(self, seed: Optional[str] = None):
        if seed is None:
            seed = generate_draw_seed()
        if not isinstance(seed, str) or not seed.strip():
            raise ValueError("seed must be a non-empty string")
        self.seed = seed
        self._key = seed.encode("utf-8")
        self._counter = 0

    def _next_u64(self) -> int:
        block = hmac.new(self._key, self._counter.to_bytes(8, "big"), hashlib.sha256).digest()
        self._counter += 1
        return int.from_bytes(block[:8], "big")

    def randbelow(self, n: int) -> int:
        """Uniform integer in [0, n). Rejection sampling keeps it unbiased."""
        if n <= 0:
            raise ValueError(f"randbelow requires n > 0, got {n}")
        limit = _U64 - (_U64 % n)
        while True:
            value = self._next_u64()
            if value < limit:
                return value % n

    def shuffle(self, items: Sequence[T]) -> List[T]:
        """Fisher-Yates shuffle. Returns a new list; input is untouched."""
        shuffled = list(items)
        for i in range(len(shuffled) - 1, 0, -1):
            j = self.randbelow(i + 1)
            shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
        return shuffled

    def choice(self, items: Sequence[T]) -> T:
        if not items:
            raise ValueError("choice from empty sequence")
        return items[self.randbelow(len(items))]

    def coin_flip(self) -> int:
        """Return 0 or 1."""
        return self.randbelow(2)


@dataclass
class CoinToss:
    winner_id: int
    loser_id: int
    seed: str


def coin_toss(team_a_id: int, team_b_id: int, source: Optional[RandomSource] = None) -> CoinToss:
    """Pick the side-selection winner of a match."""
    source = source or RandomSource()
    if source.coin_flip() == 0:
        return CoinToss(winner_id=team_a_id, loser_id=team_b_id, seed=source.seed)
    return CoinToss(winner_id=team_b_id, loser_id=team_a_id, seed=source.seed)

"""Random sources used by the roll helpers."""

from __future__ import annotations

import secrets
from abc import ABC, abstractmethod

_RESOLUTION = 2 ** 32


class RandomSource(ABC):
    """Interface for the randomness consumed by rarity and item selection."""

    @abstractmethod
    def random(self) -> float:
        """Return a uniform value in ``[0, 1)``."""

    def randbelow(self, upper: int) -> int:
        """Return a uniform integer in ``[0, upper)``."""
        if upper <= 0:
            raise ValueError("upper must be positive")
        return min(int(self.random() * upper), upper - 1)


class SecureRandom(RandomSource):
    """Cryptographically strong source backed by :mod:`secrets`."""

    def random(self) -> float:
        return secrets.randbelow(_RESOLUTION) / _RESOLUTION

    def randbelow(self, upper: int) -> int:
        if upper <= 0:
            raise ValueError("upper must be positive")
        return secrets.randbelow(upper)


__all__ = ["RandomSource", "SecureRandom"]

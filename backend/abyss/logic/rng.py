"""Injected randomness sources for grid draws and instant-loss rolls."""
import random
import secrets
from abc import ABC, abstractmethod


class RNGBase(ABC):
    """Abstract random source."""

    @abstractmethod
    def random(self) -> float:
        """Return random float in [0, 1)."""
        pass

    @abstractmethod
    def randint(self, a: int, b: int) -> int:
        """Return random int in [a, b] inclusive."""
        pass


class ProductionRNG(RNGBase):
    """
    Authoritative RNG for server and ledger paths.

    Uses cryptographically secure source, no fixed seed.
    """

    def random(self) -> float:
        return secrets.randbelow(2**53) / (2**53)

    def randint(self, a: int, b: int) -> int:
        return secrets.randbelow(b - a + 1) + a


class PreviewRNG(RNGBase):
    """
    Non-authoritative RNG for optimistic client previews.

    Backed by the Mersenne Twister; never use where an outcome settles.
    """

    def __init__(self):
        self._rng = random.Random()

    def random(self) -> float:
        return self._rng.random()

    def randint(self, a: int, b: int) -> int:
        return self._rng.randint(a, b)


class SeededRNG(RNGBase):
    """
    Test/Simulation RNG.

    Deterministic, fully controlled by seed.
    Must log seed and content_hash for reproducibility.
    """

    def __init__(self, seed: int):
        self._rng = random.Random(seed)
        self.seed = seed

    def random(self) -> float:
        return self._rng.random()

    def randint(self, a: int, b: int) -> int:
        return self._rng.randint(a, b)

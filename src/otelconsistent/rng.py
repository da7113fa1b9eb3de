from __future__ import annotations

import random
import threading
from abc import ABC, abstractmethod
from typing import Optional, Union

from otelconsistent.threshold import MAX_R

_LONG_BITS = 64
_LONG_MASK = (1 << _LONG_BITS) - 1


class RandomSource(ABC):
    """Supplier of uniformly distributed unsigned 64-bit integers.

    Implementations must tolerate concurrent calls from multiple threads.
    """

    @abstractmethod
    def next_long(self) -> int:
        pass


class DefaultRandomSource(RandomSource):
    def __init__(self, seed: Optional[int] = None):
        # Random.getrandbits runs under the GIL, so one instance can be shared across threads
        self._random = random.Random(seed)

    def next_long(self) -> int:
        return self._random.getrandbits(_LONG_BITS)


class _RandomBits(threading.local):
    def __init__(self):
        self.bits = 0
        self.count = 0


class RandomGenerator:
    """Draws booleans and geometric counts from a RandomSource, one bit at a time.

    Each thread buffers its own 64-bit word, so threads never share or
    correlate random bits.
    """

    def __init__(self, source: RandomSource):
        if source is None:
            raise ValueError("random source must not be None")
        self._source = source
        self._local = _RandomBits()

    def _next_bit(self) -> bool:
        local = self._local
        offset = local.count & (_LONG_BITS - 1)
        if offset == 0:
            local.bits = self._source.next_long() & _LONG_MASK
        local.count += 1
        return (local.bits >> offset) & 1 == 1

    def next_boolean(self, probability: float) -> bool:
        """Return True with the given probability.

        If the probability is above 1/2, True can be returned with
        probability 1/2, and otherwise the result of a trial with probability
        ``2 * probability - 1``. Below 1/2, False is returned with probability
        1/2, and otherwise the result of a trial with probability
        ``2 * probability``. Repeating this needs two random bits on average.
        """
        while True:
            if probability <= 0.0:
                return False
            if probability >= 1.0:
                return True
            above_half = probability > 0.5
            if self._next_bit():
                return above_half
            probability += probability
            if above_half:
                probability -= 1.0

    def number_of_leading_ones(self) -> int:
        """Return the number of consecutive 1-bits drawn before the first 0-bit, at most 64."""
        count = 0
        while count < _LONG_BITS and self._next_bit():
            count += 1
        return count

    def next_r(self) -> int:
        """Return a fresh r-value with ``P(r >= p) == 2**-p``."""
        return min(self.number_of_leading_ones(), MAX_R)


_default_generator = RandomGenerator(DefaultRandomSource())


def get_default() -> RandomGenerator:
    return _default_generator


def as_generator(source_or_generator: Union[RandomGenerator, RandomSource, None]) -> RandomGenerator:
    """Return a RandomGenerator for ``source_or_generator``.

    A RandomSource is wrapped in a new RandomGenerator, None selects the
    shared default generator.
    """
    if source_or_generator is None:
        return get_default()
    if isinstance(source_or_generator, RandomSource):
        return RandomGenerator(source_or_generator)
    return source_or_generator

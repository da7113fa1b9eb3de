"""Consistent sampling limited to a target number of sampled spans per second.

The span rate is estimated with exponential smoothing on irregularly spaced
data (compare Wright, David J. "Forecasting data published at irregular time
intervals using an extension of Holt's method." Management Science 32.4
(1986): 499-510). The smoothed number of spans and the smoothed elapsed time
both decay by ``exp(-dt / adaptation_time)``, so the estimate forgets load
older than a few adaptation times.
"""

from __future__ import annotations

import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

from otelconsistent.sampler import ConsistentSampler
from otelconsistent.threshold import MAX_P, unbiased_rounded_p

if TYPE_CHECKING:
    from otelconsistent.rng import RandomGenerator, RandomSource

_NANOS_PER_SECOND = 1e9


class Clock(ABC):
    @abstractmethod
    def nanotime(self) -> int:
        pass


class MonotonicClock(Clock):
    def nanotime(self) -> int:
        return time.monotonic_ns()


@dataclass(frozen=True)
class _ControllerState:
    window_count: float
    window_nanos: float
    last_nanos: int


class RateLimitingController:
    """Tracks the incoming span rate and derives the sampling probability that meets the target rate.

    Each call to update() counts one span. The smoothed count and the
    smoothed elapsed time are replaced together under one lock.
    """

    def __init__(self, target_spans_per_second: float, adaptation_time_seconds: float, clock: Optional[Clock] = None):
        if not (target_spans_per_second > 0.0 and math.isfinite(target_spans_per_second)):
            raise ValueError("target spans per second must be positive")
        if not (adaptation_time_seconds > 0.0 and math.isfinite(adaptation_time_seconds)):
            raise ValueError("adaptation time must be positive")
        self._clock = clock if clock is not None else MonotonicClock()
        self._inverse_adaptation_time_nanos = 1.0 / (adaptation_time_seconds * _NANOS_PER_SECOND)
        self._target_spans_per_nano = target_spans_per_second / _NANOS_PER_SECOND
        self._lock = threading.Lock()
        self._state = _ControllerState(0.0, 0.0, self._clock.nanotime())

    def _probability(self, state: _ControllerState) -> float:
        if state.window_count <= 0.0:
            return 1.0
        return min(1.0, state.window_nanos * self._target_spans_per_nano / state.window_count)

    def update(self) -> float:
        """Count one span and return the current sampling probability."""
        with self._lock:
            state = self._state
            now = max(self._clock.nanotime(), state.last_nanos)
            delta = now - state.last_nanos
            decay = math.exp(-delta * self._inverse_adaptation_time_nanos)
            state = _ControllerState(
                window_count=state.window_count * decay + 1.0,
                window_nanos=state.window_nanos * decay + delta,
                last_nanos=now,
            )
            self._state = state
        return self._probability(state)

    @property
    def threshold(self) -> float:
        """The current continuous threshold, ``-log2`` of the sampling probability, within [0, MAX_P]."""
        probability = self._probability(self._state)
        if probability <= 0.0:
            return float(MAX_P)
        return min(float(MAX_P), max(0.0, -math.log2(probability)))


class ConsistentRateLimitingSampler(ConsistentSampler):
    def __init__(
        self,
        target_spans_per_second: float,
        adaptation_time_seconds: float,
        random_generator: Union[RandomGenerator, RandomSource, None] = None,
        clock: Optional[Clock] = None,
    ):
        self._controller = RateLimitingController(target_spans_per_second, adaptation_time_seconds, clock)
        super().__init__(random_generator)
        self._description = (
            f"ConsistentRateLimitingSampler{{{target_spans_per_second:.6f}, {adaptation_time_seconds:.6f}}}"
        )

    @property
    def controller(self) -> RateLimitingController:
        return self._controller

    def get_p(self, parent_p: int, is_root: bool) -> int:
        probability = self._controller.update()
        if probability >= 1.0:
            return 0
        return unbiased_rounded_p(probability, self._random_generator.next_boolean)

    def get_description(self) -> str:
        return self._description

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Optional, Sequence, Union

from opentelemetry.trace import TraceFlags

from otelconsistent import rng
from otelconsistent.state import OtelTraceState, from_trace_state, to_trace_state
from otelconsistent.threshold import INVALID_P, MAX_P, is_valid_p, unbiased_rounded_p

if TYPE_CHECKING:
    from opentelemetry.trace import Link, SpanKind
    from opentelemetry.trace.span import SpanContext, TraceState
    from opentelemetry.util.types import Attributes

    from otelconsistent.ratelimit import Clock, ConsistentRateLimitingSampler
    from otelconsistent.rng import RandomGenerator, RandomSource

_pylogger = logging.getLogger(__package__)


class Decision(Enum):
    DROP = 0
    RECORD_AND_SAMPLE = 1

    def is_sampled(self) -> bool:
        return self is Decision.RECORD_AND_SAMPLE


class SamplingResult:
    def __init__(
        self,
        decision: Decision,
        attributes: Attributes = None,
        trace_state: Optional[TraceState] = None,
    ):
        self.decision = decision
        self.attributes = MappingProxyType(dict(attributes) if attributes else {})
        self.trace_state = trace_state

    def __repr__(self) -> str:
        return f"SamplingResult({self.decision}, trace_state={self.trace_state!r})"


class Sampler(ABC):
    @abstractmethod
    def should_sample(
        self,
        trace_id: int,
        name: str,
        parent_context: Optional[SpanContext] = None,
        kind: Optional[SpanKind] = None,
        attributes: Attributes = None,
        links: Optional[Sequence[Link]] = None,
    ) -> SamplingResult:
        pass

    @abstractmethod
    def get_description(self) -> str:
        pass


class ConsistentSampler(Sampler):
    """Base class for samplers that make consistent decisions across all spans of a trace.

    The r-value of a trace is created once at the root and propagated in the
    ``ot`` tracestate entry. Subclasses only choose the p-value; a span is
    sampled iff ``p <= r``.

    The optional ``random_generator`` argument may also be a RandomSource,
    which is then wrapped in its own RandomGenerator. When omitted, the shared
    default generator is used.
    """

    def __init__(self, random_generator: Union[RandomGenerator, RandomSource, None] = None):
        self._random_generator = rng.as_generator(random_generator)

    def should_sample(
        self,
        trace_id: int,
        name: str,
        parent_context: Optional[SpanContext] = None,
        kind: Optional[SpanKind] = None,
        attributes: Attributes = None,
        links: Optional[Sequence[Link]] = None,
    ) -> SamplingResult:
        is_root = parent_context is None or not parent_context.is_valid
        is_parent_sampled = parent_context is not None and bool(parent_context.trace_flags & TraceFlags.SAMPLED)
        parent_trace_state = parent_context.trace_state if parent_context is not None else None

        state = from_trace_state(parent_trace_state)
        if not state.has_valid_r():
            state = state.without_p()

        # a p-value that contradicts the parent's sampled flag cannot be trusted
        if state.has_valid_r() and state.has_valid_p():
            consistent = (state.p <= state.r) == is_parent_sampled
            if not (consistent or (is_parent_sampled and state.p == MAX_P)):
                _pylogger.debug(
                    "Discarding p-value %d inconsistent with r-value %d and sampled=%s",
                    state.p,
                    state.r,
                    is_parent_sampled,
                )
                state = state.without_p()

        if not state.has_valid_r():
            state = state.with_r(self._random_generator.next_r())

        state = state.with_p(self.get_p(state.p, is_root))

        if state.has_valid_p():
            is_sampled = state.p <= state.r
        else:
            # no usable p-value, follow the parent
            is_sampled = is_parent_sampled

        decision = Decision.RECORD_AND_SAMPLE if is_sampled else Decision.DROP
        return SamplingResult(decision, trace_state=to_trace_state(parent_trace_state, state))

    @abstractmethod
    def get_p(self, parent_p: int, is_root: bool) -> int:
        """Return the p-value used for the sampling decision.

        The result must not depend on the r-value, directly or through the
        parent's sampled flag. An invalid p-value makes the span follow its
        parent's decision.

        Args:
            parent_p: the parent's p-value, or INVALID_P if unknown
            is_root: True for the root span of a trace
        """

    def __str__(self) -> str:
        return self.get_description()


class ConsistentAlwaysOnSampler(ConsistentSampler):
    def get_p(self, parent_p: int, is_root: bool) -> int:
        return 0

    def get_description(self) -> str:
        return "ConsistentAlwaysOnSampler"


class ConsistentAlwaysOffSampler(ConsistentSampler):
    def get_p(self, parent_p: int, is_root: bool) -> int:
        return MAX_P

    def get_description(self) -> str:
        return "ConsistentAlwaysOffSampler"


class ConsistentProbabilityBasedSampler(ConsistentSampler):
    """Samples with a fixed probability.

    Probabilities that are not powers of two are realized by randomly
    choosing between the two neighbouring p-values for each span, such that
    the expected sampling probability is exact.
    """

    def __init__(self, probability: float, random_generator: Union[RandomGenerator, RandomSource, None] = None):
        if not 0.0 <= probability <= 1.0:
            raise ValueError("probability must be between 0.0 and 1.0")
        super().__init__(random_generator)
        self._probability = probability

    def get_p(self, parent_p: int, is_root: bool) -> int:
        return unbiased_rounded_p(self._probability, self._random_generator.next_boolean)

    def get_description(self) -> str:
        return f"ConsistentProbabilityBasedSampler{{{self._probability:.6f}}}"


class ConsistentParentBasedSampler(ConsistentSampler):
    """Uses the root sampler for root spans and keeps the parent's p-value otherwise."""

    def __init__(self, root_sampler: ConsistentSampler, random_generator: Union[RandomGenerator, RandomSource, None] = None):
        if root_sampler is None:
            raise ValueError("root sampler must not be None")
        super().__init__(random_generator)
        self._root_sampler = root_sampler

    def get_p(self, parent_p: int, is_root: bool) -> int:
        if is_root:
            return self._root_sampler.get_p(parent_p, is_root)
        return parent_p

    def get_description(self) -> str:
        return f"ConsistentParentBasedSampler{{{self._root_sampler.get_description()}}}"


class ConsistentComposedAndSampler(ConsistentSampler):
    """Samples only if both delegates sample, using the larger of their p-values."""

    def __init__(
        self,
        first: ConsistentSampler,
        second: ConsistentSampler,
        random_generator: Union[RandomGenerator, RandomSource, None] = None,
    ):
        if first is None or second is None:
            raise ValueError("delegate samplers must not be None")
        super().__init__(random_generator)
        self._first = first
        self._second = second

    def get_p(self, parent_p: int, is_root: bool) -> int:
        p1 = self._first.get_p(parent_p, is_root)
        p2 = self._second.get_p(parent_p, is_root)
        if is_valid_p(p1) and is_valid_p(p2):
            return max(p1, p2)
        return INVALID_P

    def get_description(self) -> str:
        return f"ConsistentComposedAndSampler{{{self._first.get_description()},{self._second.get_description()}}}"


class ConsistentComposedOrSampler(ConsistentSampler):
    """Samples if any delegate samples, using the smallest valid p-value."""

    def __init__(
        self,
        first: ConsistentSampler,
        second: ConsistentSampler,
        random_generator: Union[RandomGenerator, RandomSource, None] = None,
    ):
        if first is None or second is None:
            raise ValueError("delegate samplers must not be None")
        super().__init__(random_generator)
        self._first = first
        self._second = second

    def get_p(self, parent_p: int, is_root: bool) -> int:
        valid = [p for p in (self._first.get_p(parent_p, is_root), self._second.get_p(parent_p, is_root)) if is_valid_p(p)]
        return min(valid) if valid else INVALID_P

    def get_description(self) -> str:
        return f"ConsistentComposedOrSampler{{{self._first.get_description()},{self._second.get_description()}}}"


def always_on(random_generator: Union[RandomGenerator, RandomSource, None] = None) -> ConsistentSampler:
    return ConsistentAlwaysOnSampler(random_generator)


def always_off(random_generator: Union[RandomGenerator, RandomSource, None] = None) -> ConsistentSampler:
    return ConsistentAlwaysOffSampler(random_generator)


def probability_based(
    probability: float, random_generator: Union[RandomGenerator, RandomSource, None] = None
) -> ConsistentSampler:
    return ConsistentProbabilityBasedSampler(probability, random_generator)


def parent_based(
    root_sampler: ConsistentSampler, random_generator: Union[RandomGenerator, RandomSource, None] = None
) -> ConsistentSampler:
    return ConsistentParentBasedSampler(root_sampler, random_generator)


def rate_limited(
    target_spans_per_second: float,
    adaptation_time_seconds: float,
    random_generator: Union[RandomGenerator, RandomSource, None] = None,
    clock: Optional[Clock] = None,
) -> ConsistentRateLimitingSampler:
    from otelconsistent.ratelimit import ConsistentRateLimitingSampler

    return ConsistentRateLimitingSampler(target_spans_per_second, adaptation_time_seconds, random_generator, clock)


def composed_and(first: ConsistentSampler, second: ConsistentSampler) -> ConsistentSampler:
    return ConsistentComposedAndSampler(first, second)


def composed_or(first: ConsistentSampler, second: ConsistentSampler) -> ConsistentSampler:
    return ConsistentComposedOrSampler(first, second)

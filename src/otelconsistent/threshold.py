"""Conversions between sampling probabilities and threshold exponents (p-values).

A p-value encodes the power-of-two sampling probability ``2**-p``:

    p = 0           => probability 1
    p = 1           => probability 1/2
    ...
    p = MAX_P - 1   => probability 2**-(MAX_P - 1)
    p = MAX_P       => probability 0

A span is sampled iff its trace's r-value is at least the p-value. Any other
p-value has no meaning and must not be compared against an r-value.
"""

from __future__ import annotations

import math
from typing import Callable, Union

MAX_P = 63
MAX_R = 62
INVALID_P = -1
INVALID_R = -1

# Either a uniform float in [0, 1) or a Bernoulli trial f(probability) -> bool
Draw = Union[float, Callable[[float], bool]]


def is_valid_p(p: int) -> bool:
    return 0 <= p <= MAX_P


def is_valid_r(r: int) -> bool:
    return 0 <= r <= MAX_R


def sampling_probability(p: int) -> float:
    """Return the sampling probability for a p-value, or nan if the p-value is invalid."""
    if not is_valid_p(p):
        return math.nan
    if p == MAX_P:
        return 0.0
    return math.ldexp(1.0, -p)


_SMALLEST_POSITIVE_SAMPLING_PROBABILITY = sampling_probability(MAX_P - 1)


def _check_probability(probability: float) -> None:
    if not 0.0 <= probability <= 1.0:
        raise ValueError(f"sampling probability must be in [0, 1], got {probability!r}")


def lower_bound_p(probability: float) -> int:
    """Return the largest p-value for which ``sampling_probability(p) >= probability``."""
    _check_probability(probability)
    if probability <= _SMALLEST_POSITIVE_SAMPLING_PROBABILITY:
        return MAX_P - 1 if probability > 0.0 else MAX_P
    mantissa, exponent = math.frexp(probability)
    return (1 - exponent) - (1 if mantissa != 0.5 else 0)


def upper_bound_p(probability: float) -> int:
    """Return the smallest p-value for which ``sampling_probability(p) <= probability``."""
    _check_probability(probability)
    if probability <= _SMALLEST_POSITIVE_SAMPLING_PROBABILITY:
        return MAX_P
    _, exponent = math.frexp(probability)
    return 1 - exponent


def unbiased_rounded_p(probability: float, draw: Draw) -> int:
    """Round a sampling probability to one of its two bracketing p-values.

    The lower bound (the more generous probability) is chosen with a weight
    that makes the expected sampling probability equal ``probability``.

    Args:
        probability: the desired sampling probability in [0, 1]
        draw: a uniform float in [0, 1), or a callable returning True with the
            given probability
    """
    lower = lower_bound_p(probability)
    upper = upper_bound_p(probability)
    if lower == upper:
        return lower

    upper_probability = sampling_probability(lower)
    lower_probability = sampling_probability(upper)
    weight = (probability - lower_probability) / (upper_probability - lower_probability)

    if callable(draw):
        use_lower = draw(weight)
    else:
        use_lower = draw < weight
    return lower if use_lower else upper


def adjusted_count(p: int) -> float:
    """Return the number of spans a span sampled with the given p-value represents."""
    probability = sampling_probability(p)
    if math.isnan(probability):
        return math.nan
    if probability == 0.0:
        return math.inf
    return 1.0 / probability

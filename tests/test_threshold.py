import math
import random
import sys

import pytest

from otelconsistent.threshold import (
    MAX_P,
    adjusted_count,
    is_valid_p,
    is_valid_r,
    lower_bound_p,
    sampling_probability,
    unbiased_rounded_p,
    upper_bound_p,
)


def test_sampling_probability():
    for p in range(MAX_P):
        assert sampling_probability(p) == 0.5**p
    assert sampling_probability(0) == 1.0
    assert sampling_probability(MAX_P) == 0.0


def test_sampling_probability_invalid_p_is_nan():
    assert math.isnan(sampling_probability(-1))
    assert math.isnan(sampling_probability(MAX_P + 1))


def test_lower_bound_p():
    assert lower_bound_p(1.0) == 0
    assert lower_bound_p(math.nextafter(1.0, 0.0)) == 0
    for i in range(1, MAX_P - 1):
        probability = 0.5**i
        assert lower_bound_p(probability) == i
        assert lower_bound_p(math.nextafter(probability, 1.0)) == i - 1
        assert lower_bound_p(math.nextafter(probability, 0.0)) == i
    assert lower_bound_p(sys.float_info.min) == MAX_P - 1
    assert lower_bound_p(5e-324) == MAX_P - 1
    assert lower_bound_p(0.0) == MAX_P


def test_upper_bound_p():
    assert upper_bound_p(1.0) == 0
    assert upper_bound_p(math.nextafter(1.0, 0.0)) == 1
    for i in range(1, MAX_P - 1):
        probability = 0.5**i
        assert upper_bound_p(probability) == i
        assert upper_bound_p(math.nextafter(probability, 1.0)) == i
        assert upper_bound_p(math.nextafter(probability, 0.0)) == i + 1
    assert upper_bound_p(sys.float_info.min) == MAX_P
    assert upper_bound_p(5e-324) == MAX_P
    assert upper_bound_p(0.0) == MAX_P


def test_bounds_reject_invalid_probability():
    for probability in (-0.1, 1.1, math.nan):
        with pytest.raises(ValueError):
            lower_bound_p(probability)
        with pytest.raises(ValueError):
            upper_bound_p(probability)


def test_bounds_bracket_random_probabilities():
    rng = random.Random(0)
    for _ in range(1000):
        probability = math.exp(-1.0 / (1.0 - rng.random()))
        pmin = lower_bound_p(probability)
        pmax = upper_bound_p(probability)
        assert sampling_probability(pmin) >= probability
        assert sampling_probability(pmax) <= probability


def test_bounds_coincide_for_powers_of_two():
    for i in range(MAX_P - 1):
        assert lower_bound_p(0.5**i) == upper_bound_p(0.5**i)
    assert lower_bound_p(0.3) != upper_bound_p(0.3)


def test_unbiased_rounded_p_edges_are_deterministic():
    for draw in (0.0, 0.5, 0.999):
        assert unbiased_rounded_p(1.0, draw) == 0
        assert unbiased_rounded_p(0.0, draw) == MAX_P
        assert unbiased_rounded_p(0.25, draw) == 2


def test_unbiased_rounded_p_picks_bracketing_values():
    # 0.375 lies halfway between 0.5 and 0.25
    assert unbiased_rounded_p(0.375, 0.49) == 1
    assert unbiased_rounded_p(0.375, 0.51) == 2
    assert unbiased_rounded_p(0.375, lambda w: True) == 1
    assert unbiased_rounded_p(0.375, lambda w: False) == 2


def test_unbiased_rounded_p_weight():
    seen = []
    unbiased_rounded_p(0.3, lambda w: seen.append(w) or True)
    # 0.3 = w * 0.5 + (1 - w) * 0.25
    assert seen == [pytest.approx(0.2)]


@pytest.mark.parametrize("probability", [1.0, 0.5, 0.25, 0.125, 0.0, 0.45, 0.2, 0.13, 0.05])
def test_unbiased_rounded_p_mean(probability):
    rng = random.Random(0)
    n = 200000
    total = sum(sampling_probability(unbiased_rounded_p(probability, rng.random())) for _ in range(n))
    assert total / n == pytest.approx(probability, abs=5.0 / math.sqrt(n))


def test_adjusted_count():
    assert adjusted_count(0) == 1.0
    assert adjusted_count(3) == 8.0
    assert adjusted_count(MAX_P) == math.inf
    assert math.isnan(adjusted_count(-1))


def test_validity():
    assert is_valid_p(0)
    assert is_valid_p(MAX_P)
    assert not is_valid_p(MAX_P + 1)
    assert not is_valid_p(-1)
    assert is_valid_r(MAX_P - 1)
    assert not is_valid_r(MAX_P)

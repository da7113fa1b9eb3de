"""Centralized environment variable configuration.

Config is a simple data class that loads OTEL environment variables.
Pass it explicitly to components that need it.

Usage:
    from otelconsistent.env import Config, create_sampler

    # Load from os.environ
    config = Config()

    # Load from custom dict (for testing)
    config = Config(Env({"OTEL_TRACES_SAMPLER": "consistent_probability", "OTEL_TRACES_SAMPLER_ARG": "0.25"}))

    # Build the configured sampler
    sampler = create_sampler(config)

    # Inspect
    print(config.as_dict())
"""

import logging
import os
from typing import Optional

from otelconsistent import sampler as samplers

# Environment variable names
OTEL_TRACES_SAMPLER = "OTEL_TRACES_SAMPLER"
OTEL_TRACES_SAMPLER_ARG = "OTEL_TRACES_SAMPLER_ARG"
OTEL_CONSISTENT_SAMPLER_ADAPTATION_SECONDS = "OTEL_CONSISTENT_SAMPLER_ADAPTATION_SECONDS"
OTEL_CONSISTENT_LOG_FORMAT = "OTEL_CONSISTENT_LOG_FORMAT"

# Sampler names accepted in OTEL_TRACES_SAMPLER
CONSISTENT_ALWAYS_ON = "consistent_always_on"
CONSISTENT_ALWAYS_OFF = "consistent_always_off"
CONSISTENT_PROBABILITY = "consistent_probability"
CONSISTENT_RATE_LIMITED = "consistent_rate_limited"
PARENT_BASED_PREFIX = "parentbased_"

DEFAULT_SAMPLER = PARENT_BASED_PREFIX + CONSISTENT_PROBABILITY
DEFAULT_SAMPLER_ARG = 1.0
DEFAULT_ADAPTATION_SECONDS = 10.0

_pylogger = logging.getLogger(__package__)


class Env:
    """Wrapper around environment variables with typed accessors."""

    def __init__(self, store: Optional[dict] = None):
        self._store = store if store is not None else os.environ

    def get(self, key: str, default: str = "") -> str:
        return self._store.get(key, default)

    def get_float(self, key: str, default: float) -> float:
        val = self._store.get(key, "")
        if not val:
            return default
        try:
            return float(val)
        except (ValueError, TypeError):
            _pylogger.warning("Invalid float value of '%s' for env var '%s'", val, key)
            return default


class Config:
    """Configuration loaded from OTEL environment variables.

    All values are loaded at construction time and stored as attributes.
    """

    def __init__(self, env: Optional[Env] = None):
        """Load configuration from environment.

        Args:
            env: Optional Env instance (for testing). Defaults to os.environ.
        """
        if env is None:
            env = Env()

        # Sampler selection
        self.traces_sampler = env.get(OTEL_TRACES_SAMPLER, DEFAULT_SAMPLER).strip().lower()
        # Probability, or sampled spans per second for the rate limited sampler
        self.traces_sampler_arg = env.get_float(OTEL_TRACES_SAMPLER_ARG, DEFAULT_SAMPLER_ARG)
        self.adaptation_time_seconds = env.get_float(
            OTEL_CONSISTENT_SAMPLER_ADAPTATION_SECONDS, DEFAULT_ADAPTATION_SECONDS
        )

        self.log_format = env.get(OTEL_CONSISTENT_LOG_FORMAT, logging.BASIC_FORMAT)

    def as_dict(self) -> dict:
        """Return all configuration values as a dictionary."""
        return {
            "traces_sampler": self.traces_sampler,
            "traces_sampler_arg": self.traces_sampler_arg,
            "adaptation_time_seconds": self.adaptation_time_seconds,
            "log_format": self.log_format,
        }

    def __repr__(self) -> str:
        return f"Config({self.as_dict()})"


def create_sampler(config: Config) -> samplers.ConsistentSampler:
    """Build the sampler named by OTEL_TRACES_SAMPLER.

    Raises:
        ValueError: if the sampler name is unknown or its argument is out of range.
    """
    name = config.traces_sampler
    parent_based = name.startswith(PARENT_BASED_PREFIX)
    if parent_based:
        name = name[len(PARENT_BASED_PREFIX):]

    if name == CONSISTENT_ALWAYS_ON:
        sampler = samplers.always_on()
    elif name == CONSISTENT_ALWAYS_OFF:
        sampler = samplers.always_off()
    elif name == CONSISTENT_PROBABILITY:
        sampler = samplers.probability_based(config.traces_sampler_arg)
    elif name == CONSISTENT_RATE_LIMITED:
        sampler = samplers.rate_limited(config.traces_sampler_arg, config.adaptation_time_seconds)
    else:
        raise ValueError(f"Unknown sampler '{config.traces_sampler}'")

    if parent_based:
        sampler = samplers.parent_based(sampler)
    _pylogger.debug("Using sampler %s", sampler.get_description())
    return sampler


def set_up_console_logging(config: Config, logger: Optional[logging.Logger] = None) -> logging.Handler:
    """Attach a stream handler using the configured log format to the package logger."""
    if logger is None:
        logger = _pylogger
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(config.log_format))
    logger.addHandler(stream_handler)
    return stream_handler

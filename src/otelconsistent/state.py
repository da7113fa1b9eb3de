"""The ``ot`` entry of the W3C tracestate, which carries the consistent sampling r- and p-values.

The entry value is a ``;``-separated list of ``key:value`` pairs, e.g.
``ot=p:3;r:5``. Pairs other than ``p`` and ``r`` are kept and written back
unchanged.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from opentelemetry.trace.span import TraceState

from otelconsistent.threshold import INVALID_P, INVALID_R, MAX_P, MAX_R, is_valid_p, is_valid_r

_pylogger = logging.getLogger(__package__)

TRACE_STATE_KEY = "ot"
TRACE_STATE_SIZE_LIMIT = 256

_PAIR_REGEX = re.compile(r"(?P<key>[a-z][a-z0-9]*):(?P<value>[a-zA-Z0-9._-]*)")
_NUMBER_REGEX = re.compile(r"[0-9]{1,2}")


def _parse_number(value: str, max_value: int, invalid_value: int) -> int:
    if not _NUMBER_REGEX.fullmatch(value):
        return invalid_value
    number = int(value)
    return number if number <= max_value else invalid_value


@dataclass(frozen=True)
class OtelTraceState:
    r: int = INVALID_R
    p: int = INVALID_P
    other_pairs: Tuple[str, ...] = ()

    def has_valid_r(self) -> bool:
        return is_valid_r(self.r)

    def has_valid_p(self) -> bool:
        return is_valid_p(self.p)

    def with_r(self, r: int) -> OtelTraceState:
        return replace(self, r=r if is_valid_r(r) else INVALID_R)

    def with_p(self, p: int) -> OtelTraceState:
        return replace(self, p=p if is_valid_p(p) else INVALID_P)

    def without_p(self) -> OtelTraceState:
        return replace(self, p=INVALID_P)

    def serialize(self) -> str:
        parts = []
        if self.has_valid_p():
            parts.append(f"p:{self.p}")
        if self.has_valid_r():
            parts.append(f"r:{self.r}")
        length = len(";".join(parts))
        for pair in self.other_pairs:
            needed = length + (1 if length else 0) + len(pair)
            if needed > TRACE_STATE_SIZE_LIMIT:
                break
            parts.append(pair)
            length = needed
        return ";".join(parts)

    @classmethod
    def parse(cls, text: Optional[str]) -> OtelTraceState:
        """Parse an ``ot`` entry value.

        Returns an empty state (no r-value, no p-value) if the value is
        missing or malformed. Never raises.
        """
        if not text:
            return cls()
        if len(text) > TRACE_STATE_SIZE_LIMIT:
            _pylogger.debug("Ignoring oversized tracestate entry of length %d", len(text))
            return cls()

        r = INVALID_R
        p = INVALID_P
        other_pairs = []
        for pair in text.split(";"):
            match = _PAIR_REGEX.fullmatch(pair)
            if match is None:
                _pylogger.debug("Ignoring malformed tracestate entry %r", text)
                return cls()
            key = match.group("key")
            if key == "p":
                p = _parse_number(match.group("value"), MAX_P, INVALID_P)
                if p == INVALID_P:
                    _pylogger.debug("Ignoring tracestate entry %r with invalid p-value", text)
                    return cls()
            elif key == "r":
                r = _parse_number(match.group("value"), MAX_R, INVALID_R)
                if r == INVALID_R:
                    _pylogger.debug("Ignoring tracestate entry %r with invalid r-value", text)
                    return cls()
            else:
                other_pairs.append(pair)
        return cls(r=r, p=p, other_pairs=tuple(other_pairs))


def from_trace_state(trace_state: Optional[TraceState]) -> OtelTraceState:
    if trace_state is None:
        return OtelTraceState()
    return OtelTraceState.parse(trace_state.get(TRACE_STATE_KEY))


def to_trace_state(trace_state: Optional[TraceState], state: OtelTraceState) -> TraceState:
    """Return a copy of ``trace_state`` with its ``ot`` entry replaced by ``state``."""
    if trace_state is None:
        trace_state = TraceState()
    value = state.serialize()
    if not value:
        if TRACE_STATE_KEY in trace_state:
            return trace_state.delete(TRACE_STATE_KEY)
        return trace_state
    if TRACE_STATE_KEY in trace_state:
        return trace_state.update(TRACE_STATE_KEY, value)
    return trace_state.add(TRACE_STATE_KEY, value)

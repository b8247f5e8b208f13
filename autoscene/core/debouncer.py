"""Edge-triggered debouncing of raw boolean signals.

A :class:`SignalDebouncer` turns a possibly bouncy stream of raw samples
(key held, match score above threshold) into a clean sequence of
``Edge.ENTERED`` / ``Edge.EXITED`` events that alternate strictly.

Timing rules:

* Entry is trusted instantly. Two ``ENTERED`` edges of the same debouncer
  are never closer than ``cooldown_ms``: the cooldown window opened by an
  entry also holds back the matching exit.
* Exit is held back while the cooldown window is still open and until the
  signal has been continuously inactive for ``exit_delay_ms``. An active
  sample during that wait cancels the pending exit.
* A sample whose timestamp is earlier than the previous one is dropped and
  reported as a :class:`ClockAnomaly`.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from .entities import TIMING_TOLERANCE, Edge, SignalState
from .exceptions import ClockAnomaly, ValidationError

logger = logging.getLogger(__name__)


class SignalDebouncer:
    """Debounce one raw signal into alternating entered/exited edges."""

    def __init__(self, name: str, cooldown_ms: int = 0, exit_delay_ms: int = 0,
                 on_anomaly: Optional[Callable[[ClockAnomaly], None]] = None):
        """Initialize the debouncer.

        Args:
            name: Label used in logs and anomaly reports
            cooldown_ms: Minimum time between two consecutive ENTERED edges
            exit_delay_ms: Continuous inactivity required before EXITED
            on_anomaly: Optional callback receiving ClockAnomaly reports
        """
        if cooldown_ms < 0 or exit_delay_ms < 0:
            raise ValidationError("Debouncer durations must not be negative")
        self.name = name
        self.cooldown = cooldown_ms / 1000.0
        self.exit_delay = exit_delay_ms / 1000.0
        self._on_anomaly = on_anomaly
        self._state = SignalState()
        self.anomaly_count = 0

    @property
    def state(self) -> SignalState:
        return self._state

    @property
    def active(self) -> bool:
        """Debounced (clean) state."""
        return self._state.debounced

    def sample(self, raw_active: bool, now: float) -> Optional[Edge]:
        """Feed one raw sample.

        Args:
            raw_active: Raw signal value at ``now``
            now: Monotonic timestamp in seconds

        Returns:
            The edge produced by this sample, or None
        """
        st = self._state
        if st.last_sample_at is not None and now < st.last_sample_at:
            self._report_anomaly(st.last_sample_at, now)
            return None

        st.last_sample_at = now
        st.raw = raw_active
        if raw_active:
            st.inactive_since = None
        elif st.debounced and st.inactive_since is None:
            st.inactive_since = now
        return self._evaluate(now)

    def advance(self, now: float) -> Optional[Edge]:
        """Re-evaluate the last raw value at ``now`` without recording a sample.

        Event-driven sources (a key hook) only report changes, so an edge
        held back by the cooldown or the exit delay is released by the
        driver calling this once :meth:`next_deadline` has passed.
        """
        st = self._state
        if st.last_sample_at is None or now < st.last_sample_at:
            return None
        return self._evaluate(now)

    def next_deadline(self) -> Optional[float]:
        """Earliest time a held-back edge may be reported, or None."""
        st = self._state
        if st.last_sample_at is None or st.raw == st.debounced:
            return None
        if st.raw:
            return st.cooldown_until
        return max(st.cooldown_until, st.inactive_since + self.exit_delay)

    def reset(self) -> None:
        """Forget all history; used when monitoring stops."""
        self._state = SignalState()

    def _evaluate(self, now: float) -> Optional[Edge]:
        st = self._state
        if st.raw:
            if st.debounced:
                return None
            if now + TIMING_TOLERANCE < st.cooldown_until:
                logger.debug(f"[{self.name}] entry held by cooldown "
                             f"({st.cooldown_until - now:.3f}s left)")
                return None
            st.debounced = True
            st.last_edge_at = now
            st.cooldown_until = now + self.cooldown
            return Edge.ENTERED

        if not st.debounced:
            return None
        if now + TIMING_TOLERANCE < st.cooldown_until:
            return None
        if now - st.inactive_since + TIMING_TOLERANCE < self.exit_delay:
            return None

        st.debounced = False
        st.last_edge_at = now
        st.inactive_since = None
        return Edge.EXITED

    def _report_anomaly(self, previous: float, current: float) -> None:
        self.anomaly_count += 1
        anomaly = ClockAnomaly(
            f"[{self.name}] timestamp went backwards ({current:.6f} < {previous:.6f}); sample dropped",
            previous=previous,
            current=current,
        )
        logger.warning(str(anomaly))
        if self._on_anomaly:
            try:
                self._on_anomaly(anomaly)
            except Exception as e:
                logger.error(f"Error in anomaly callback: {e}")

"""Periodic death-screen detection driver."""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional, Tuple

from ..core.entities import MatchResult, RegionOfInterest, Template
from ..core.events import StatusChannel, StatusLevel, StatusTopic
from ..core.exceptions import CaptureUnavailable, SizeMismatch
from ..core.logging_config import session_tag
from .match_scorer import MatchScorer

logger = logging.getLogger(__name__)


class DetectionState(Enum):
    OFF = "Off"
    NO_TEMPLATE = "No Template"
    SCANNING = "Scanning"
    MATCH = "Match"
    SIZE_MISMATCH = "Template too large"
    UNAVAILABLE = "Capture unavailable"


_STATE_LEVELS = {
    DetectionState.OFF: StatusLevel.SECONDARY,
    DetectionState.NO_TEMPLATE: StatusLevel.WARNING,
    DetectionState.SCANNING: StatusLevel.SECONDARY,
    DetectionState.MATCH: StatusLevel.DANGER,
    DetectionState.SIZE_MISMATCH: StatusLevel.WARNING,
    DetectionState.UNAVAILABLE: StatusLevel.DANGER,
}


class DeathDetector:
    """Capture a frame every interval, score it and report a raw death sample.

    Raw samples (``score >= threshold``) go to ``on_sample(active, timestamp)``;
    debouncing happens downstream. The template and ROI may be replaced at any
    time: when a scoring pass is in flight the replacement is staged and
    swapped in at the start of the next pass, so scoring never sees a
    half-replaced template.
    """

    def __init__(self, frame_source, scorer: MatchScorer,
                 on_sample: Callable[[bool, float], None],
                 threshold: float = 0.85, interval_ms: int = 400,
                 template: Optional[Template] = None,
                 roi: Optional[RegionOfInterest] = None,
                 status: Optional[StatusChannel] = None,
                 clock: Callable[[], float] = time.monotonic,
                 session_id: Optional[str] = None):
        self.frame_source = frame_source
        self.scorer = scorer
        self.threshold = threshold
        self.interval = interval_ms / 1000.0
        self.status = status
        self._on_sample = on_sample
        self._clock = clock
        self._session_id = session_id

        self._template = template
        self._roi = roi
        self._staged: Optional[Tuple[Optional[Template], Optional[RegionOfInterest]]] = None
        self._scoring = threading.Lock()

        self._state = DetectionState.OFF
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_result: Optional[MatchResult] = None

    @property
    def state(self) -> DetectionState:
        return self._state

    @property
    def template(self) -> Optional[Template]:
        return self._template

    @property
    def roi(self) -> Optional[RegionOfInterest]:
        return self._roi

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running():
            logger.warning("Death detector already running")
            return
        self._stop_event.clear()
        self._set_state(DetectionState.SCANNING if self._has_template() else DetectionState.NO_TEMPLATE)
        self._thread = threading.Thread(target=self._loop, name="DeathDetector", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None
        self._set_state(DetectionState.OFF)

    def replace_template(self, template: Optional[Template],
                         roi: Optional[RegionOfInterest]) -> bool:
        """Swap the active template/ROI.

        Returns:
            True if applied immediately, False if staged behind a scoring pass
        """
        if self._scoring.acquire(blocking=False):
            try:
                self._apply(template, roi)
            finally:
                self._scoring.release()
            return True
        self._staged = (template, roi)
        logger.debug("Template replacement staged until the current scoring pass ends")
        return False

    def tick(self) -> Optional[MatchResult]:
        """Run one capture + scoring pass; returns the result if one was produced."""
        if not self._scoring.acquire(blocking=False):
            return None
        try:
            staged, self._staged = self._staged, None
            if staged is not None:
                self._apply(*staged)

            if not self._has_template():
                self._set_state(DetectionState.NO_TEMPLATE)
                return None

            try:
                frame = self.frame_source.grab()
            except CaptureUnavailable as e:
                logger.error(f"Death detection turned off: {e}")
                self._set_state(DetectionState.UNAVAILABLE, str(e))
                self._stop_event.set()
                return None

            try:
                result = self.scorer.score(frame, self._template, self._roi, timestamp=self._clock())
            except SizeMismatch as e:
                if self._state is not DetectionState.SIZE_MISMATCH:
                    logger.warning(f"Detection paused: {e}")
                self._set_state(DetectionState.SIZE_MISMATCH, str(e))
                return None

            self.last_result = result
            active = result.score >= self.threshold
            self._set_state(DetectionState.MATCH if active else DetectionState.SCANNING)
            if self.status:
                self.status.publish(
                    StatusTopic.SCORE, f"{result.score * 100:.1f}%",
                    StatusLevel.SUCCESS if active else StatusLevel.SECONDARY,
                    score=result.score, threshold=self.threshold,
                )
            try:
                self._on_sample(active, result.timestamp)
            except Exception as e:
                logger.error(f"Error delivering death sample: {e}")
            return result
        finally:
            self._scoring.release()

    def _loop(self) -> None:
        with session_tag(self._session_id):
            self._scan_until_stopped()

    def _scan_until_stopped(self) -> None:
        while not self._stop_event.is_set():
            loop_start = time.monotonic()
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Frame processing error: {e}", exc_info=True)
            elapsed = time.monotonic() - loop_start
            self._stop_event.wait(max(0.0, self.interval - elapsed))
        try:
            self.frame_source.close()
        except Exception as e:
            logger.debug(f"Error closing frame source: {e}")

    def _apply(self, template: Optional[Template], roi: Optional[RegionOfInterest]) -> None:
        self._template = template
        self._roi = roi
        if template is not None:
            logger.info(f"Death template set: {template.width}x{template.height}")
            self._publish_template(f"{template.width}x{template.height}", StatusLevel.SUCCESS)
        else:
            self._publish_template("None", StatusLevel.SECONDARY)
        if self._state in (DetectionState.SIZE_MISMATCH, DetectionState.NO_TEMPLATE) and self.is_running():
            self._set_state(DetectionState.SCANNING if self._has_template() else DetectionState.NO_TEMPLATE)

    def _has_template(self) -> bool:
        return self._template is not None and self._roi is not None

    def _set_state(self, state: DetectionState, detail: str = "") -> None:
        if state is self._state:
            return
        self._state = state
        if self.status:
            self.status.publish(StatusTopic.DETECTION, state.value, _STATE_LEVELS[state], detail=detail)

    def _publish_template(self, text: str, level: StatusLevel) -> None:
        if self.status:
            self.status.publish(StatusTopic.TEMPLATE, text, level)

"""Monitoring session: the runtime that ties signals to scene switches.

A session is built when monitoring starts and discarded when it stops. It
owns the two debouncers and the arbiter and serialises everything that
touches them on one dispatcher thread:

    key hook thread ----\\
                          +--> queue --> dispatcher --> debouncers --> arbiter --> OBS
    detector thread ----/            (commands too)

The dispatcher waits on the queue no longer than the next timing deadline
(pending return to live, held-back debounce edge), so delayed transitions
fire on time without a polling loop.
"""

import logging
import queue
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

from ..config.settings import Config
from ..core.arbiter import SceneArbiter
from ..core.debouncer import SignalDebouncer
from ..core.entities import (
    EDGE_EVENTS, Edge, RawSignal, RegionOfInterest, SceneRole, SignalKind, Template
)
from ..core.events import StatusChannel, StatusLevel, StatusTopic
from ..core.exceptions import ClockAnomaly, KeyHookUnavailable
from ..core.logging_config import session_tag
from .death_detector import DeathDetector
from .key_listener import KeyHoldListener
from .match_scorer import MatchScorer, create_scorer
from .screen_capture import ScreenCaptureService

logger = logging.getLogger(__name__)

# Upper bound on a dispatcher wait when no deadline is pending
IDLE_WAIT = 1.0


@dataclass(frozen=True)
class ReplaceTemplate:
    template: Optional[Template]
    roi: Optional[RegionOfInterest]


@dataclass(frozen=True)
class UpdateThreshold:
    threshold: float  # 0..1


@dataclass(frozen=True)
class Stop:
    pass


Command = Union[ReplaceTemplate, UpdateThreshold, Stop]


class MonitoringSession:
    """Map-key and death-detection monitoring for one start/stop cycle."""

    def __init__(self, config: Config, controller,
                 status: Optional[StatusChannel] = None,
                 frame_source=None,
                 scorer: Optional[MatchScorer] = None,
                 key_listener_factory: Callable[..., KeyHoldListener] = KeyHoldListener,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize the session.

        Args:
            config: Configuration snapshot; later config changes reach a
                running session only through commands
            controller: Scene sink with ``switch_to(scene_name)``
            status: Channel for user-visible notifications
            frame_source: Object with ``grab()``/``close()``; defaults to the screen
            scorer: Match scorer; defaults to the configured detection backend
            key_listener_factory: Called as ``factory(key, callback, clock=clock)``
            clock: Monotonic time source shared by every component
        """
        self.session_id = uuid.uuid4().hex[:8]
        self.config = config
        self.status = status
        self._clock = clock

        self.arbiter = SceneArbiter(
            controller, config.scene_mapping(),
            respawn_delay_ms=config.respawn_delay_ms, status=status,
        )
        self.debouncers: Dict[SignalKind, SignalDebouncer] = {
            SignalKind.MAP: SignalDebouncer(
                "map", config.map_cooldown_ms, config.map_exit_delay_ms,
                on_anomaly=self._on_anomaly,
            ),
            SignalKind.DEATH: SignalDebouncer(
                "death", config.death_cooldown_ms, config.death_exit_delay_ms,
                on_anomaly=self._on_anomaly,
            ),
        }

        self._queue: "queue.Queue[Union[RawSignal, Command]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._running = False

        self.detector = DeathDetector(
            frame_source or ScreenCaptureService(config.capture_monitor),
            scorer or create_scorer(config.detection_backend, config.search_margin_px),
            on_sample=self._on_death_sample,
            threshold=config.threshold,
            interval_ms=config.detect_interval_ms,
            template=config.template(),
            roi=config.roi(),
            status=status,
            clock=clock,
            session_id=self.session_id,
        )
        self.key_listener = key_listener_factory(config.map_key, self._on_key, clock=clock)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def current_role(self) -> SceneRole:
        return self.arbiter.current_role

    def start(self) -> None:
        """Start the dispatcher, the key hook and the detector.

        A key hook the OS refuses is reported and monitoring continues with
        death detection only.
        """
        if self._running:
            logger.warning("Monitoring session already running")
            return
        logger.info(f"Starting monitoring session {self.session_id}")
        self._running = True
        self._thread = threading.Thread(target=self._run, name="SessionDispatcher", daemon=True)
        self._thread.start()

        try:
            self.key_listener.start()
        except KeyHookUnavailable as e:
            logger.error(str(e))
            self._publish(f"Map key unavailable: {e}", StatusLevel.WARNING)

        self.detector.start()
        self._publish("Running", StatusLevel.SUCCESS, session=self.session_id)

    def stop(self) -> None:
        """Stop all session threads; safe to call more than once."""
        if not self._running:
            return
        self._running = False
        self.key_listener.stop()
        self.detector.stop()
        self._queue.put(Stop())
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None
        for debouncer in self.debouncers.values():
            debouncer.reset()
        logger.info(f"Monitoring session {self.session_id} stopped "
                    f"({self.arbiter.commands_sent} switches, {self.arbiter.commands_failed} failed)")
        self._publish("Stopped", StatusLevel.SECONDARY, session=self.session_id)

    def submit(self, signal: RawSignal) -> None:
        """Queue a raw signal for the dispatcher (any thread)."""
        self._queue.put(signal)

    def post_command(self, command: Command) -> None:
        """Queue a command; applied immediately when the session is not running."""
        if self._running:
            self._queue.put(command)
        else:
            self._apply_command(command)

    def replace_template(self, template: Optional[Template], roi: Optional[RegionOfInterest]) -> None:
        self.post_command(ReplaceTemplate(template, roi))

    def update_threshold(self, threshold: float) -> None:
        self.post_command(UpdateThreshold(threshold))

    def process(self, signal: RawSignal) -> Optional[SceneRole]:
        """Run one raw signal through its debouncer and the arbiter.

        Timers due at or before the signal are fired first so events are
        seen in time order.

        Returns:
            The role committed as a direct result of this signal, or None
        """
        self.tick(signal.timestamp)
        edge = self.debouncers[signal.kind].sample(signal.active, signal.timestamp)
        if edge is None:
            return None
        return self._dispatch_edge(signal.kind, edge, signal.timestamp)

    def tick(self, now: float) -> Optional[SceneRole]:
        """Release due debounce edges and commit a due pending transition."""
        committed = None
        for kind, debouncer in self.debouncers.items():
            edge = debouncer.advance(now)
            if edge is not None:
                committed = self._dispatch_edge(kind, edge, now) or committed
        return self.arbiter.poll(now) or committed

    def next_deadline(self) -> Optional[float]:
        deadlines = [d.next_deadline() for d in self.debouncers.values()]
        deadlines.append(self.arbiter.next_deadline())
        pending = [d for d in deadlines if d is not None]
        return min(pending) if pending else None

    def _run(self) -> None:
        with session_tag(self.session_id):
            self._dispatch_loop()

    def _dispatch_loop(self) -> None:
        while True:
            try:
                item = self._queue.get(timeout=self._wait_timeout())
            except queue.Empty:
                item = None
            if isinstance(item, Stop):
                break
            try:
                if isinstance(item, RawSignal):
                    self.process(item)
                elif item is not None:
                    self._apply_command(item)
                self.tick(self._clock())
            except Exception as e:
                logger.error(f"Dispatcher error: {e}", exc_info=True)

    def _wait_timeout(self) -> float:
        deadline = self.next_deadline()
        if deadline is None:
            return IDLE_WAIT
        return min(IDLE_WAIT, max(0.0, deadline - self._clock()))

    def _apply_command(self, command: Command) -> None:
        if isinstance(command, ReplaceTemplate):
            applied = self.detector.replace_template(command.template, command.roi)
            logger.debug(f"Template replacement {'applied' if applied else 'staged'}")
        elif isinstance(command, UpdateThreshold):
            self.detector.threshold = command.threshold
            logger.info(f"Match threshold set to {command.threshold * 100:.0f}%")
        elif isinstance(command, Stop):
            pass
        else:
            logger.warning(f"Unknown session command: {command!r}")

    def _dispatch_edge(self, kind: SignalKind, edge: Edge, now: float) -> Optional[SceneRole]:
        event = EDGE_EVENTS[(kind, edge)]
        logger.debug(f"{kind.value} {edge.value} at {now:.3f}")
        return self.arbiter.handle(event, now)

    def _on_key(self, held: bool, timestamp: float) -> None:
        self.submit(RawSignal(SignalKind.MAP, held, timestamp))

    def _on_death_sample(self, active: bool, timestamp: float) -> None:
        self.submit(RawSignal(SignalKind.DEATH, active, timestamp))

    def _on_anomaly(self, anomaly: ClockAnomaly) -> None:
        self._publish("Clock anomaly: sample dropped", StatusLevel.WARNING,
                      previous=anomaly.previous, current=anomaly.current)

    def _publish(self, text: str, level: StatusLevel, **data) -> None:
        if self.status:
            self.status.publish(StatusTopic.MONITOR, text, level, **data)

"""Outbound status channel between the control side and the UI.

Every component that needs to tell the user something (connection state,
scene switches, detection badges, errors) publishes a :class:`StatusEvent`
here instead of touching widgets. The tkinter window drains the queue from
its own loop with ``root.after``; tests subscribe a plain callback.
"""
from __future__ import annotations

import logging
import queue
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class StatusTopic(Enum):
    OBS = "obs"
    MONITOR = "monitor"
    DETECTION = "detection"
    SCORE = "score"
    SCENE = "scene"
    TEMPLATE = "template"
    LOG = "log"


class StatusLevel(Enum):
    """Badge variant shown next to a status text."""
    SECONDARY = "secondary"
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    DANGER = "danger"


@dataclass(frozen=True, slots=True)
class StatusEvent:
    topic: StatusTopic
    text: str
    level: StatusLevel = StatusLevel.INFO
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class StatusChannel:
    """Fan-out of status events to subscribers plus a drainable queue."""

    def __init__(self, maxsize: int = 1000):
        self._queue: "queue.Queue[StatusEvent]" = queue.Queue(maxsize=maxsize)
        self._subscribers: List[Callable[[StatusEvent], None]] = []

    def subscribe(self, callback: Callable[[StatusEvent], None]) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[StatusEvent], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def publish(self, topic: StatusTopic, text: str,
                level: StatusLevel = StatusLevel.INFO, **data: Any) -> StatusEvent:
        event = StatusEvent(topic=topic, text=text, level=level, data=data)
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            # Oldest event is dropped so the newest state always reaches the UI
            try:
                self._queue.get_nowait()
            except queue.Empty:
                pass
            self._queue.put_nowait(event)

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in status subscriber: {e}")
        return event

    def drain(self, limit: Optional[int] = None) -> List[StatusEvent]:
        """Return queued events in publish order without blocking."""
        events: List[StatusEvent] = []
        while limit is None or len(events) < limit:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                break
        return events


class StatusChannelHandler(logging.Handler):
    """Logging handler that mirrors records into the UI log panel."""

    def __init__(self, channel: StatusChannel, level: int = logging.INFO):
        super().__init__(level)
        self.channel = channel

    def emit(self, record: logging.LogRecord) -> None:
        # Records from this module would loop back through publish()
        if record.name == __name__:
            return
        try:
            text = self.format(record)
            level = StatusLevel.DANGER if record.levelno >= logging.ERROR else (
                StatusLevel.WARNING if record.levelno >= logging.WARNING else StatusLevel.INFO
            )
            self.channel.publish(StatusTopic.LOG, text, level)
        except Exception:
            self.handleError(record)

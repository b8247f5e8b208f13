"""Domain entities (data-only structures) used across services."""
from __future__ import annotations

import base64
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .exceptions import ValidationError


class SceneRole(Enum):
    """Which of the three configured OBS scenes should be on air."""
    LIVE = "live"
    MAP = "map"
    DEATH = "death"


class Edge(Enum):
    """Clean edge emitted by a SignalDebouncer."""
    ENTERED = "entered"
    EXITED = "exited"


class ArbiterEvent(Enum):
    MAP_ENTERED = "map_entered"
    MAP_EXITED = "map_exited"
    DEATH_ENTERED = "death_entered"
    DEATH_EXITED = "death_exited"


class SignalKind(Enum):
    MAP = "map"
    DEATH = "death"


# Timestamps within this many seconds of a deadline count as having reached it
TIMING_TOLERANCE = 1e-6


# (edge, signal) -> arbiter event
EDGE_EVENTS: Dict[Tuple[SignalKind, Edge], ArbiterEvent] = {
    (SignalKind.MAP, Edge.ENTERED): ArbiterEvent.MAP_ENTERED,
    (SignalKind.MAP, Edge.EXITED): ArbiterEvent.MAP_EXITED,
    (SignalKind.DEATH, Edge.ENTERED): ArbiterEvent.DEATH_ENTERED,
    (SignalKind.DEATH, Edge.EXITED): ArbiterEvent.DEATH_EXITED,
}


@dataclass(frozen=True, slots=True)
class RegionOfInterest:
    """Pixel rectangle in source-frame coordinates."""
    x: int
    y: int
    width: int
    height: int

    def __post_init__(self):
        if self.x < 0 or self.y < 0 or self.width <= 0 or self.height <= 0:
            raise ValidationError(
                f"Invalid ROI x={self.x} y={self.y} w={self.width} h={self.height}: "
                "all values must be positive and width/height > 0"
            )

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def fits_in(self, frame_width: int, frame_height: int) -> bool:
        return self.right <= frame_width and self.bottom <= frame_height

    def expanded(self, margin: int, frame_width: int, frame_height: int) -> "RegionOfInterest":
        """Grow by ``margin`` pixels on every side, clipped to the frame."""
        x1 = max(0, self.x - margin)
        y1 = max(0, self.y - margin)
        x2 = min(frame_width, self.right + margin)
        y2 = min(frame_height, self.bottom + margin)
        return RegionOfInterest(x1, y1, x2 - x1, y2 - y1)

    def to_percent(self, frame_width: int, frame_height: int) -> Tuple[int, int, int, int]:
        return (
            round(self.x / frame_width * 100),
            round(self.y / frame_height * 100),
            round(self.width / frame_width * 100),
            round(self.height / frame_height * 100),
        )

    @classmethod
    def from_percent(cls, px: float, py: float, pw: float, ph: float,
                     frame_width: int, frame_height: int) -> "RegionOfInterest":
        # Width/height never drop below 1% of the frame
        pw = max(1.0, pw)
        ph = max(1.0, ph)
        return cls(
            int(frame_width * px / 100),
            int(frame_height * py / 100),
            max(1, int(frame_width * pw / 100)),
            max(1, int(frame_height * ph / 100)),
        )

    def to_dict(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegionOfInterest":
        try:
            return cls(int(data["x"]), int(data["y"]), int(data["width"]), int(data["height"]))
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed ROI record {data!r}: {e}") from e


@dataclass(slots=True, eq=False)
class Template:
    """Grayscale reference image used to recognise the death screen.

    The pixel buffer is copied on construction so the template owns it.
    """
    pixels: np.ndarray

    def __post_init__(self):
        arr = np.asarray(self.pixels)
        if arr.ndim != 2:
            raise ValidationError(f"Template must be single-channel, got shape {arr.shape}")
        if arr.shape[0] == 0 or arr.shape[1] == 0:
            raise ValidationError("Template must not be empty")
        self.pixels = np.ascontiguousarray(arr, dtype=np.uint8).copy()

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "data": base64.b64encode(self.pixels.tobytes()).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Template":
        try:
            width = int(data["width"])
            height = int(data["height"])
            raw = base64.b64decode(data["data"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed template record: {e}") from e
        if len(raw) != width * height:
            raise ValidationError(
                f"Template data length {len(raw)} does not match {width}x{height}"
            )
        return cls(np.frombuffer(raw, dtype=np.uint8).reshape(height, width))


@dataclass(frozen=True, slots=True)
class MatchResult:
    score: float  # 0.0 to 1.0
    timestamp: float


@dataclass(slots=True)
class SignalState:
    """Mutable state of one SignalDebouncer."""
    raw: bool = False
    debounced: bool = False
    last_edge_at: Optional[float] = None
    cooldown_until: float = float("-inf")
    inactive_since: Optional[float] = None
    last_sample_at: Optional[float] = None


@dataclass(frozen=True, slots=True)
class PendingTransition:
    target_role: SceneRole
    not_before: float


@dataclass(slots=True)
class ArbiterState:
    """Single source of truth for which scene should be on air."""
    current_role: SceneRole = SceneRole.LIVE
    pending_transition: Optional[PendingTransition] = None
    map_signal_active: bool = False
    death_signal_active: bool = False


@dataclass(frozen=True, slots=True)
class RawSignal:
    """Raw boolean sample queued for the dispatcher."""
    kind: SignalKind
    active: bool
    timestamp: float


@dataclass(slots=True)
class SceneMapping:
    """Scene name per role; an empty name means the role is a no-op target."""
    live: str = ""
    map: str = ""
    death: str = ""

    def name_for(self, role: SceneRole) -> str:
        return getattr(self, role.value) or ""

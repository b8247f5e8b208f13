"""Core domain entities, state machines and exceptions."""

from .entities import (
    SceneRole, Edge, ArbiterEvent, SignalKind, RegionOfInterest, Template,
    MatchResult, SignalState, ArbiterState, PendingTransition, RawSignal, SceneMapping
)
from .exceptions import (
    ApplicationError, ConnectError, SwitchError, ListError, SizeMismatch,
    CaptureUnavailable, ClockAnomaly, ConfigError, ValidationError, KeyHookUnavailable
)
from .debouncer import SignalDebouncer
from .arbiter import SceneArbiter
from .events import StatusChannel, StatusEvent, StatusTopic, StatusLevel

__all__ = [
    "SceneRole", "Edge", "ArbiterEvent", "SignalKind", "RegionOfInterest", "Template",
    "MatchResult", "SignalState", "ArbiterState", "PendingTransition", "RawSignal", "SceneMapping",
    "ApplicationError", "ConnectError", "SwitchError", "ListError", "SizeMismatch",
    "CaptureUnavailable", "ClockAnomaly", "ConfigError", "ValidationError", "KeyHookUnavailable",
    "SignalDebouncer", "SceneArbiter",
    "StatusChannel", "StatusEvent", "StatusTopic", "StatusLevel"
]

"""Services package: OBS control, screen capture, detection and the monitoring runtime."""

from .scene_controller import SceneController, SceneList, parse_endpoint
from .match_scorer import MatchScorer, DiffScorer, create_scorer, capture_template, load_template_file
from .screen_capture import ScreenCaptureService
from .key_listener import KeyHoldListener
from .death_detector import DeathDetector, DetectionState
from .monitoring_session import MonitoringSession, ReplaceTemplate, UpdateThreshold, Stop

__all__ = [
    "SceneController", "SceneList", "parse_endpoint",
    "MatchScorer", "DiffScorer", "create_scorer", "capture_template", "load_template_file",
    "ScreenCaptureService", "KeyHoldListener", "DeathDetector", "DetectionState",
    "MonitoringSession", "ReplaceTemplate", "UpdateThreshold", "Stop"
]

"""Custom exceptions for the application."""

class ApplicationError(Exception):
    """Base application error."""
    pass

class SceneServiceError(ApplicationError):
    """Base exception for scene-control service errors."""
    pass

class ConnectError(SceneServiceError):
    """Network or authentication failure reaching OBS."""
    pass

class SwitchError(SceneServiceError):
    """Scene switch rejected or OBS unreachable."""

    def __init__(self, message: str, scene_name: str = ""):
        super().__init__(message)
        self.scene_name = scene_name

class ListError(SceneServiceError):
    """Scene list could not be retrieved."""
    pass

class DetectionError(ApplicationError):
    """Base exception for detection-related errors."""
    pass

class SizeMismatch(DetectionError):
    """Template or ROI does not fit inside the captured frame."""

    def __init__(self, message: str, frame_size=None, template_size=None):
        super().__init__(message)
        self.frame_size = frame_size
        self.template_size = template_size

class CaptureUnavailable(DetectionError):
    """No frame source could be acquired."""
    pass

class ClockAnomaly(ApplicationError):
    """A sample arrived with a timestamp earlier than the previous one."""

    def __init__(self, message: str, previous: float = 0.0, current: float = 0.0):
        super().__init__(message)
        self.previous = previous
        self.current = current

class ConfigError(ApplicationError):
    """Configuration-related errors."""
    pass

class ValidationError(ApplicationError):
    """Data validation errors."""
    pass

class KeyHookUnavailable(ApplicationError):
    """Global key hook could not be installed."""
    pass

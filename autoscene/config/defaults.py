"""Default configuration values."""

from typing import Any, Dict

DEFAULT_CONFIG: Dict[str, Any] = {
    # OBS WebSocket connection
    "obs_host": "127.0.0.1",
    "obs_port": 4455,
    "obs_password": "",
    "obs_timeout": 5,  # seconds

    # Scene name per role (empty = role is a no-op target)
    "scene_live": "",
    "scene_map": "",
    "scene_death": "",

    # Map overlay key
    "map_key": "g",

    # Death detection
    "death_roi": None,  # {"x", "y", "width", "height"} in frame pixels
    "death_template": None,  # {"width", "height", "data"} base64 grayscale
    "threshold_percent": 85,  # 0 to 100
    "detect_interval_ms": 400,
    "search_margin_px": 16,
    "capture_monitor": 1,  # mss monitor index, 0 = all monitors
    "detection_backend": "template",  # template | diff

    # Debounce / arbitration timing
    "death_cooldown_ms": 2000,
    "death_exit_delay_ms": 800,
    "map_cooldown_ms": 0,
    "map_exit_delay_ms": 0,
    "respawn_delay_ms": 200,

    # Startup behaviour
    "auto_connect": True,
    "auto_monitor": True,
    "monitoring": False,

    # Debug and Logging Settings
    "debug": False,
    "log_level": "INFO",
    "log_dir": "logs",
}

DETECTION_BACKENDS = ("template", "diff")

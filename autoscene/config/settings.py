"""Configuration dataclass, loading utilities and the persistent store.

Provides a strongly-typed configuration object with a fixed schema that is
injected into services instead of a loosely patched dictionary.

Persistence Features:
- Environment variable overrides for the OBS connection
- Env-provided OBS password is never written to disk
- Sanitisation of every value on load and on update
- Atomic writes (temporary file + rename) with a backup of the previous file
"""
from __future__ import annotations
from dataclasses import dataclass, asdict, fields, replace
from typing import Any, Dict, Mapping, Optional
from pathlib import Path
import json, os, logging, threading, time

from .defaults import DEFAULT_CONFIG, DETECTION_BACKENDS
from .env_config import load_environment_config, EnvironmentConfig, EnvironmentError
from ..core.entities import RegionOfInterest, SceneMapping, Template
from ..core.exceptions import ConfigError, ValidationError

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(slots=True)
class Config:
    # OBS connection
    obs_host: str = DEFAULT_CONFIG["obs_host"]
    obs_port: int = DEFAULT_CONFIG["obs_port"]
    obs_password: str = DEFAULT_CONFIG["obs_password"]
    obs_timeout: int = DEFAULT_CONFIG["obs_timeout"]

    # Scene mapping
    scene_live: str = DEFAULT_CONFIG["scene_live"]
    scene_map: str = DEFAULT_CONFIG["scene_map"]
    scene_death: str = DEFAULT_CONFIG["scene_death"]

    map_key: str = DEFAULT_CONFIG["map_key"]

    # Death detection
    death_roi: Optional[Dict[str, int]] = DEFAULT_CONFIG["death_roi"]
    death_template: Optional[Dict[str, Any]] = DEFAULT_CONFIG["death_template"]
    threshold_percent: float = DEFAULT_CONFIG["threshold_percent"]
    detect_interval_ms: int = DEFAULT_CONFIG["detect_interval_ms"]
    search_margin_px: int = DEFAULT_CONFIG["search_margin_px"]
    capture_monitor: int = DEFAULT_CONFIG["capture_monitor"]
    detection_backend: str = DEFAULT_CONFIG["detection_backend"]

    # Timing
    death_cooldown_ms: int = DEFAULT_CONFIG["death_cooldown_ms"]
    death_exit_delay_ms: int = DEFAULT_CONFIG["death_exit_delay_ms"]
    map_cooldown_ms: int = DEFAULT_CONFIG["map_cooldown_ms"]
    map_exit_delay_ms: int = DEFAULT_CONFIG["map_exit_delay_ms"]
    respawn_delay_ms: int = DEFAULT_CONFIG["respawn_delay_ms"]

    # Startup behaviour
    auto_connect: bool = DEFAULT_CONFIG["auto_connect"]
    auto_monitor: bool = DEFAULT_CONFIG["auto_monitor"]
    monitoring: bool = DEFAULT_CONFIG["monitoring"]

    # Logging
    debug: bool = DEFAULT_CONFIG["debug"]
    log_level: str = DEFAULT_CONFIG["log_level"]
    log_dir: str = DEFAULT_CONFIG["log_dir"]

    # Set when OBS_PASSWORD came from the environment
    _password_from_env: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d.pop("_password_from_env", None)
        return d

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, default)

    @property
    def threshold(self) -> float:
        """Match threshold as a 0..1 fraction."""
        return self.threshold_percent / 100.0

    def scene_mapping(self) -> SceneMapping:
        return SceneMapping(live=self.scene_live, map=self.scene_map, death=self.scene_death)

    def roi(self) -> Optional[RegionOfInterest]:
        return RegionOfInterest.from_dict(self.death_roi) if self.death_roi else None

    def template(self) -> Optional[Template]:
        return Template.from_dict(self.death_template) if self.death_template else None


CONFIG_KEYS = frozenset(f.name for f in fields(Config) if not f.name.startswith("_"))


def load_config(path: str = "config.json",
                environ: Optional[Mapping[str, str]] = None) -> Config:
    """Load configuration from a JSON file, falling back to defaults.

    Args:
        path: Path to config.json file
        environ: Environment mapping for overrides (defaults to os.environ)

    Returns:
        Config: Loaded and sanitised configuration
    """
    data: Dict[str, Any] = {}
    env_config: Optional[EnvironmentConfig] = None

    try:
        env_config = load_environment_config(environ)
    except EnvironmentError as e:
        logger.warning(f"Environment configuration ignored: {e}")

    if os.path.isfile(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                loaded_data = json.load(f)
            if loaded_data is None:
                logger.warning(f"Configuration file '{path}' is empty, using defaults")
            elif not isinstance(loaded_data, dict):
                logger.error(f"Configuration file '{path}' does not contain a valid JSON object, using defaults")
            else:
                data = loaded_data
                logger.info(f"Successfully loaded configuration from '{path}'")
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse JSON configuration file '{path}': {e}. Using defaults.")
        except PermissionError:
            logger.error(f"Permission denied reading configuration file '{path}'. Using defaults.")
        except OSError as e:
            logger.error(f"Error reading configuration file '{path}': {e}. Using defaults.")
    else:
        logger.info(f"Configuration file '{path}' does not exist. Using defaults.")

    unknown = [k for k in data if k not in CONFIG_KEYS]
    if unknown:
        logger.info(f"Ignoring unknown configuration keys: {unknown}")

    merged = {**DEFAULT_CONFIG, **{k: v for k, v in data.items() if k in CONFIG_KEYS}}
    merged = _sanitize_config_values(merged)

    password_from_env = False
    if env_config:
        merged, password_from_env = _apply_environment_overrides(merged, env_config)

    cfg = Config(**merged)
    cfg._password_from_env = password_from_env
    return cfg


def save_config(cfg: Config, path: str = "config.json") -> None:
    """Write configuration to ``path`` atomically.

    The previous file is kept as ``<path>.backup`` until the new one is in
    place. An OBS password supplied by the environment is not persisted.

    Raises:
        ConfigError: If the file cannot be written
    """
    target = Path(path)
    backup_path = target.with_name(target.name + ".backup")
    config_dict = cfg.to_dict()

    if cfg._password_from_env:
        config_dict["obs_password"] = ""
        logger.info("OBS password excluded from saved config (using environment variable)")

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.exists():
            try:
                backup_path.write_bytes(target.read_bytes())
            except OSError as e:
                logger.warning(f"Failed to create configuration backup: {e}")

        temp_path = target.with_name(f".{target.name}.tmp.{int(time.time() * 1000000)}")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(config_dict, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, target)
        finally:
            if temp_path.exists():
                temp_path.unlink()

        logger.debug(f"Configuration saved to '{path}'")
        if backup_path.exists():
            try:
                backup_path.unlink()
            except OSError:
                pass  # Keep backup if removal fails
    except OSError as e:
        raise ConfigError(f"Failed to save configuration to '{path}': {e}") from e


class ConfigStore:
    """Durable key-value view of the configuration.

    ``get()`` returns a snapshot; ``set(partial)`` merges, sanitises and
    writes the result before returning the new snapshot.
    """

    def __init__(self, path: str = "config.json",
                 environ: Optional[Mapping[str, str]] = None):
        self.path = path
        self._lock = threading.Lock()
        self._config = load_config(path, environ)

    def get(self) -> Config:
        with self._lock:
            return replace(self._config)

    def set(self, partial: Mapping[str, Any]) -> Config:
        """Merge ``partial`` into the configuration and persist it.

        Raises:
            ConfigError: On unknown keys or if the write fails
        """
        unknown = sorted(k for k in partial if k not in CONFIG_KEYS)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {unknown}")

        with self._lock:
            merged = {**self._config.to_dict(), **dict(partial)}
            sanitized = _sanitize_config_values(merged)
            new_config = Config(**sanitized)
            # Writing back the env-provided password unchanged keeps it off disk
            new_config._password_from_env = self._config._password_from_env and (
                "obs_password" not in partial
                or new_config.obs_password == self._config.obs_password
            )
            save_config(new_config, self.path)
            self._config = new_config
            return replace(new_config)


def _apply_environment_overrides(config_dict: Dict[str, Any],
                                 env_config: EnvironmentConfig) -> tuple[Dict[str, Any], bool]:
    """Apply environment variable overrides; returns (config, password_from_env)."""
    if env_config.obs_host:
        config_dict["obs_host"] = env_config.obs_host
    if env_config.obs_port:
        config_dict["obs_port"] = env_config.obs_port
    if env_config.has_password:
        config_dict["obs_password"] = env_config.obs_password
    if env_config.debug_logging:
        config_dict["debug"] = True
        config_dict["log_level"] = "DEBUG"
    return config_dict, env_config.has_password


def _int_in_range(config_dict: Dict[str, Any], key: str, low: int, high: Optional[int] = None) -> None:
    value = config_dict.get(key)
    try:
        if isinstance(value, bool):
            raise ValueError("boolean")
        number = int(value)
        if number < low or (high is not None and number > high):
            raise ValueError("out of range")
        config_dict[key] = number
    except (TypeError, ValueError):
        logger.warning(f"Invalid value for '{key}': {value!r}. Using default {DEFAULT_CONFIG[key]!r}.")
        config_dict[key] = DEFAULT_CONFIG[key]


def _sanitize_config_values(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy with every value coerced into range or reset to default."""
    d = dict(config_dict)

    _int_in_range(d, "obs_port", 1, 65535)
    _int_in_range(d, "obs_timeout", 1, 120)
    _int_in_range(d, "detect_interval_ms", 50, 60000)
    _int_in_range(d, "search_margin_px", 0, 1000)
    _int_in_range(d, "capture_monitor", 0, 32)
    for key in ("death_cooldown_ms", "death_exit_delay_ms", "map_cooldown_ms",
                "map_exit_delay_ms", "respawn_delay_ms"):
        _int_in_range(d, key, 0, 600000)

    threshold = d.get("threshold_percent")
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or not 0 <= threshold <= 100:
        logger.warning(f"Invalid threshold {threshold!r}: must be between 0 and 100. Using default.")
        d["threshold_percent"] = DEFAULT_CONFIG["threshold_percent"]

    for key in ("obs_host", "obs_password", "scene_live", "scene_map", "scene_death", "log_dir"):
        if not isinstance(d.get(key), str):
            d[key] = DEFAULT_CONFIG[key]
    d["obs_host"] = d["obs_host"].strip() or DEFAULT_CONFIG["obs_host"]

    if not isinstance(d.get("map_key"), str) or not d["map_key"].strip():
        d["map_key"] = DEFAULT_CONFIG["map_key"]
    d["map_key"] = d["map_key"].strip().lower()

    if d.get("detection_backend") not in DETECTION_BACKENDS:
        logger.warning(f"Unknown detection backend {d.get('detection_backend')!r}. Using 'template'.")
        d["detection_backend"] = DEFAULT_CONFIG["detection_backend"]

    level = str(d.get("log_level", "")).upper()
    d["log_level"] = level if level in VALID_LOG_LEVELS else DEFAULT_CONFIG["log_level"]

    for key in ("auto_connect", "auto_monitor", "monitoring", "debug"):
        d[key] = bool(d.get(key, DEFAULT_CONFIG[key]))

    if d.get("death_roi") is not None:
        try:
            d["death_roi"] = RegionOfInterest.from_dict(d["death_roi"]).to_dict()
        except (ValidationError, AttributeError) as e:
            logger.warning(f"Discarding invalid death ROI: {e}")
            d["death_roi"] = None

    if d.get("death_template") is not None:
        try:
            Template.from_dict(d["death_template"])
        except (ValidationError, AttributeError) as e:
            logger.warning(f"Discarding invalid death template: {e}")
            d["death_template"] = None

    return d


__all__ = ["Config", "ConfigStore", "load_config", "save_config", "CONFIG_KEYS"]

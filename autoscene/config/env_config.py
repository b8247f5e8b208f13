"""Environment variable overrides for the OBS connection.

``OBS_HOST``, ``OBS_PORT`` and ``OBS_PASSWORD`` take priority over the
configuration file. A password that comes from the environment is never
written back to disk. ``AUTOSCENE_DEBUG`` switches logging to DEBUG.
"""
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class EnvironmentConfig:
    """Immutable environment configuration object."""
    obs_host: Optional[str]
    obs_port: Optional[int]
    obs_password: Optional[str]
    debug_logging: bool

    @property
    def has_password(self) -> bool:
        return self.obs_password is not None


class EnvironmentError(Exception):
    """Custom exception for environment configuration errors."""
    pass


def _parse_port(raw: Optional[str]) -> Optional[int]:
    if raw is None or not raw.strip():
        return None
    try:
        port = int(raw)
    except ValueError:
        raise EnvironmentError(f"OBS_PORT is not a number: {raw!r}")
    if not 1 <= port <= 65535:
        raise EnvironmentError(f"OBS_PORT out of range: {port}")
    return port


def load_environment_config(environ: Optional[Mapping[str, str]] = None) -> EnvironmentConfig:
    """Read overrides from ``environ`` (defaults to ``os.environ``).

    Raises:
        EnvironmentError: If a variable is present but malformed
    """
    env = os.environ if environ is None else environ

    host = env.get("OBS_HOST")
    config = EnvironmentConfig(
        obs_host=host.strip() if host and host.strip() else None,
        obs_port=_parse_port(env.get("OBS_PORT")),
        obs_password=env.get("OBS_PASSWORD"),
        debug_logging=env.get("AUTOSCENE_DEBUG", "").strip().lower() in TRUE_VALUES,
    )
    if config.has_password:
        logger.info("OBS password provided by environment")
    return config

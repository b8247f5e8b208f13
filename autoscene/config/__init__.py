"""Configuration management package."""

from .settings import Config, ConfigStore, load_config, save_config
from .defaults import DEFAULT_CONFIG

__all__ = ["Config", "ConfigStore", "load_config", "save_config", "DEFAULT_CONFIG"]

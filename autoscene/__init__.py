"""
Main application package for the OBS automatic scene switcher.
"""

__version__ = "1.0.0"
__author__ = "autoscene developers"

from .config.settings import Config, ConfigStore, load_config, save_config
from .core.entities import SceneRole, RegionOfInterest, Template, MatchResult

__all__ = [
    "Config", "ConfigStore", "load_config", "save_config",
    "SceneRole", "RegionOfInterest", "Template", "MatchResult"
]

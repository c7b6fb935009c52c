"""Configuration module for the SketchMatch engine."""

from .config_loader import get_config, reload_config
from .models import EngineSettings, get_settings

__all__ = ['get_config', 'reload_config', 'EngineSettings', 'get_settings']

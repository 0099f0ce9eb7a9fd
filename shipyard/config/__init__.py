"""Configuration package for runtime settings and topology loading."""

from .settings import AppSettings, SettingsLoadError, config_load_settings
from .topology import (
    TopologyLoadError,
    config_apply_settings_overrides,
    config_expand_environment_references,
    config_infer_health_check,
    config_load_topology,
    config_parse_topology,
)

__all__ = [
    "AppSettings",
    "SettingsLoadError",
    "TopologyLoadError",
    "config_apply_settings_overrides",
    "config_expand_environment_references",
    "config_infer_health_check",
    "config_load_settings",
    "config_load_topology",
    "config_parse_topology",
]

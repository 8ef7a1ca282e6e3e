"""On-disk state helpers: installations, the active link and the config cascade."""
from __future__ import annotations

from .cascade import CascadeError, ConfigCascade, Configuration, LoadedConfiguration
from .registry import InstallationRegistry, RegistryError

__all__ = [
    "CascadeError",
    "ConfigCascade",
    "Configuration",
    "InstallationRegistry",
    "LoadedConfiguration",
    "RegistryError",
]

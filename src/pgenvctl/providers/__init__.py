"""Provider interfaces wrapping the external tools pgenvctl drives."""
from __future__ import annotations

from .dependencies import DependencyProbe, DependencyReport
from .hooks import HookResult, HookRunner
from .pg_ctl import ServerControl, ServerControlError
from .source import SourceError, SourceProvider, SourceTree
from .toolchain import ToolchainError, ToolchainProvider

__all__ = [
    "DependencyProbe",
    "DependencyReport",
    "HookResult",
    "HookRunner",
    "ServerControl",
    "ServerControlError",
    "SourceError",
    "SourceProvider",
    "SourceTree",
    "ToolchainError",
    "ToolchainProvider",
]

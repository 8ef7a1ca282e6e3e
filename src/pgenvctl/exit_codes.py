"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI.

    Every reported problem (bad input, unmet precondition, missing tool or a
    failing external command) exits with ``FAILURE``.
    """

    OK = 0
    FAILURE = 1

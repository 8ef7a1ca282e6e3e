"""Error taxonomy shared by every pgenvctl component.

The CLI converts any :class:`PgenvctlError` into a console message, an
``error`` record in the operations log and exit code 1. Subclasses only
change how the problem is described to the operator:

* :class:`UserInputError` - malformed version strings, unknown options.
* :class:`PreconditionError` - the on-disk state does not allow the action.
* :class:`DependencyError` - a required external tool is absent.
* :class:`ExternalCommandFailure` - a child process returned non-zero.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .providers.dependencies import DependencyReport


class PgenvctlError(RuntimeError):
    """Base class for every error reported to the operator."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        """Store the message and an optional remediation hint."""
        super().__init__(message)
        self.hint = hint


class UserInputError(PgenvctlError):
    """Raised when user supplied input cannot be interpreted."""


class PreconditionError(PgenvctlError):
    """Raised when the current state forbids the requested action."""


class DependencyError(PgenvctlError):
    """Raised when required external tools are missing."""

    def __init__(
        self,
        message: str,
        *,
        report: DependencyReport | None = None,
        hint: str | None = None,
    ) -> None:
        """Attach the dependency report describing every probed tool."""
        super().__init__(message, hint=hint)
        self.report = report


class ExternalCommandFailure(PgenvctlError):
    """Raised when an external command exits unsuccessfully."""

    def __init__(
        self,
        message: str,
        *,
        detail: str = "",
        hint: str | None = None,
    ) -> None:
        """Attach diagnostic *detail* (captured output, log tail, ...)."""
        super().__init__(message, hint=hint)
        self.detail = detail


__all__ = [
    "DependencyError",
    "ExternalCommandFailure",
    "PgenvctlError",
    "PreconditionError",
    "UserInputError",
]

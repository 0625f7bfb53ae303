"""Error taxonomy shared by the store, engine and command surfaces.

Every failure raised by tasktree derives from TaskTreeError so callers can
catch the whole family at a seam (the CLI maps them to exit codes, the MCP
server to failure payloads).
"""

from __future__ import annotations

from pathlib import Path


class TaskTreeError(Exception):
    """Base class for tasktree failures."""


class ValidationError(TaskTreeError, ValueError):
    """Malformed identifier or field value, detected before any file access."""


class NotFoundError(TaskTreeError, LookupError):
    """A referenced project, phase or task does not exist."""

    def __init__(self, kind: str, record_id: str, where: str | None = None):
        location = f" in {where}" if where else ""
        super().__init__(f"{kind} '{record_id}' not found{location}")
        self.kind = kind
        self.record_id = record_id


class TransitionError(TaskTreeError):
    """Raised when a status transition is rejected.

    Attributes:
        kind: One of ``already_done``, ``skip_stage`` or ``still_blocked``
        from_status: Current status value
        to_status: Requested status value
        blockers: Names of unmet dependencies (``still_blocked`` only)
    """

    def __init__(
        self,
        message: str,
        kind: str,
        from_status: str,
        to_status: str,
        blockers: list[str] | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.from_status = from_status
        self.to_status = to_status
        self.blockers = blockers or []


class PartialReadError(TaskTreeError):
    """One record could not be read or parsed; the load continued without it."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"Skipped unreadable record {path}: {reason}")
        self.path = path
        self.reason = reason


class ConfigError(TaskTreeError):
    """Settings file or environment override is invalid."""


class ConflictError(TaskTreeError):
    """Record already exists, or an id is ambiguous across projects."""

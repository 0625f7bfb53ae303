"""Identifier validation for projects, phases and tasks.

Identifiers double as directory and file names inside the synced store, so
every id is checked before it touches the filesystem. Checks run in a fixed
order and the first failure wins:

1. non-empty
2. no control characters
3. no path traversal (``..``, ``/``, ``\\``, leading ``~``, ``:``)
4. no shell metacharacters or whitespace
5. kind-specific structure (length, reserved words, pattern)

Usage:
    from tasktree.ids import check_id, validate_task_id

    check_id("../etc", "project")        # -> "contains path traversal sequence '..'"
    validate_task_id("T1.2", phase_id="P1")
"""

from __future__ import annotations

import re
from typing import Literal

from tasktree.errors import ValidationError

IdKind = Literal["project", "phase", "task"]

PROJECT_ID_MAX_LENGTH = 50
BUGS_PHASE = "BUGS"

PROJECT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
PHASE_ID_PATTERN = re.compile(r"^P([1-9][0-9]*)(-[A-Za-z0-9][A-Za-z0-9_-]*)?$")
TASK_ID_PATTERN = re.compile(
    r"^T([1-9][0-9]*)\.([1-9][0-9]*)(\.[1-9][0-9]*|\.B[1-9][0-9]*)?(-[A-Za-z0-9][A-Za-z0-9_-]*)?$"
)

_PATH_SEQUENCES = ("..", "/", "\\", ":")
_SHELL_CHARS = frozenset("|&;$`()<>\"'*?!{}[]")

# Device names are reserved on Windows regardless of case; the command words
# would shadow CLI subcommands when used as a bare project id.
RESERVED_PROJECT_IDS = frozenset(
    {"CON", "PRN", "AUX", "NUL"}
    | {f"COM{n}" for n in range(1, 10)}
    | {f"LPT{n}" for n in range(1, 10)}
    | {
        "HELP",
        "VERSION",
        "LIST",
        "STATUS",
        "WIKI",
        "COLLAB",
        "BIND",
        "INIT",
        "PROJECT",
        "PHASE",
        "TASK",
    }
)


def _check_common(raw: str) -> str | None:
    if not raw:
        return "must not be empty"
    for ch in raw:
        if ord(ch) < 32 or ord(ch) == 127:
            return f"contains control character {ch!r}"
    for seq in _PATH_SEQUENCES:
        if seq in raw:
            return f"contains path traversal sequence '{seq}'"
    if raw.startswith("~"):
        return "must not start with '~'"
    for ch in raw:
        if ch in _SHELL_CHARS:
            return f"contains shell metacharacter '{ch}'"
        if ch.isspace():
            return "must not contain whitespace"
    return None


def _check_project(raw: str) -> str | None:
    if len(raw) > PROJECT_ID_MAX_LENGTH:
        return f"is longer than {PROJECT_ID_MAX_LENGTH} characters"
    if raw.upper() in RESERVED_PROJECT_IDS:
        return f"'{raw}' is a reserved name"
    if not PROJECT_ID_PATTERN.match(raw):
        return "must start with a letter or digit and contain only letters, digits, '-' or '_'"
    return None


def _check_phase(raw: str) -> str | None:
    if raw == BUGS_PHASE or PHASE_ID_PATTERN.match(raw):
        return None
    return "must look like P<number> (e.g. P1, P2-backend) or be BUGS"


def _check_task(raw: str, phase_id: str | None) -> str | None:
    match = TASK_ID_PATTERN.match(raw)
    if not match:
        return "must look like T<phase>.<number> (e.g. T1.2, T1.2.3, T1.2.B1, T1.2-fix)"
    if phase_id is None or phase_id == BUGS_PHASE:
        return None
    expected = phase_number(phase_id)
    if expected is None:
        return f"phase context '{phase_id}' is not a valid phase id"
    if int(match.group(1)) != expected:
        return f"does not belong to phase {phase_id} (should start with T{expected}.)"
    return None


def check_id(raw: str, kind: IdKind, phase_id: str | None = None) -> str | None:
    """Check an identifier without raising.

    Args:
        raw: Candidate identifier as supplied by the user
        kind: Which record kind the id names
        phase_id: Owning phase, used to check a task's embedded phase number

    Returns:
        None when the id is valid, otherwise the reason it is rejected
    """
    reason = _check_common(raw)
    if reason:
        return reason
    if kind == "project":
        return _check_project(raw)
    if kind == "phase":
        return _check_phase(raw)
    if kind == "task":
        return _check_task(raw, phase_id)
    raise ValueError(f"Unknown id kind: {kind}")


def validate_id(raw: str, kind: IdKind, phase_id: str | None = None) -> str:
    """Return ``raw`` unchanged, or raise ValidationError naming the failed rule."""
    reason = check_id(raw, kind, phase_id)
    if reason:
        raise ValidationError(f"Invalid {kind} id '{raw}': {reason}")
    return raw


def validate_project_id(raw: str) -> str:
    return validate_id(raw, "project")


def validate_phase_id(raw: str) -> str:
    return validate_id(raw, "phase")


def validate_task_id(raw: str, phase_id: str | None = None) -> str:
    return validate_id(raw, "task", phase_id)


def phase_number(phase_id: str) -> int | None:
    """Number embedded in a phase id (``P12-api`` -> 12); None for BUGS or malformed ids."""
    match = PHASE_ID_PATTERN.match(phase_id)
    return int(match.group(1)) if match else None


def task_phase_number(task_id: str) -> int | None:
    """Phase number embedded in a task id (``T3.1`` -> 3)."""
    match = TASK_ID_PATTERN.match(task_id)
    return int(match.group(1)) if match else None


def natural_key(record_id: str) -> tuple:
    """Sort key that orders ``T1.2`` before ``T1.10``.

    Digit runs compare numerically, everything else lexically.
    """
    parts = re.split(r"(\d+)", record_id)
    return tuple((0, int(p)) if p.isdigit() else (1, p) for p in parts if p)

#!/usr/bin/env python3
"""FastMCP server exposing tasktree status queries and transitions.

Tools:
- project_status: counts, blocked and ready tasks for a project
- blocked_tasks: blocked tasks with their blockers
- dependency_chains: each task's dependencies and their status
- active_tasks: tasks that can be worked on now
- get_task: one task with its derived blocking state
- update_task_status: request a lifecycle transition

Every tool returns a dict with ``success`` and ``message``; domain failures
come back as ``success: False`` with an ``error_kind`` rather than raising.

Usage:
    # Development
    fastmcp dev tasktree/mcp_server.py

    # Production (stdio)
    tasktree-mcp
"""

from __future__ import annotations

import logging
from typing import Any

from fastmcp import FastMCP

from tasktree.config import load_settings
from tasktree.errors import NotFoundError, TaskTreeError, ValidationError
from tasktree.ids import validate_phase_id, validate_project_id
from tasktree.lifecycle import LifecycleController
from tasktree.reporting import (
    build_active_report,
    build_blocked_report,
    build_dependency_report,
    build_project_status,
    load_snapshot,
)
from tasktree.storage import EntityStore

logger = logging.getLogger(__name__)

mcp = FastMCP("tasktree")


def _get_store() -> EntityStore:
    """EntityStore for the configured store root, resolved per call."""
    return EntityStore(load_settings())


def _error_kind(error: TaskTreeError) -> str:
    if isinstance(error, ValidationError):
        return "validation"
    if isinstance(error, NotFoundError):
        return "not_found"
    return type(error).__name__


def _failure(error: TaskTreeError, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": False, "error_kind": _error_kind(error), "message": str(error)}
    payload.update(extra)
    return payload


def _scope(store: EntityStore, project_id: str | None, phase_id: str | None) -> list[str]:
    if phase_id and not project_id:
        raise ValidationError("phase_id requires project_id")
    if project_id:
        validate_project_id(project_id)
        if phase_id:
            validate_phase_id(phase_id)
        if not store.project_exists(project_id):
            raise NotFoundError("project", project_id)
        return [project_id]
    return store.list_project_ids()


# =============================================================================
# Payload builders (plain functions, shared by the tools and the tests)
# =============================================================================


def project_status_payload(
    store: EntityStore, project_id: str, phase_id: str | None = None
) -> dict[str, Any]:
    try:
        validate_project_id(project_id)
        if phase_id:
            validate_phase_id(phase_id)
        if not store.project_exists(project_id):
            raise NotFoundError("project", project_id)
        report = build_project_status(load_snapshot(store, project_id), phase_id)
    except TaskTreeError as e:
        return _failure(e, report=None)
    counts = report.counts
    return {
        "success": True,
        "report": report.to_dict(),
        "message": (
            f"{project_id}: {counts.total} tasks, {counts.done} done, {counts.in_progress} in progress, "
            f"{counts.ready} ready, {counts.blocked} blocked"
        ),
    }


def blocked_tasks_payload(
    store: EntityStore, project_id: str | None = None, phase_id: str | None = None
) -> dict[str, Any]:
    try:
        reports = [
            build_blocked_report(load_snapshot(store, pid), phase_id)
            for pid in _scope(store, project_id, phase_id)
        ]
    except TaskTreeError as e:
        return _failure(e, reports=[])
    total = sum(len(r.items) for r in reports)
    return {
        "success": True,
        "reports": [r.to_dict() for r in reports],
        "message": f"{total} blocked task(s) across {len(reports)} project(s)",
    }


def dependency_chains_payload(
    store: EntityStore, project_id: str | None = None, phase_id: str | None = None
) -> dict[str, Any]:
    try:
        reports = [
            build_dependency_report(load_snapshot(store, pid), phase_id)
            for pid in _scope(store, project_id, phase_id)
        ]
    except TaskTreeError as e:
        return _failure(e, reports=[])
    cycles = sum(len(r.cycles) for r in reports)
    message = f"{sum(len(r.items) for r in reports)} task(s) with dependencies"
    if cycles:
        message += f"; {cycles} dependency cycle(s) found"
    return {"success": True, "reports": [r.to_dict() for r in reports], "message": message}


def active_tasks_payload(
    store: EntityStore, project_id: str | None = None, phase_id: str | None = None
) -> dict[str, Any]:
    try:
        reports = [
            build_active_report(load_snapshot(store, pid), phase_id)
            for pid in _scope(store, project_id, phase_id)
        ]
    except TaskTreeError as e:
        return _failure(e, reports=[])
    total = sum(len(r.items) for r in reports)
    return {
        "success": True,
        "reports": [r.to_dict() for r in reports],
        "message": f"{total} active task(s)",
    }


def get_task_payload(store: EntityStore, task_id: str, project_id: str | None = None) -> dict[str, Any]:
    try:
        task = store.find_task(task_id, project_id)
    except TaskTreeError as e:
        return _failure(e, task=None)
    state = load_snapshot(store, task.project_id).graph.state(task.id)
    data = task.to_dict()
    data["classification"] = state.classification.value if state else None
    data["blocked_by"] = state.blocker_names() if state else []
    return {"success": True, "task": data, "message": f"Found task: {task.title}"}


def update_task_status_payload(
    store: EntityStore, task_id: str, status: str, project_id: str | None = None
) -> dict[str, Any]:
    try:
        result = LifecycleController(store).request_transition(task_id, status, project_id)
    except TaskTreeError as e:
        return _failure(e, result=None)
    if result.success:
        message = (
            f"Task {task_id} moved to {result.to_status.value}"
            if result.changed
            else f"Task {task_id} already {result.to_status.value}"
        )
    else:
        message = result.error or "Transition rejected"
    payload = {"success": result.success, "result": result.to_dict(), "message": message}
    if not result.success:
        payload["error_kind"] = result.kind
    return payload


# =============================================================================
# MCP tools
# =============================================================================


@mcp.tool()
def project_status(project_id: str, phase_id: str | None = None) -> dict[str, Any]:
    """Status overview of a project.

    Args:
        project_id: Project id (e.g., "web-app")
        phase_id: Optional phase to restrict the report to (e.g., "P1")

    Returns:
        Dictionary with:
        - success: True if the report was built
        - report: counts plus blocked and priority-ordered ready tasks
        - message: One-line summary
    """
    try:
        return project_status_payload(_get_store(), project_id, phase_id)
    except Exception as e:
        logger.exception("project_status failed")
        return {"success": False, "report": None, "message": f"Failed to build status: {e}"}


@mcp.tool()
def blocked_tasks(project_id: str | None = None, phase_id: str | None = None) -> dict[str, Any]:
    """Tasks that cannot start because a dependency is not done.

    Args:
        project_id: Restrict to one project (default: all projects)
        phase_id: Restrict to one phase (requires project_id)

    Returns:
        Dictionary with success, per-project reports and message
    """
    try:
        return blocked_tasks_payload(_get_store(), project_id, phase_id)
    except Exception as e:
        logger.exception("blocked_tasks failed")
        return {"success": False, "reports": [], "message": f"Failed to list blocked tasks: {e}"}


@mcp.tool()
def dependency_chains(project_id: str | None = None, phase_id: str | None = None) -> dict[str, Any]:
    """Dependencies of every task with each dependency's status, plus any cycles."""
    try:
        return dependency_chains_payload(_get_store(), project_id, phase_id)
    except Exception as e:
        logger.exception("dependency_chains failed")
        return {"success": False, "reports": [], "message": f"Failed to build dependency chains: {e}"}


@mcp.tool()
def active_tasks(project_id: str | None = None, phase_id: str | None = None) -> dict[str, Any]:
    """Tasks that are ready to start or in progress with no unmet dependencies."""
    try:
        return active_tasks_payload(_get_store(), project_id, phase_id)
    except Exception as e:
        logger.exception("active_tasks failed")
        return {"success": False, "reports": [], "message": f"Failed to list active tasks: {e}"}


@mcp.tool()
def get_task(task_id: str, project_id: str | None = None) -> dict[str, Any]:
    """Get one task with its derived classification and blockers.

    Args:
        task_id: Task id (e.g., "T1.2")
        project_id: Owning project; searched across projects when omitted
    """
    try:
        return get_task_payload(_get_store(), task_id, project_id)
    except Exception as e:
        logger.exception("get_task failed")
        return {"success": False, "task": None, "message": f"Failed to load task: {e}"}


@mcp.tool()
def update_task_status(task_id: str, status: str, project_id: str | None = None) -> dict[str, Any]:
    """Move a task through its lifecycle.

    Legal moves: todo -> in_progress (only when every dependency is done),
    in_progress -> todo, in_progress -> done. With the review stage enabled,
    in_progress -> review -> done and review -> in_progress. Done is terminal.

    Args:
        task_id: Task id (e.g., "T1.2")
        status: Target status
        project_id: Owning project; searched across projects when omitted

    Returns:
        Dictionary with:
        - success: True if the transition was applied (or was a no-op)
        - result: from/to status, rejection kind and blockers
        - error_kind: already_done, skip_stage, still_blocked or not_found on rejection
        - message: Outcome, naming the remedy on rejection
    """
    try:
        return update_task_status_payload(_get_store(), task_id, status, project_id)
    except Exception as e:
        logger.exception("update_task_status failed")
        return {"success": False, "result": None, "message": f"Failed to update task: {e}"}


def main() -> None:
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    mcp.run()


if __name__ == "__main__":
    main()

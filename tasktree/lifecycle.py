#!/usr/bin/env python3
"""Status lifecycle controller.

Every status change goes through one table of legal (from, to) pairs, each
with a guard. The default lifecycle is

    todo -> in_progress -> done

and with ``review_stage`` enabled

    todo -> in_progress -> review -> done

``done`` is terminal. Starting work requires every dependency to be done;
that guard reads the blocking state computed by the dependency graph, so
"blocked" stays derived and is never written.

Rejections are returned as typed results (``already_done``, ``skip_stage``,
``still_blocked``, ``not_found``) and leave the record untouched. Accepted
changes refresh ``updated`` and are written back atomically.

Usage:
    controller = LifecycleController(store)
    result = controller.request_transition("T1.2", "in_progress", project_id="web")
    if not result.success:
        print(f"Transition failed: {result.error}")
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from tasktree.config import Settings
from tasktree.errors import NotFoundError, TransitionError, ValidationError
from tasktree.graph import DependencyGraph, TaskState
from tasktree.ids import validate_project_id, validate_task_id
from tasktree.models import Priority, Task, TaskStatus
from tasktree.storage import EntityStore

logger = logging.getLogger(__name__)

ALREADY_DONE = "already_done"
SKIP_STAGE = "skip_stage"
STILL_BLOCKED = "still_blocked"
NOT_FOUND = "not_found"

# Accepted spellings on input, in addition to the enum values
STATUS_INPUT_ALIASES = {
    "in-progress": "in_progress",
    "inprogress": "in_progress",
    "start": "in_progress",
    "started": "in_progress",
    "completed": "done",
    "complete": "done",
    "pending": "todo",
}


@dataclass
class TransitionResult:
    """Outcome of a status or field update request."""

    success: bool
    task_id: str
    from_status: TaskStatus | None
    to_status: TaskStatus | None
    kind: str | None = None
    error: str | None = None
    blockers: list[str] = field(default_factory=list)
    changed: bool = False
    task: Task | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "task_id": self.task_id,
            "from": self.from_status.value if self.from_status else None,
            "to": self.to_status.value if self.to_status else None,
            "kind": self.kind,
            "error": self.error,
            "blockers": list(self.blockers),
            "changed": self.changed,
        }


# Guards take (state, settings) and return (ok, error message)
GuardFunc = Callable[[TaskState, Settings], tuple[bool, str | None]]


def _guard_always_pass(state: TaskState, settings: Settings) -> tuple[bool, str | None]:
    return True, None


def _guard_dependencies_met(state: TaskState, settings: Settings) -> tuple[bool, str | None]:
    """Guard: a task may only be started once every dependency is done."""
    if not state.is_blocked:
        return True, None
    names = ", ".join(state.blocker_names())
    return False, f"Task {state.task.id} is blocked by: {names}. Complete those dependencies first."


def _guard_review_stage_off(state: TaskState, settings: Settings) -> tuple[bool, str | None]:
    """Guard: with the review stage on, in_progress work must pass through review."""
    if not settings.review_stage:
        return True, None
    return False, (
        f"Cannot move {state.task.id} from in_progress to done while the review stage "
        "is enabled. Move it to review first."
    )


@dataclass(frozen=True)
class TransitionRule:
    guard: GuardFunc
    trigger: str
    failure_kind: str = SKIP_STAGE


# Transition table: (from_status, to_status) -> rule
# Pairs absent from the table are rejected; done has no outgoing transitions.
TRANSITION_TABLE: dict[tuple[TaskStatus, TaskStatus], TransitionRule] = {
    # From TODO
    (TaskStatus.TODO, TaskStatus.IN_PROGRESS): TransitionRule(
        _guard_dependencies_met, "start_work", STILL_BLOCKED
    ),
    # From IN_PROGRESS
    (TaskStatus.IN_PROGRESS, TaskStatus.TODO): TransitionRule(_guard_always_pass, "stop_work"),
    (TaskStatus.IN_PROGRESS, TaskStatus.DONE): TransitionRule(_guard_review_stage_off, "complete"),
    (TaskStatus.IN_PROGRESS, TaskStatus.REVIEW): TransitionRule(
        _guard_always_pass, "submit_for_review"
    ),
    # From REVIEW
    (TaskStatus.REVIEW, TaskStatus.DONE): TransitionRule(_guard_always_pass, "approve"),
    (TaskStatus.REVIEW, TaskStatus.IN_PROGRESS): TransitionRule(
        _guard_always_pass, "changes_requested"
    ),
}


def _intermediate_status(from_status: TaskStatus, to_status: TaskStatus) -> TaskStatus | None:
    """Status that links from_status to to_status in two table steps, if any."""
    for (src, mid) in TRANSITION_TABLE:
        if src == from_status and (mid, to_status) in TRANSITION_TABLE:
            return mid
    return None


def parse_status(value: TaskStatus | str, review_stage: bool = False) -> TaskStatus:
    """Parse a requested target status.

    Raises:
        ValidationError: If the value names no status, or names ``review``
            while the review stage is disabled
    """
    if isinstance(value, TaskStatus):
        status = value
    else:
        raw = str(value).strip().lower()
        raw = STATUS_INPUT_ALIASES.get(raw, raw)
        if raw == "blocked":
            raise ValidationError(
                "'blocked' cannot be set directly; a task is blocked while any dependency is not done"
            )
        try:
            status = TaskStatus(raw)
        except ValueError:
            choices = ", ".join(s.value for s in TaskStatus if review_stage or s != TaskStatus.REVIEW)
            raise ValidationError(f"Unknown status '{value}' (expected one of: {choices})") from None
    if status == TaskStatus.REVIEW and not review_stage:
        raise ValidationError("Status 'review' requires the review stage to be enabled")
    return status


def parse_priority(value: Priority | str) -> Priority:
    """Parse a priority value.

    Raises:
        ValidationError: If the value names no priority
    """
    if isinstance(value, Priority):
        return value
    try:
        return Priority(str(value).strip().lower())
    except ValueError:
        choices = ", ".join(p.value for p in Priority)
        raise ValidationError(f"Unknown priority '{value}' (expected one of: {choices})") from None


class LifecycleController:
    """Checks and applies task updates against the dependency graph.

    Args:
        store: Entity store to read from and write to
        clock: Timestamp source for ``updated``; defaults to the store's clock
    """

    def __init__(self, store: EntityStore, clock: Callable[[], datetime] | None = None):
        self.store = store
        self.settings = store.settings
        self.clock = clock or store.clock

    def _project_graph(self, task: Task) -> DependencyGraph:
        """Graph of the task's project, with ``task`` in place of its stored copy."""
        tasks = [t for t in self.store.load_project_tasks(task.project_id).tasks if t.id != task.id]
        tasks.append(task)
        return DependencyGraph(tasks, self.settings.unresolved_dependencies)

    def check_transition(self, state: TaskState, to_status: TaskStatus) -> TransitionResult:
        """Decide whether ``state.task`` may move to ``to_status``. Never writes."""
        task = state.task
        from_status = task.status

        if from_status == to_status:
            return TransitionResult(True, task.id, from_status, to_status, task=task)

        if from_status == TaskStatus.DONE:
            return TransitionResult(
                False,
                task.id,
                from_status,
                to_status,
                kind=ALREADY_DONE,
                error=(
                    f"Cannot change status of {task.id} from done to {to_status.value}: "
                    "done is terminal. Create a follow-up task instead."
                ),
                task=task,
            )

        rule = TRANSITION_TABLE.get((from_status, to_status))
        if rule is None:
            mid = _intermediate_status(from_status, to_status)
            remedy = f" Move it to {mid.value} first." if mid else ""
            return TransitionResult(
                False,
                task.id,
                from_status,
                to_status,
                kind=SKIP_STAGE,
                error=(
                    f"Cannot move {task.id} directly from {from_status.value} "
                    f"to {to_status.value}.{remedy}"
                ),
                task=task,
            )

        ok, message = rule.guard(state, self.settings)
        if not ok:
            blockers = state.blocker_names() if rule.failure_kind == STILL_BLOCKED else []
            return TransitionResult(
                False,
                task.id,
                from_status,
                to_status,
                kind=rule.failure_kind,
                error=message,
                blockers=blockers,
                task=task,
            )

        return TransitionResult(True, task.id, from_status, to_status, task=task)

    def update_task(
        self,
        task_id: str,
        project_id: str | None = None,
        *,
        status: TaskStatus | str | None = None,
        title: str | None = None,
        priority: Priority | str | None = None,
        assignee: str | None = None,
        add_dependencies: Iterable[str] = (),
        remove_dependencies: Iterable[str] = (),
    ) -> TransitionResult:
        """Apply field edits and an optional status change as one write.

        Inputs are validated before any file is read. The status check sees
        the task with its edited dependency list, and a rejected status
        change discards the field edits too.

        Args:
            task_id: Task to update
            project_id: Owning project; searched across projects when None
            status: Target status
            title: New title
            priority: New priority
            assignee: New assignee ("" clears it)
            add_dependencies: Dependency ids to append (duplicates ignored)
            remove_dependencies: Dependency ids to drop

        Returns:
            TransitionResult; ``changed`` tells whether the file was rewritten

        Raises:
            ValidationError: On malformed ids or values
            ConflictError: If the task id is ambiguous across projects
        """
        validate_task_id(task_id)
        if project_id is not None:
            validate_project_id(project_id)
        target = parse_status(status, self.settings.review_stage) if status is not None else None
        new_priority = parse_priority(priority) if priority is not None else None
        add_dependencies = [validate_task_id(d) for d in add_dependencies]
        remove_dependencies = [validate_task_id(d) for d in remove_dependencies]
        if task_id in add_dependencies:
            raise ValidationError(f"Task {task_id} cannot depend on itself")

        try:
            task = self.store.find_task(task_id, project_id)
        except NotFoundError as e:
            return TransitionResult(
                False, task_id, None, target, kind=NOT_FOUND, error=str(e)
            )

        edited = False
        if title is not None and title != task.title:
            task.title = title
            edited = True
        if new_priority is not None and new_priority != task.priority:
            task.priority = new_priority
            edited = True
        if assignee is not None and (assignee or None) != task.assignee:
            task.assignee = assignee or None
            edited = True
        for dep_id in add_dependencies:
            if dep_id not in task.dependency_ids:
                task.dependency_ids.append(dep_id)
                edited = True
        for dep_id in remove_dependencies:
            if dep_id in task.dependency_ids:
                task.dependency_ids.remove(dep_id)
                edited = True

        from_status = task.status
        if target is not None and target != from_status:
            state = self._project_graph(task).state(task.id)
            result = self.check_transition(state, target)
            if not result.success:
                logger.info(
                    "Rejected %s: %s -> %s (%s)", task.id, from_status.value, target.value, result.kind
                )
                return result
            task.status = target

        if not edited and task.status == from_status:
            return TransitionResult(True, task.id, from_status, task.status, task=task)

        task.updated = self.clock()
        self.store.save_task(task)
        if task.status != from_status:
            logger.info("Task %s: %s -> %s", task.id, from_status.value, task.status.value)
        return TransitionResult(True, task.id, from_status, task.status, changed=True, task=task)

    def request_transition(
        self,
        task_id: str,
        new_status: TaskStatus | str,
        project_id: str | None = None,
    ) -> TransitionResult:
        """Request a status change; rejections come back as a failed result.

        Raises:
            ValidationError: If the id or target status is malformed
        """
        return self.update_task(task_id, project_id, status=new_status)

    def transition(
        self,
        task_id: str,
        new_status: TaskStatus | str,
        project_id: str | None = None,
    ) -> Task:
        """Raising form of request_transition.

        Raises:
            ValidationError: If the id or target status is malformed
            NotFoundError: If the task does not exist
            TransitionError: If the transition is rejected
        """
        result = self.request_transition(task_id, new_status, project_id)
        if result.success and result.task is not None:
            return result.task
        if result.kind == NOT_FOUND:
            raise NotFoundError("task", task_id, f"project '{project_id}'" if project_id else None)
        raise TransitionError(
            result.error or "transition rejected",
            kind=result.kind or SKIP_STAGE,
            from_status=result.from_status.value if result.from_status else "",
            to_status=result.to_status.value if result.to_status else "",
            blockers=result.blockers,
        )

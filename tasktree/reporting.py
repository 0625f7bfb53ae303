"""Status reporting over the dependency graph.

Builders turn a project snapshot into plain report dataclasses (with
``to_dict()`` for JSON and MCP output); renderers turn those into text.
Neither side writes anything, and ordering is fixed (natural id order,
ready lists by priority), so two reports over unchanged data are identical.

Usage:
    snap = load_snapshot(store, "web")
    print(render_project_status(build_project_status(snap)))
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from tasktree.errors import PartialReadError
from tasktree.graph import Classification, DependencyGraph, TaskState
from tasktree.models import Phase, Project, Task, format_timestamp
from tasktree.storage import EntityStore

logger = logging.getLogger(__name__)


@dataclass
class ProjectSnapshot:
    """Everything one report needs about a project, read once."""

    project_id: str
    name: str
    graph: DependencyGraph
    warnings: list[PartialReadError] = field(default_factory=list)
    review_stage: bool = False


def load_snapshot(store: EntityStore, project_id: str) -> ProjectSnapshot:
    """Load a project's tasks and classify them.

    A missing project yields an empty snapshot; an unreadable project file
    falls back to the id as its name.
    """
    result = store.load_project_tasks(project_id)
    warnings = list(result.warnings)
    name = project_id
    try:
        name = store.load_project(project_id).name
    except PartialReadError as e:
        logger.warning("%s", e)
        warnings.append(e)
    except LookupError:
        pass
    graph = DependencyGraph(result.tasks, store.settings.unresolved_dependencies)
    return ProjectSnapshot(project_id, name, graph, warnings, store.settings.review_stage)


def _in_scope(state: TaskState, phase_id: str | None) -> bool:
    return phase_id is None or state.task.phase_id == phase_id


# ---------------------------------------------------------------------------
# Report structures
# ---------------------------------------------------------------------------


@dataclass
class StatusCounts:
    total: int = 0
    done: int = 0
    in_progress: int = 0
    in_review: int = 0
    ready: int = 0
    blocked: int = 0


@dataclass
class BlockedItem:
    task_id: str
    title: str
    priority: str
    phase_id: str | None
    blocked_by: list[str]


@dataclass
class ReadyItem:
    task_id: str
    title: str
    priority: str
    phase_id: str | None


@dataclass
class ProjectStatusReport:
    project_id: str
    name: str
    phase_id: str | None
    counts: StatusCounts
    blocked: list[BlockedItem]
    ready: list[ReadyItem]
    cycles: list[list[str]]
    skipped_records: int = 0
    review_stage: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BlockedReport:
    project_id: str
    phase_id: str | None
    items: list[BlockedItem]
    skipped_records: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DependencyLink:
    task_id: str
    title: str | None
    status: str | None
    # None when the id matches no task in the project
    met: bool | None


@dataclass
class DependencyItem:
    task_id: str
    title: str
    status: str
    dependencies: list[DependencyLink]


@dataclass
class DependencyReport:
    project_id: str
    phase_id: str | None
    items: list[DependencyItem]
    cycles: list[list[str]]
    skipped_records: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ActiveItem:
    task_id: str
    title: str
    phase_id: str | None
    status: str
    priority: str
    assignee: str | None
    updated: str | None


@dataclass
class ActiveReport:
    project_id: str
    phase_id: str | None
    items: list[ActiveItem]
    skipped_records: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def _blocked_item(state: TaskState) -> BlockedItem:
    task = state.task
    return BlockedItem(
        task_id=task.id,
        title=task.title,
        priority=task.priority.value,
        phase_id=task.phase_id,
        blocked_by=state.blocker_names(),
    )


def build_project_status(snap: ProjectSnapshot, phase_id: str | None = None) -> ProjectStatusReport:
    """Counts, blocked list and priority-ordered ready list for one project."""
    states = [s for s in snap.graph.states() if _in_scope(s, phase_id)]
    counts = StatusCounts(total=len(states))
    for state in states:
        if state.classification == Classification.DONE:
            counts.done += 1
        elif state.classification == Classification.IN_PROGRESS:
            counts.in_progress += 1
        elif state.classification == Classification.IN_REVIEW:
            counts.in_review += 1
        elif state.classification == Classification.READY:
            counts.ready += 1
        else:
            counts.blocked += 1

    ready = [
        ReadyItem(s.task.id, s.task.title, s.task.priority.value, s.task.phase_id)
        for s in snap.graph.ready()
        if _in_scope(s, phase_id)
    ]
    return ProjectStatusReport(
        project_id=snap.project_id,
        name=snap.name,
        phase_id=phase_id,
        counts=counts,
        blocked=[_blocked_item(s) for s in snap.graph.blocked() if _in_scope(s, phase_id)],
        ready=ready,
        cycles=snap.graph.find_cycles(),
        skipped_records=len(snap.warnings),
        review_stage=snap.review_stage,
    )


def build_blocked_report(snap: ProjectSnapshot, phase_id: str | None = None) -> BlockedReport:
    return BlockedReport(
        project_id=snap.project_id,
        phase_id=phase_id,
        items=[_blocked_item(s) for s in snap.graph.blocked() if _in_scope(s, phase_id)],
        skipped_records=len(snap.warnings),
    )


def build_dependency_report(snap: ProjectSnapshot, phase_id: str | None = None) -> DependencyReport:
    """Every task that has dependencies, with the status of each dependency."""
    items: list[DependencyItem] = []
    for state in snap.graph.states():
        task = state.task
        if not task.dependency_ids or not _in_scope(state, phase_id):
            continue
        links: list[DependencyLink] = []
        for dep_id in task.dependency_ids:
            dep = snap.graph.tasks.get(dep_id)
            if dep is None:
                links.append(DependencyLink(dep_id, None, None, None))
            else:
                links.append(DependencyLink(dep.id, dep.title, dep.status.value, dep.is_done))
        items.append(DependencyItem(task.id, task.title, task.status.value, links))
    return DependencyReport(
        project_id=snap.project_id,
        phase_id=phase_id,
        items=items,
        cycles=snap.graph.find_cycles(),
        skipped_records=len(snap.warnings),
    )


_WORKING = (Classification.IN_PROGRESS, Classification.IN_REVIEW)


def _is_active(state: TaskState) -> bool:
    """Ready to pick up, or being worked on with nothing outstanding."""
    if state.classification == Classification.READY:
        return True
    if state.classification in _WORKING:
        return not state.blockers and not state.unresolved_blocks
    return False


def build_active_report(snap: ProjectSnapshot, phase_id: str | None = None) -> ActiveReport:
    items = [
        ActiveItem(
            task_id=s.task.id,
            title=s.task.title,
            phase_id=s.task.phase_id,
            status=s.task.status.value,
            priority=s.task.priority.value,
            assignee=s.task.assignee,
            updated=format_timestamp(s.task.updated),
        )
        for s in snap.graph.states()
        if _in_scope(s, phase_id) and _is_active(s)
    ]
    return ActiveReport(snap.project_id, phase_id, items, len(snap.warnings))


# ---------------------------------------------------------------------------
# Text renderers
# ---------------------------------------------------------------------------


def _heading(title: str) -> list[str]:
    return [title, "=" * len(title)]


def _footer(cycles: list[list[str]], skipped: int) -> list[str]:
    lines: list[str] = []
    if cycles:
        lines.append("")
        lines.append("⚠️  Dependency cycles (these tasks can never all become ready):")
        for cycle in cycles:
            lines.append(f"  • {' → '.join(cycle)}")
    if skipped:
        lines.append("")
        lines.append(f"⚠️  Skipped {skipped} unreadable record(s); run with --verbose for details")
    return lines


def render_project_status(report: ProjectStatusReport) -> str:
    label = report.project_id if report.name == report.project_id else f"{report.name} ({report.project_id})"
    lines = _heading(f"Project Status: {label}")
    if report.phase_id:
        lines.append(f"Phase: {report.phase_id}")
    counts = report.counts
    lines.append(f"Total Tasks: {counts.total}")
    lines.append(f"✅ Done: {counts.done}")
    lines.append(f"🔄 In Progress: {counts.in_progress}")
    if report.review_stage:
        lines.append(f"👀 In Review: {counts.in_review}")
    lines.append(f"📋 Ready to Start: {counts.ready}")
    lines.append(f"🚫 Blocked: {counts.blocked}")

    if report.blocked:
        lines.append("")
        lines.append("🚫 Blocked Tasks:")
        for item in report.blocked:
            lines.append(f"  • {item.title} (blocked by: {', '.join(item.blocked_by)})")

    if report.ready:
        lines.append("")
        lines.append("📋 Ready to Work On:")
        for item in report.ready:
            lines.append(f"  • {item.title} ({item.priority} priority)")

    lines.extend(_footer(report.cycles, report.skipped_records))
    return "\n".join(lines)


def render_blocked(report: BlockedReport) -> str:
    lines = _heading(f"Blocked Tasks in {report.project_id}:")
    if not report.items:
        lines.append("✅ No blocked tasks! All tasks are ready to work on.")
    for item in report.items:
        lines.append(f"🚫 {item.title}")
        lines.append(f"   Priority: {item.priority}")
        lines.append(f"   Blocked by: {', '.join(item.blocked_by)}")
        lines.append("")
    lines.extend(_footer([], report.skipped_records))
    return "\n".join(lines).rstrip("\n")


def render_all_blocked(reports: list[BlockedReport]) -> str:
    sections = ["\n".join(_heading("All Blocked Tasks:"))]
    sections.extend(render_blocked(r) for r in reports)
    if not reports:
        sections.append("No projects found.")
    return "\n\n".join(sections)


def _link_line(link: DependencyLink) -> str:
    if link.met is None:
        return f"     ❓ {link.task_id} (not found)"
    marker = "✅" if link.met else "❌"
    return f"     {marker} {link.title} ({link.status})"


def render_dependencies(report: DependencyReport) -> str:
    lines = _heading(f"Dependency Chain for {report.project_id}:")
    if not report.items:
        lines.append("No task dependencies defined.")
    for item in report.items:
        lines.append(f"📋 {item.title}")
        lines.append(f"   Status: {item.status}")
        lines.append("   Depends on:")
        lines.extend(_link_line(link) for link in item.dependencies)
        lines.append("")
    lines.extend(_footer(report.cycles, report.skipped_records))
    return "\n".join(lines).rstrip("\n")


def render_all_dependencies(reports: list[DependencyReport]) -> str:
    if not reports:
        return "No projects found."
    return "\n\n".join(render_dependencies(r) for r in reports)


def _active_lines(items: list[ActiveItem]) -> list[str]:
    lines: list[str] = []
    for item in items:
        lines.append(f"  ID: {item.task_id}")
        lines.append(f"  Title: {item.title}")
        if item.phase_id:
            lines.append(f"  Phase: {item.phase_id}")
        lines.append(f"  Status: {item.status}")
        lines.append(f"  Priority: {item.priority}")
        if item.assignee:
            lines.append(f"  Assignee: {item.assignee}")
        lines.append(f"  Updated: {item.updated}")
        lines.append("  ---")
    return lines


def render_active(report: ActiveReport) -> str:
    lines = _heading(f"Active Tasks for project: {report.project_id}")
    if report.items:
        lines.extend(_active_lines(report.items))
    else:
        lines.append("No active tasks found.")
    lines.extend(_footer([], report.skipped_records))
    return "\n".join(lines)


def render_all_active(reports: list[ActiveReport]) -> str:
    lines = _heading("All Active Tasks")
    for report in reports:
        title = f"📁 Project: {report.project_id}"
        lines.append("")
        lines.append(title)
        lines.append("-" * len(title))
        if report.items:
            lines.extend(_active_lines(report.items))
        else:
            lines.append("  No active tasks found")
    if not any(r.items for r in reports):
        lines.append("")
        lines.append("No active tasks found across all projects.")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


def render_project_list(projects: list[Project]) -> str:
    if not projects:
        return "No projects found."
    lines = _heading("Projects")
    for project in projects:
        owner = f", owner: {project.owner}" if project.owner else ""
        lines.append(f"  {project.id}  {project.name} [{project.status.value}{owner}]")
    return "\n".join(lines)


def render_phase_list(project_id: str, phases: list[Phase]) -> str:
    if not phases:
        return f"No phases found in project {project_id}."
    lines = _heading(f"Phases in {project_id}")
    for phase in phases:
        lines.append(f"  {phase.id}  {phase.name} [{phase.status.value}]")
        if phase.goal:
            lines.append(f"      Goal: {phase.goal}")
    return "\n".join(lines)


_MARKERS = {
    Classification.DONE: "✅",
    Classification.IN_PROGRESS: "🔄",
    Classification.IN_REVIEW: "👀",
    Classification.READY: "📋",
    Classification.BLOCKED: "🚫",
}


def render_task_list(snap: ProjectSnapshot, phase_id: str | None = None) -> str:
    states = [s for s in snap.graph.states() if _in_scope(s, phase_id)]
    scope = f"{snap.project_id}/{phase_id}" if phase_id else snap.project_id
    if not states:
        return f"No tasks found in {scope}."
    lines = _heading(f"Tasks in {scope}")
    for state in states:
        task = state.task
        marker = _MARKERS[state.classification]
        lines.append(f"  {marker} {task.id}  {task.title} [{task.status.value}, {task.priority.value}]")
    lines.extend(_footer([], len(snap.warnings)))
    return "\n".join(lines)


def render_task_detail(task: Task, state: TaskState | None) -> str:
    lines = _heading(f"Task {task.id}: {task.title}")
    lines.append(f"Project: {task.project_id}")
    if task.phase_id:
        lines.append(f"Phase: {task.phase_id}")
    lines.append(f"Status: {task.status.value}")
    if state is not None and state.is_blocked:
        lines.append(f"Blocked by: {', '.join(state.blocker_names())}")
    lines.append(f"Priority: {task.priority.value}")
    if task.assignee:
        lines.append(f"Assignee: {task.assignee}")
    lines.append(f"Reporter: {task.reporter}")
    lines.append(f"Created: {format_timestamp(task.created)}")
    lines.append(f"Updated: {format_timestamp(task.updated)}")
    if task.dependency_ids:
        lines.append(f"Depends on: {', '.join(task.dependency_ids)}")
    if task.description:
        lines.append("")
        lines.append(task.description.rstrip())
    return "\n".join(lines)

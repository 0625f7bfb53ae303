#!/usr/bin/env python3
"""Command-line interface for tasktree.

Usage:
    tasktree project create web --name "Web App"
    tasktree phase create P1 --project web --name "Foundation"
    tasktree task create T1.1 --project web --phase P1 --title "Schema"
    tasktree task update T1.2 --project web --status in_progress
    tasktree status project web
    tasktree status blocked
    tasktree status dependencies --project web
    tasktree status active --json

Exit codes:
    0 - success
    1 - transition rejected, record missing or operation failed
    2 - malformed identifier or value (nothing was read or written)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from tasktree import __version__
from tasktree.config import Settings, load_settings
from tasktree.errors import ConfigError, NotFoundError, TaskTreeError, ValidationError
from tasktree.ids import validate_phase_id, validate_project_id
from tasktree.lifecycle import LifecycleController
from tasktree.models import Priority
from tasktree.reporting import (
    build_active_report,
    build_blocked_report,
    build_dependency_report,
    build_project_status,
    load_snapshot,
    render_active,
    render_all_active,
    render_all_blocked,
    render_all_dependencies,
    render_blocked,
    render_dependencies,
    render_phase_list,
    render_project_list,
    render_project_status,
    render_task_detail,
    render_task_list,
)
from tasktree.storage import EntityStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)
    logging.getLogger().setLevel(level)


def _date(value: str) -> datetime:
    """argparse type for YYYY-MM-DD dates."""
    try:
        day = datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date '{value}' (expected YYYY-MM-DD)") from None
    return day.replace(tzinfo=UTC)


def _emit(payload: Any, as_json: bool, text: str) -> None:
    if as_json:
        print(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        print(text)


# ---------------------------------------------------------------------------
# project / phase / task
# ---------------------------------------------------------------------------


def cmd_project_create(args: argparse.Namespace, store: EntityStore) -> int:
    project = store.create_project(
        args.project_id, name=args.name, description=args.description or "", owner=args.owner
    )
    print(f"✅ Created project {project.id} ({project.name})")
    return EXIT_OK


def cmd_phase_create(args: argparse.Namespace, store: EntityStore) -> int:
    phase = store.create_phase(
        args.project,
        args.phase_id,
        name=args.name,
        goal=args.goal or "",
        start_date=args.start_date,
        end_date=args.end_date,
    )
    print(f"✅ Created phase {phase.id} in project {phase.project_id}")
    return EXIT_OK


def cmd_task_create(args: argparse.Namespace, store: EntityStore) -> int:
    task = store.create_task(
        args.project,
        args.task_id,
        phase_id=args.phase,
        title=args.title,
        priority=Priority(args.priority),
        assignee=args.assignee,
        description=args.description or "",
        dependency_ids=args.dependency or [],
    )
    where = f"{task.project_id}/{task.phase_id}" if task.phase_id else task.project_id
    print(f"✅ Created task {task.id} in {where}")
    return EXIT_OK


def cmd_task_show(args: argparse.Namespace, store: EntityStore) -> int:
    task = store.find_task(args.task_id, args.project)
    snap = load_snapshot(store, task.project_id)
    print(render_task_detail(task, snap.graph.state(task.id)))
    return EXIT_OK


def cmd_task_update(args: argparse.Namespace, store: EntityStore) -> int:
    controller = LifecycleController(store)
    result = controller.update_task(
        args.task_id,
        args.project,
        status=args.status,
        title=args.title,
        priority=args.priority,
        assignee=args.assignee,
        add_dependencies=args.add_dependency or [],
        remove_dependencies=args.remove_dependency or [],
    )
    if not result.success:
        print(f"❌ {result.error}", file=sys.stderr)
        return EXIT_FAILED
    if not result.changed:
        print(f"Task {result.task_id} unchanged")
    elif result.from_status != result.to_status:
        print(f"✅ Task {result.task_id}: {result.from_status.value} → {result.to_status.value}")
    else:
        print(f"✅ Updated task {result.task_id}")
    return EXIT_OK


# ---------------------------------------------------------------------------
# list
# ---------------------------------------------------------------------------


def cmd_list_projects(args: argparse.Namespace, store: EntityStore) -> int:
    projects, _ = store.list_projects()
    print(render_project_list(projects))
    return EXIT_OK


def cmd_list_phases(args: argparse.Namespace, store: EntityStore) -> int:
    if not store.project_exists(args.project):
        raise NotFoundError("project", args.project)
    phases, _ = store.list_phases(args.project)
    print(render_phase_list(args.project, phases))
    return EXIT_OK


def cmd_list_tasks(args: argparse.Namespace, store: EntityStore) -> int:
    validate_project_id(args.project)
    if args.phase:
        validate_phase_id(args.phase)
    if not store.project_exists(args.project):
        raise NotFoundError("project", args.project)
    print(render_task_list(load_snapshot(store, args.project), args.phase))
    return EXIT_OK


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


def _scoped_projects(args: argparse.Namespace, store: EntityStore) -> list[str]:
    """Validated project scope: the one given, or every project in the store."""
    if args.phase and not args.project:
        raise ValidationError("--phase requires --project")
    if args.project:
        validate_project_id(args.project)
        if args.phase:
            validate_phase_id(args.phase)
        if not store.project_exists(args.project):
            raise NotFoundError("project", args.project)
        return [args.project]
    return store.list_project_ids()


def cmd_status_project(args: argparse.Namespace, store: EntityStore) -> int:
    validate_project_id(args.project_id)
    if args.phase:
        validate_phase_id(args.phase)
    if not store.project_exists(args.project_id):
        raise NotFoundError("project", args.project_id)
    report = build_project_status(load_snapshot(store, args.project_id), args.phase)
    _emit(report.to_dict(), args.json, render_project_status(report))
    return EXIT_OK


def cmd_status_blocked(args: argparse.Namespace, store: EntityStore) -> int:
    reports = [
        build_blocked_report(load_snapshot(store, pid), args.phase)
        for pid in _scoped_projects(args, store)
    ]
    if args.project:
        _emit(reports[0].to_dict(), args.json, render_blocked(reports[0]))
    else:
        _emit([r.to_dict() for r in reports], args.json, render_all_blocked(reports))
    return EXIT_OK


def cmd_status_dependencies(args: argparse.Namespace, store: EntityStore) -> int:
    reports = [
        build_dependency_report(load_snapshot(store, pid), args.phase)
        for pid in _scoped_projects(args, store)
    ]
    if args.project:
        _emit(reports[0].to_dict(), args.json, render_dependencies(reports[0]))
    else:
        _emit([r.to_dict() for r in reports], args.json, render_all_dependencies(reports))
    return EXIT_OK


def cmd_status_active(args: argparse.Namespace, store: EntityStore) -> int:
    reports = [
        build_active_report(load_snapshot(store, pid), args.phase)
        for pid in _scoped_projects(args, store)
    ]
    if args.project:
        _emit(reports[0].to_dict(), args.json, render_active(reports[0]))
    else:
        _emit([r.to_dict() for r in reports], args.json, render_all_active(reports))
    return EXIT_OK


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tasktree",
        description="Dependency-aware project tracker over a synced file tree",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--root",
        default=None,
        help="Store root (default: $TASKTREE_ROOT or ~/Dropbox/project-management)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level to stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    # project
    project = sub.add_parser("project", help="Manage projects")
    project_sub = project.add_subparsers(dest="action", required=True)
    p = project_sub.add_parser("create", help="Create a project")
    p.add_argument("project_id")
    p.add_argument("--name")
    p.add_argument("--owner")
    p.add_argument("--description")
    p.set_defaults(func=cmd_project_create)

    # phase
    phase = sub.add_parser("phase", help="Manage phases")
    phase_sub = phase.add_subparsers(dest="action", required=True)
    p = phase_sub.add_parser("create", help="Create a phase")
    p.add_argument("phase_id", help="P<number>[-suffix] or BUGS")
    p.add_argument("--project", required=True)
    p.add_argument("--name")
    p.add_argument("--goal")
    p.add_argument("--start-date", type=_date, default=None)
    p.add_argument("--end-date", type=_date, default=None)
    p.set_defaults(func=cmd_phase_create)

    # task
    task = sub.add_parser("task", help="Manage tasks")
    task_sub = task.add_subparsers(dest="action", required=True)
    p = task_sub.add_parser("create", help="Create a task")
    p.add_argument("task_id", help="T<phase>.<number>[.<sub>|.B<n>][-suffix]")
    p.add_argument("--project", required=True)
    p.add_argument("--phase")
    p.add_argument("--title")
    p.add_argument("--priority", choices=[x.value for x in Priority], default=Priority.MEDIUM.value)
    p.add_argument("--assignee")
    p.add_argument("--description")
    p.add_argument("--dependency", action="append", metavar="TASK_ID", help="Repeatable")
    p.set_defaults(func=cmd_task_create)

    p = task_sub.add_parser("show", help="Show one task")
    p.add_argument("task_id")
    p.add_argument("--project")
    p.set_defaults(func=cmd_task_show)

    p = task_sub.add_parser("update", help="Update a task's fields or status")
    p.add_argument("task_id")
    p.add_argument("--project")
    p.add_argument("--status", help="todo, in_progress, review (when enabled) or done")
    p.add_argument("--priority", choices=[x.value for x in Priority])
    p.add_argument("--assignee", help='Use "" to clear')
    p.add_argument("--title")
    p.add_argument("--add-dependency", action="append", metavar="TASK_ID")
    p.add_argument("--remove-dependency", action="append", metavar="TASK_ID")
    p.set_defaults(func=cmd_task_update)

    # list
    listing = sub.add_parser("list", help="List records")
    list_sub = listing.add_subparsers(dest="action", required=True)
    p = list_sub.add_parser("projects")
    p.set_defaults(func=cmd_list_projects)
    p = list_sub.add_parser("phases")
    p.add_argument("--project", required=True)
    p.set_defaults(func=cmd_list_phases)
    p = list_sub.add_parser("tasks")
    p.add_argument("--project", required=True)
    p.add_argument("--phase")
    p.set_defaults(func=cmd_list_tasks)

    # status
    status = sub.add_parser("status", help="Dependency-aware status reports")
    status_sub = status.add_subparsers(dest="action", required=True)
    p = status_sub.add_parser("project", help="Project overview")
    p.add_argument("project_id")
    p.add_argument("--phase")
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_status_project)
    for name, func, help_text in (
        ("blocked", cmd_status_blocked, "Tasks blocked by dependencies"),
        ("dependencies", cmd_status_dependencies, "Dependency chains with their status"),
        ("active", cmd_status_active, "Tasks that can be worked on now"),
    ):
        p = status_sub.add_parser(name, help=help_text)
        p.add_argument("-p", "--project")
        p.add_argument("--phase")
        p.add_argument("--json", action="store_true")
        p.set_defaults(func=func)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings: Settings = load_settings(overrides={"store_root": args.root})
    except ConfigError as e:
        configure_logging("WARNING")
        print(f"❌ {e}", file=sys.stderr)
        return EXIT_INVALID

    configure_logging("INFO" if args.verbose else settings.log_level)
    store = EntityStore(settings)

    try:
        return args.func(args, store)
    except ValidationError as e:
        print(f"❌ {e}", file=sys.stderr)
        return EXIT_INVALID
    except TaskTreeError as e:
        print(f"❌ {e}", file=sys.stderr)
        return EXIT_FAILED
    except OSError as e:
        logger.exception("Store operation failed")
        print(f"❌ {e}", file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())

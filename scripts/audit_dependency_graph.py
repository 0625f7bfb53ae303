#!/usr/bin/env python3
"""Dependency graph audit.

Loads every project (or one) from the store and checks for:
- Self-dependencies (a task that can never start)
- Dependency cycles (tasks that can never all become ready)
- Dangling references (dependency ids that match no task in the project)
- Unreadable records skipped while loading
- Cross-phase dependencies (informational)

Output: markdown report or JSON, exit code based on severity
(0 = info only, 1 = warnings, 2 = critical).

Usage:
    python scripts/audit_dependency_graph.py                  # all projects
    python scripts/audit_dependency_graph.py --project web    # one project
    python scripts/audit_dependency_graph.py --json           # JSON only
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections import Counter
from datetime import UTC, datetime

from tasktree.config import load_settings
from tasktree.errors import TaskTreeError
from tasktree.graph import find_cycles
from tasktree.ids import validate_project_id
from tasktree.models import Task
from tasktree.storage import EntityStore, LoadResult

logger = logging.getLogger(__name__)


def check_self_dependencies(project_id: str, tasks: list[Task]) -> list[dict]:
    findings = []
    for task in tasks:
        if task.id in task.dependency_ids:
            findings.append(
                {
                    "check": "self_dependency",
                    "severity": "critical",
                    "project": project_id,
                    "task_id": task.id,
                    "detail": f"{task.title} depends on itself and can never start",
                }
            )
    return findings


def check_cycles(project_id: str, tasks: list[Task]) -> list[dict]:
    findings = []
    for cycle in find_cycles(tasks):
        if len(cycle) == 2:
            continue  # self-dependency, reported separately
        findings.append(
            {
                "check": "cycle",
                "severity": "warning",
                "project": project_id,
                "task_id": cycle[0],
                "detail": " → ".join(cycle),
            }
        )
    return findings


def check_dangling(project_id: str, tasks: list[Task]) -> list[dict]:
    known = {t.id for t in tasks}
    findings = []
    for task in tasks:
        missing = [d for d in task.dependency_ids if d not in known]
        if missing:
            findings.append(
                {
                    "check": "dangling_reference",
                    "severity": "warning",
                    "project": project_id,
                    "task_id": task.id,
                    "detail": f"depends on unknown task(s): {', '.join(missing)}",
                }
            )
    return findings


def check_cross_phase(project_id: str, tasks: list[Task]) -> list[dict]:
    phase_of = {t.id: t.phase_id for t in tasks}
    findings = []
    for task in tasks:
        for dep_id in task.dependency_ids:
            dep_phase = phase_of.get(dep_id)
            if dep_id in phase_of and dep_phase != task.phase_id:
                findings.append(
                    {
                        "check": "cross_phase",
                        "severity": "info",
                        "project": project_id,
                        "task_id": task.id,
                        "detail": f"depends on {dep_id} in phase {dep_phase or '(none)'}",
                    }
                )
    return findings


def check_unreadable(project_id: str, result: LoadResult) -> list[dict]:
    return [
        {
            "check": "unreadable_record",
            "severity": "warning",
            "project": project_id,
            "task_id": None,
            "detail": str(w),
        }
        for w in result.warnings
    ]


def audit_project(store: EntityStore, project_id: str) -> tuple[list[dict], int]:
    """Run every check over one project; returns (findings, task count)."""
    result = store.load_project_tasks(project_id)
    tasks = result.tasks
    findings: list[dict] = []
    findings.extend(check_self_dependencies(project_id, tasks))
    findings.extend(check_cycles(project_id, tasks))
    findings.extend(check_dangling(project_id, tasks))
    findings.extend(check_unreadable(project_id, result))
    findings.extend(check_cross_phase(project_id, tasks))
    return findings, len(tasks)


def exit_code_for(findings: list[dict]) -> int:
    severity_counts = Counter(f.get("severity") for f in findings)
    if severity_counts.get("critical", 0) > 0:
        return 2
    if severity_counts.get("warning", 0) > 0:
        return 1
    return 0


def generate_markdown_report(findings: list[dict], stats: dict, generated: str) -> str:
    lines = [
        "# Dependency Graph Audit",
        "",
        f"Generated: {generated}",
        f"Projects: {stats['projects']}, tasks: {stats['tasks']}",
        "",
    ]

    severity_counts = Counter(f.get("severity") for f in findings)
    lines.append("## Summary")
    lines.append("")
    lines.append(f"- Critical: {severity_counts.get('critical', 0)}")
    lines.append(f"- Warning: {severity_counts.get('warning', 0)}")
    lines.append(f"- Info: {severity_counts.get('info', 0)}")
    lines.append("")

    sections = [
        ("self_dependency", "Self-Dependencies"),
        ("cycle", "Dependency Cycles"),
        ("dangling_reference", "Dangling References"),
        ("unreadable_record", "Unreadable Records"),
        ("cross_phase", "Cross-Phase Dependencies"),
    ]
    for check, title in sections:
        matching = [f for f in findings if f["check"] == check]
        if not matching:
            continue
        lines.append(f"## {title}")
        lines.append("")
        for f in matching:
            severity = f.get("severity", "info").upper()
            ref = f"{f['project']}/{f['task_id']}" if f.get("task_id") else f["project"]
            lines.append(f"- [{severity}] `{ref}`: {f['detail']}")
        lines.append("")

    if not findings:
        lines.append("No issues found.")
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Audit task dependency graphs for structural issues")
    parser.add_argument("--root", default=None, help="Store root (default: $TASKTREE_ROOT)")
    parser.add_argument("--project", default=None, help="Audit a single project")
    parser.add_argument("--json", action="store_true", help="Output JSON instead of markdown")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        store = EntityStore(load_settings(overrides={"store_root": args.root}))
        project_ids = [validate_project_id(args.project)] if args.project else store.list_project_ids()
    except TaskTreeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    findings: list[dict] = []
    task_count = 0
    for project_id in project_ids:
        project_findings, count = audit_project(store, project_id)
        findings.extend(project_findings)
        task_count += count

    stats = {"projects": len(project_ids), "tasks": task_count}
    generated = datetime.now(UTC).isoformat()
    exit_code = exit_code_for(findings)

    if args.json:
        report_json = {
            "generated": generated,
            "stats": stats,
            "findings": findings,
            "severity_counts": dict(Counter(f.get("severity") for f in findings)),
            "exit_code": exit_code,
        }
        print(json.dumps(report_json, indent=2, ensure_ascii=False))
    else:
        print(generate_markdown_report(findings, stats, generated))

    return exit_code


if __name__ == "__main__":
    sys.exit(main())

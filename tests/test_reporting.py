"""Status reports: counts, blocker listing, dependency dump and determinism."""

import pytest

from tasktree.reporting import (
    build_active_report,
    build_blocked_report,
    build_dependency_report,
    build_project_status,
    load_snapshot,
    render_active,
    render_all_active,
    render_blocked,
    render_dependencies,
    render_project_status,
)
from tasktree.storage import EntityStore


@pytest.fixture
def project(store: EntityStore, write_task):
    store.create_project("web", name="Web App")
    write_task("web", "T1.1", title="Schema", status="done")
    write_task("web", "T1.2", title="API", priority="low", dependency_ids=["T1.1"])
    write_task("web", "T1.3", title="UI", dependency_ids=["T1.2", "T1.4"])
    write_task("web", "T1.4", title="Auth", priority="critical", status="in_progress")
    write_task("web", "T2.1", phase="P2", title="Deploy", dependency_ids=["T9.9"], assignee="ana")
    return store


def test_project_status_counts(project: EntityStore) -> None:
    report = build_project_status(load_snapshot(project, "web"))
    counts = report.counts
    assert (counts.total, counts.done, counts.in_progress, counts.ready, counts.blocked) == (5, 1, 1, 2, 1)
    assert report.name == "Web App"
    assert [b.task_id for b in report.blocked] == ["T1.3"]
    assert report.blocked[0].blocked_by == ["API", "Auth"]
    # medium before low
    assert [r.task_id for r in report.ready] == ["T2.1", "T1.2"]


def test_project_status_text(project: EntityStore) -> None:
    text = render_project_status(build_project_status(load_snapshot(project, "web")))
    assert text.startswith("Project Status: Web App (web)\n")
    assert "Total Tasks: 5" in text
    assert "📋 Ready to Start: 2" in text
    assert "🚫 Blocked: 1" in text
    assert "  • UI (blocked by: API, Auth)" in text
    assert "  • Deploy (medium priority)" in text
    assert "In Review" not in text


def test_phase_scope(project: EntityStore) -> None:
    report = build_project_status(load_snapshot(project, "web"), phase_id="P2")
    assert report.counts.total == 1
    assert [r.task_id for r in report.ready] == ["T2.1"]


def test_blocked_report(project: EntityStore) -> None:
    text = render_blocked(build_blocked_report(load_snapshot(project, "web")))
    assert "🚫 UI" in text
    assert "   Priority: medium" in text
    assert "   Blocked by: API, Auth" in text


def test_blocked_report_empty(store: EntityStore, write_task) -> None:
    write_task("api", "T1.1")
    text = render_blocked(build_blocked_report(load_snapshot(store, "api")))
    assert "✅ No blocked tasks! All tasks are ready to work on." in text


def test_dependency_dump_marks_each_dependency(project: EntityStore) -> None:
    report = build_dependency_report(load_snapshot(project, "web"))
    assert [i.task_id for i in report.items] == ["T1.2", "T1.3", "T2.1"]
    text = render_dependencies(report)
    assert "📋 UI\n   Status: todo\n   Depends on:\n     ❌ API (todo)\n     ❌ Auth (in_progress)" in text
    assert "     ✅ Schema (done)" in text
    assert "     ❓ T9.9 (not found)" in text


def test_dependency_dump_warns_about_cycles(store: EntityStore, write_task) -> None:
    write_task("loop", "T1.1", dependency_ids=["T1.2"])
    write_task("loop", "T1.2", dependency_ids=["T1.1"])
    text = render_dependencies(build_dependency_report(load_snapshot(store, "loop")))
    assert "Dependency cycles" in text
    assert "T1.1 → T1.2 → T1.1" in text


def test_active_report(project: EntityStore) -> None:
    report = build_active_report(load_snapshot(project, "web"))
    ids = [i.task_id for i in report.items]
    # T1.4 is in progress with no dependencies, T1.2 and T2.1 are ready
    assert ids == ["T1.2", "T1.4", "T2.1"]
    text = render_active(report)
    assert "  Assignee: ana" in text
    assert "  Phase: P2" in text


def test_all_active_with_empty_project(store: EntityStore, write_task) -> None:
    write_task("api", "T1.1", status="done")
    text = render_all_active([build_active_report(load_snapshot(store, "api"))])
    assert "📁 Project: api" in text
    assert "No active tasks found across all projects." in text


def test_reports_are_idempotent(project: EntityStore) -> None:
    first = render_project_status(build_project_status(load_snapshot(project, "web")))
    second = render_project_status(build_project_status(load_snapshot(project, "web")))
    assert first == second
    assert build_dependency_report(load_snapshot(project, "web")).to_dict() == (
        build_dependency_report(load_snapshot(project, "web")).to_dict()
    )


def test_skipped_records_are_surfaced(store: EntityStore, write_task) -> None:
    path = write_task("web", "T1.1")
    (path.parent / "T1.2.yaml").write_text("id: [unclosed\n", encoding="utf-8")
    report = build_project_status(load_snapshot(store, "web"))
    assert report.skipped_records == 1
    assert "Skipped 1 unreadable record(s)" in render_project_status(report)

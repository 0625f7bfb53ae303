"""Audit script: findings per check and severity-based exit codes."""

import importlib.util
import json
from pathlib import Path

import pytest

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "audit_dependency_graph.py"


@pytest.fixture(scope="module")
def audit():
    spec = importlib.util.spec_from_file_location("audit_dependency_graph", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_clean_graph_exits_0(audit, settings, write_task, capsys) -> None:
    write_task("web", "T1.1")
    write_task("web", "T1.2", dependency_ids=["T1.1"])
    assert audit.main(["--root", str(settings.store_root)]) == 0
    assert "No issues found." in capsys.readouterr().out


def test_cycle_and_dangling_are_warnings(audit, settings, write_task, capsys) -> None:
    write_task("web", "T1.1", dependency_ids=["T1.2"])
    write_task("web", "T1.2", dependency_ids=["T1.1", "T7.7"])
    assert audit.main(["--root", str(settings.store_root), "--json"]) == 1
    report = json.loads(capsys.readouterr().out)
    checks = {f["check"] for f in report["findings"]}
    assert checks == {"cycle", "dangling_reference"}
    assert report["severity_counts"] == {"warning": 2}


def test_self_dependency_is_critical(audit, settings, write_task, capsys) -> None:
    write_task("web", "T1.1", dependency_ids=["T1.1"])
    assert audit.main(["--root", str(settings.store_root), "--project", "web"]) == 2
    out = capsys.readouterr().out
    assert "## Self-Dependencies" in out
    assert "## Dependency Cycles" not in out


def test_cross_phase_is_info(audit, settings, write_task) -> None:
    write_task("web", "T1.1", phase="P1")
    write_task("web", "T2.1", phase="P2", dependency_ids=["T1.1"])
    findings, count = audit.audit_project(audit.EntityStore(settings), "web")
    assert count == 2
    assert [f["check"] for f in findings] == ["cross_phase"]
    assert audit.exit_code_for(findings) == 0


def test_invalid_project_exits_2(audit, settings, capsys) -> None:
    assert audit.main(["--root", str(settings.store_root), "--project", "../etc"]) == 2
    assert "path traversal" in capsys.readouterr().err
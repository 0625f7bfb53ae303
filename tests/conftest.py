"""Shared fixtures: a throwaway store rooted in tmp_path."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
import yaml

from tasktree.config import Settings
from tasktree.storage import EntityStore

FIXED_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(store_root=tmp_path / "store")


@pytest.fixture
def store(settings: Settings) -> EntityStore:
    return EntityStore(settings, clock=lambda: FIXED_NOW)


@pytest.fixture
def write_task(settings: Settings) -> Callable[..., Path]:
    """Write a raw task record straight to disk, bypassing validation.

    Usage: write_task("web", "T1.1", phase="P1", status="done", dependency_ids=[...])
    """

    def _write(project: str, task_id: str, phase: str | None = "P1", **fields: Any) -> Path:
        root = settings.store_root / "projects" / project
        directory = root / "phases" / phase / "tasks" if phase else root / "tasks"
        directory.mkdir(parents=True, exist_ok=True)
        record = {"id": task_id, "title": fields.pop("title", task_id), "status": "todo"}
        if phase:
            record["phase_id"] = phase
        record.update(fields)
        path = directory / f"{task_id}.yaml"
        path.write_text(yaml.safe_dump(record, sort_keys=False), encoding="utf-8")
        return path

    return _write

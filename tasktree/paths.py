#!/usr/bin/env python3
"""
Path resolution for the tasktree store.

The store is a plain directory tree kept in step across machines by an
external sync tool. Layout per project:

    <root>/projects/<project>/project.<ext>
    <root>/projects/<project>/phases/<phase>/phase.<ext>
    <root>/projects/<project>/phases/<phase>/tasks/<task>.<ext>
    <root>/projects/<project>/tasks/<task>.<ext>          (legacy flat mode)

Environment variables:
- $TASKTREE_ROOT: store root (default: ~/Dropbox/project-management)
- $TASKTREE_CONFIG: explicit settings file
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

ROOT_ENV_VAR = "TASKTREE_ROOT"
CONFIG_ENV_VAR = "TASKTREE_CONFIG"
DEFAULT_STORE_ROOT = Path("~/Dropbox/project-management")
CONFIG_FILENAME = "tasktree.yaml"


def get_config_path(store_root: Path, env: Mapping[str, str] | None = None) -> Path:
    """Settings file location: $TASKTREE_CONFIG, else <store_root>/tasktree.yaml."""
    env = os.environ if env is None else env
    raw = env.get(CONFIG_ENV_VAR)
    if raw:
        return Path(raw).expanduser()
    return store_root / CONFIG_FILENAME


class StoreLayout:
    """Maps record ids to paths under a store root.

    Ids are expected to be validated already; nothing here touches disk.
    """

    def __init__(self, root: Path, extension: str = "yaml"):
        self.root = root
        self.extension = extension

    @property
    def projects_dir(self) -> Path:
        return self.root / "projects"

    def project_dir(self, project_id: str) -> Path:
        return self.projects_dir / project_id

    def project_file(self, project_id: str) -> Path:
        return self.project_dir(project_id) / f"project.{self.extension}"

    def phases_dir(self, project_id: str) -> Path:
        return self.project_dir(project_id) / "phases"

    def phase_dir(self, project_id: str, phase_id: str) -> Path:
        return self.phases_dir(project_id) / phase_id

    def phase_file(self, project_id: str, phase_id: str) -> Path:
        return self.phase_dir(project_id, phase_id) / f"phase.{self.extension}"

    def phase_tasks_dir(self, project_id: str, phase_id: str) -> Path:
        return self.phase_dir(project_id, phase_id) / "tasks"

    def flat_tasks_dir(self, project_id: str) -> Path:
        return self.project_dir(project_id) / "tasks"

    def task_file(self, project_id: str, task_id: str, phase_id: str | None = None) -> Path:
        """Path for a task record; phase-less tasks use the legacy flat directory."""
        if phase_id:
            directory = self.phase_tasks_dir(project_id, phase_id)
        else:
            directory = self.flat_tasks_dir(project_id)
        return directory / f"{task_id}.{self.extension}"

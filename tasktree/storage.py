#!/usr/bin/env python3
"""Entity store: YAML records in a synced directory tree.

Reads tolerate damage (a bad record is skipped and reported, never fatal);
writes are atomic and locked so a sync tool never sees a half-written file.

Usage:
    from tasktree.config import load_settings
    from tasktree.storage import EntityStore

    store = EntityStore(load_settings())
    result = store.load_project_tasks("web")
    for task in result.tasks:
        print(task.id, task.status.value)
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from filelock import FileLock

from tasktree.config import Settings
from tasktree.errors import ConflictError, NotFoundError, PartialReadError, ValidationError
from tasktree.ids import (
    check_id,
    natural_key,
    validate_phase_id,
    validate_project_id,
    validate_task_id,
)
from tasktree.models import (
    Phase,
    PhaseStatus,
    Priority,
    Project,
    ProjectStatus,
    Task,
    TaskStatus,
    utc_now,
)
from tasktree.paths import StoreLayout

logger = logging.getLogger(__name__)

LOCK_TIMEOUT_SECONDS = 10


@dataclass
class LoadResult:
    """Tasks read for one project plus the records that had to be skipped."""

    tasks: list[Task] = field(default_factory=list)
    warnings: list[PartialReadError] = field(default_factory=list)


class EntityStore:
    """File-backed store for projects, phases and tasks.

    Nothing is cached between calls: every read goes back to disk so that
    changes synced in from another machine are always seen.
    """

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = utc_now):
        self.settings = settings
        self.layout = StoreLayout(settings.store_root, settings.record_extension)
        self.clock = clock

    # ------------------------------------------------------------------
    # Low-level record I/O
    # ------------------------------------------------------------------

    def _read_mapping(self, path: Path) -> dict[str, Any]:
        """Read a YAML record.

        Raises:
            PartialReadError: If the file cannot be read, parsed, or is not a mapping
        """
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, yaml.YAMLError, ValueError, TypeError) as e:
            # Timestamp-shaped scalars that are not real dates raise ValueError
            raise PartialReadError(path, str(e)) from e
        if not isinstance(data, dict):
            raise PartialReadError(path, f"expected a mapping, got {type(data).__name__}")
        return data

    def _atomic_write(self, path: Path, content: str) -> bool:
        """Write content to path atomically with file locking.

        Uses a .lock file beside the record to coordinate concurrent
        writers, writes to a temp file in the same directory and renames it
        over the target. No-op if the content on disk is already identical.

        Args:
            path: Target record path
            content: Serialized record

        Returns:
            True if the file was written, False if it was already up to date

        Raises:
            OSError: If the write or its read-back verification fails
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        lock_path = path.with_suffix(path.suffix + ".lock")

        with FileLock(lock_path, timeout=LOCK_TIMEOUT_SECONDS):
            if path.exists() and path.read_text(encoding="utf-8") == content:
                return False

            fd, temp_path = tempfile.mkstemp(
                suffix=".tmp",
                prefix=path.stem + "_",
                dir=path.parent,
            )
            try:
                os.close(fd)
                temp = Path(temp_path)
                temp.write_text(content, encoding="utf-8")
                temp.replace(path)

                if path.read_text(encoding="utf-8") != content:
                    raise OSError(f"Write verification failed: {path} does not match")
            except Exception:
                Path(temp_path).unlink(missing_ok=True)
                raise
        return True

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def list_project_ids(self) -> list[str]:
        """Ids of every project directory holding a valid project id."""
        projects_dir = self.layout.projects_dir
        if not projects_dir.is_dir():
            return []
        ids = [
            p.name
            for p in projects_dir.iterdir()
            if p.is_dir() and check_id(p.name, "project") is None
        ]
        return sorted(ids, key=natural_key)

    def project_exists(self, project_id: str) -> bool:
        validate_project_id(project_id)
        return self.layout.project_dir(project_id).is_dir()

    def load_project(self, project_id: str) -> Project:
        """Load a project record.

        A project directory without a project file (hand-made, or synced
        before the record arrived) yields a minimal Project.

        Raises:
            ValidationError: If the id is malformed
            NotFoundError: If the project directory does not exist
            PartialReadError: If the project file exists but is unreadable
        """
        validate_project_id(project_id)
        if not self.layout.project_dir(project_id).is_dir():
            raise NotFoundError("project", project_id)
        path = self.layout.project_file(project_id)
        if not path.exists():
            return Project(id=project_id, name=project_id)
        data = self._read_mapping(path)
        data.setdefault("id", project_id)
        try:
            return Project.from_dict(data)
        except ValueError as e:
            raise PartialReadError(path, str(e)) from e

    def list_projects(self) -> tuple[list[Project], list[PartialReadError]]:
        projects: list[Project] = []
        warnings: list[PartialReadError] = []
        for project_id in self.list_project_ids():
            try:
                projects.append(self.load_project(project_id))
            except PartialReadError as e:
                logger.warning("%s", e)
                warnings.append(e)
        return projects, warnings

    def create_project(
        self,
        project_id: str,
        name: str | None = None,
        description: str = "",
        owner: str | None = None,
    ) -> Project:
        """Create a new project record with status 'active'.

        Raises:
            ValidationError: If the id is malformed
            ConflictError: If the project already exists
        """
        validate_project_id(project_id)
        if self.layout.project_file(project_id).exists():
            raise ConflictError(f"Project '{project_id}' already exists")
        now = self.clock()
        project = Project(
            id=project_id,
            name=name or project_id,
            description=description,
            owner=owner,
            status=ProjectStatus.ACTIVE,
            created=now,
            updated=now,
        )
        self._atomic_write(self.layout.project_file(project_id), project.to_yaml())
        logger.info("Created project %s", project_id)
        return project

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _phase_dirs(self, project_id: str) -> list[Path]:
        phases_dir = self.layout.phases_dir(project_id)
        if not phases_dir.is_dir():
            return []
        dirs = [p for p in phases_dir.iterdir() if p.is_dir()]
        return sorted(dirs, key=lambda p: natural_key(p.name))

    def list_phase_ids(self, project_id: str) -> list[str]:
        validate_project_id(project_id)
        return [p.name for p in self._phase_dirs(project_id) if check_id(p.name, "phase") is None]

    def load_phase(self, project_id: str, phase_id: str) -> Phase:
        """Load a phase record (minimal Phase when only the directory exists).

        Raises:
            ValidationError: If either id is malformed
            NotFoundError: If the phase directory does not exist
        """
        validate_project_id(project_id)
        validate_phase_id(phase_id)
        if not self.layout.phase_dir(project_id, phase_id).is_dir():
            raise NotFoundError("phase", phase_id, f"project '{project_id}'")
        path = self.layout.phase_file(project_id, phase_id)
        if not path.exists():
            return Phase(id=phase_id, project_id=project_id, name=phase_id)
        data = self._read_mapping(path)
        data.setdefault("id", phase_id)
        try:
            return Phase.from_dict(data, project_id=project_id)
        except ValueError as e:
            raise PartialReadError(path, str(e)) from e

    def list_phases(self, project_id: str) -> tuple[list[Phase], list[PartialReadError]]:
        phases: list[Phase] = []
        warnings: list[PartialReadError] = []
        for phase_id in self.list_phase_ids(project_id):
            try:
                phases.append(self.load_phase(project_id, phase_id))
            except PartialReadError as e:
                logger.warning("%s", e)
                warnings.append(e)
        return phases, warnings

    def create_phase(
        self,
        project_id: str,
        phase_id: str,
        name: str | None = None,
        goal: str = "",
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> Phase:
        """Create a phase with status 'planning' under an existing project.

        Raises:
            ValidationError: If an id is malformed or the end date precedes
                the start date
            ConflictError: If the phase already exists
            NotFoundError: If the project does not exist
        """
        validate_project_id(project_id)
        validate_phase_id(phase_id)
        if not self.layout.project_dir(project_id).is_dir():
            raise NotFoundError("project", project_id)
        if self.layout.phase_file(project_id, phase_id).exists():
            raise ConflictError(f"Phase '{phase_id}' already exists in project '{project_id}'")
        if start_date and end_date and end_date < start_date:
            raise ValidationError("Phase end date must not be before its start date")
        now = self.clock()
        phase = Phase(
            id=phase_id,
            project_id=project_id,
            name=name or phase_id,
            goal=goal,
            status=PhaseStatus.PLANNING,
            start_date=start_date,
            end_date=end_date,
            created=now,
            updated=now,
        )
        self._atomic_write(self.layout.phase_file(project_id, phase_id), phase.to_yaml())
        logger.info("Created phase %s in project %s", phase_id, project_id)
        return phase

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _task_files(self, project_id: str) -> Iterator[tuple[Path, str | None]]:
        """Yield (path, directory phase id) for every task file, phases first."""
        suffix = f".{self.settings.record_extension}"
        for phase_dir in self._phase_dirs(project_id):
            tasks_dir = phase_dir / "tasks"
            if not tasks_dir.is_dir():
                continue
            for path in sorted(tasks_dir.iterdir(), key=lambda p: natural_key(p.name)):
                if path.is_file() and path.suffix == suffix:
                    yield path, phase_dir.name

        flat_dir = self.layout.flat_tasks_dir(project_id)
        if flat_dir.is_dir():
            for path in sorted(flat_dir.iterdir(), key=lambda p: natural_key(p.name)):
                if path.is_file() and path.suffix == suffix:
                    yield path, None

    def _read_task(self, path: Path, project_id: str, phase_id: str | None) -> Task:
        data = self._read_mapping(path)
        try:
            task = Task.from_dict(data, project_id=project_id, phase_id=phase_id)
        except (ValueError, TypeError, KeyError) as e:
            raise PartialReadError(path, str(e)) from e
        if task.project_id != project_id:
            logger.warning(
                "Task %s in %s names project %r; using the directory project %s",
                task.id,
                path,
                task.project_id,
                project_id,
            )
            task.project_id = project_id
        task.source = path
        return task

    def load_project_tasks(self, project_id: str) -> LoadResult:
        """Load every task of a project from disk.

        Walks each phase's task directory (phases in natural order), then
        the legacy flat task directory. Unreadable or unparseable records
        are skipped; each skip is logged and returned in ``warnings``.

        Args:
            project_id: Project to load

        Returns:
            LoadResult; empty (not an error) when the project has no tasks
            or does not exist

        Raises:
            ValidationError: If the project id is malformed
        """
        validate_project_id(project_id)
        result = LoadResult()
        for path, phase_id in self._task_files(project_id):
            try:
                task = self._read_task(path, project_id, phase_id)
            except PartialReadError as e:
                logger.warning("%s", e)
                result.warnings.append(e)
                continue
            result.tasks.append(task)
        return result

    def task_path(self, task: Task) -> Path:
        """File a task is written to: where it was read from, else its canonical location."""
        if task.source is not None:
            return task.source
        return self.layout.task_file(task.project_id, task.id, task.phase_id)

    def find_task(self, task_id: str, project_id: str | None = None) -> Task:
        """Locate a task by id, optionally restricted to one project.

        Raises:
            ValidationError: If an id is malformed
            ConflictError: If the task id exists in more than one project
                and no project was given
            NotFoundError: If no such task exists
        """
        validate_task_id(task_id)
        project_ids = [validate_project_id(project_id)] if project_id else self.list_project_ids()

        matches: list[Task] = []
        for pid in project_ids:
            for task in self.load_project_tasks(pid).tasks:
                if task.id == task_id:
                    matches.append(task)
                    break

        if not matches:
            where = f"project '{project_id}'" if project_id else None
            raise NotFoundError("task", task_id, where)
        if len(matches) > 1:
            owners = ", ".join(t.project_id for t in matches)
            raise ConflictError(
                f"Task id '{task_id}' exists in several projects ({owners}); pass --project"
            )
        return matches[0]

    def create_task(
        self,
        project_id: str,
        task_id: str,
        phase_id: str | None = None,
        title: str | None = None,
        priority: Priority = Priority.MEDIUM,
        assignee: str | None = None,
        description: str = "",
        dependency_ids: list[str] | None = None,
    ) -> Task:
        """Create a task with status 'todo'.

        Raises:
            ValidationError: If an id is malformed or the task id does not
                belong to the phase
            ConflictError: If the task already exists in the project
            NotFoundError: If the project or phase does not exist
        """
        validate_project_id(project_id)
        if phase_id:
            validate_phase_id(phase_id)
        structural_phase = phase_id if self.settings.enforce_structural_ids else None
        validate_task_id(task_id, phase_id=structural_phase)
        for dep in dependency_ids or []:
            validate_task_id(dep)

        if not self.layout.project_dir(project_id).is_dir():
            raise NotFoundError("project", project_id)
        if phase_id and not self.layout.phase_dir(project_id, phase_id).is_dir():
            raise NotFoundError("phase", phase_id, f"project '{project_id}'")
        if any(t.id == task_id for t in self.load_project_tasks(project_id).tasks):
            raise ConflictError(f"Task '{task_id}' already exists in project '{project_id}'")

        now = self.clock()
        task = Task(
            id=task_id,
            project_id=project_id,
            phase_id=phase_id,
            title=title or task_id,
            status=TaskStatus.TODO,
            priority=priority,
            assignee=assignee,
            description=description,
            dependency_ids=list(dependency_ids or []),
            created=now,
            updated=now,
        )
        self._atomic_write(self.task_path(task), task.to_yaml())
        logger.info("Created task %s in project %s", task_id, project_id)
        return task

    def save_task(self, task: Task) -> bool:
        """Write a task back to its record file.

        Returns:
            True if the file changed on disk
        """
        return self._atomic_write(self.task_path(task), task.to_yaml())

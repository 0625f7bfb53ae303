"""Dependency graph engine.

Rebuilt from the full task list on every invocation; nothing is persisted.
A todo task is *blocked* while any dependency it names resolves to a task
that is not done. Only immediate dependencies are inspected, so cyclic
data can never cause non-termination; cycles are reported separately by
``find_cycles`` and never change a classification.

Usage:
    from tasktree.graph import DependencyGraph

    graph = DependencyGraph(store.load_project_tasks("web").tasks)
    for state in graph.blocked():
        print(state.task.id, [b.id for b in state.blockers])
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

import networkx as nx

from tasktree.config import UnresolvedPolicy
from tasktree.ids import natural_key
from tasktree.models import Task, TaskStatus

logger = logging.getLogger(__name__)


class Classification(Enum):
    """Derived state of a task within the graph."""

    DONE = "done"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    READY = "ready"
    BLOCKED = "blocked"


_BY_STATUS = {
    TaskStatus.DONE: Classification.DONE,
    TaskStatus.IN_PROGRESS: Classification.IN_PROGRESS,
    TaskStatus.REVIEW: Classification.IN_REVIEW,
}


@dataclass
class TaskState:
    """Classification of one task plus the dependencies holding it back."""

    task: Task
    classification: Classification
    # Unmet dependencies, in the order the task lists them
    blockers: list[Task] = field(default_factory=list)
    # Dependency ids that match no loaded task
    unresolved: list[str] = field(default_factory=list)
    # True when the unresolved ids count as unmet under the active policy
    unresolved_blocks: bool = False

    @property
    def is_blocked(self) -> bool:
        return self.classification == Classification.BLOCKED

    def blocker_names(self) -> list[str]:
        """Titles of unmet dependencies, then unresolved ids when they block."""
        names = [b.title for b in self.blockers]
        if self.unresolved_blocks:
            names.extend(self.unresolved)
        return names


def priority_sort_key(task: Task) -> tuple:
    """Most urgent priority first, then natural id order."""
    return (task.priority.rank, natural_key(task.id))


def id_sort_key(task: Task) -> tuple:
    return natural_key(task.id)


class DependencyGraph:
    """Blocking state for a set of tasks.

    Args:
        tasks: Every task of the scope being classified (usually one project)
        unresolved_policy: ``satisfied`` treats dependency ids that match no
            task as met; ``blocking`` treats them as unmet
    """

    def __init__(self, tasks: list[Task], unresolved_policy: UnresolvedPolicy = "satisfied"):
        self.unresolved_policy = unresolved_policy
        self.tasks: dict[str, Task] = {}
        for task in tasks:
            if task.id in self.tasks:
                logger.warning(
                    "Duplicate task id %s in project %s; keeping the first record",
                    task.id,
                    task.project_id,
                )
                continue
            self.tasks[task.id] = task
        self._states: dict[str, TaskState] = {
            task_id: self._classify(task) for task_id, task in self.tasks.items()
        }

    def _classify(self, task: Task) -> TaskState:
        blockers: list[Task] = []
        unresolved: list[str] = []
        for dep_id in task.dependency_ids:
            dep = self.tasks.get(dep_id)
            if dep is None:
                unresolved.append(dep_id)
            elif not dep.is_done:
                blockers.append(dep)

        by_status = _BY_STATUS.get(task.status)
        if by_status is not None:
            return TaskState(task, by_status, blockers, unresolved)

        unresolved_blocks = self.unresolved_policy == "blocking" and bool(unresolved)
        blocked = bool(blockers) or unresolved_blocks
        classification = Classification.BLOCKED if blocked else Classification.READY
        return TaskState(task, classification, blockers, unresolved, unresolved_blocks)

    def state(self, task_id: str) -> TaskState | None:
        return self._states.get(task_id)

    def states(self) -> list[TaskState]:
        """All states in natural id order."""
        return sorted(self._states.values(), key=lambda s: id_sort_key(s.task))

    def _with(self, classification: Classification) -> list[TaskState]:
        return [s for s in self.states() if s.classification == classification]

    def ready(self) -> list[TaskState]:
        """Ready tasks, most urgent priority first, then natural id order."""
        return sorted(self._with(Classification.READY), key=lambda s: priority_sort_key(s.task))

    def blocked(self) -> list[TaskState]:
        return self._with(Classification.BLOCKED)

    def in_progress(self) -> list[TaskState]:
        return self._with(Classification.IN_PROGRESS)

    def in_review(self) -> list[TaskState]:
        return self._with(Classification.IN_REVIEW)

    def done(self) -> list[TaskState]:
        return self._with(Classification.DONE)

    def counts(self) -> Counter[Classification]:
        counts: Counter[Classification] = Counter({c: 0 for c in Classification})
        counts.update(s.classification for s in self._states.values())
        return counts

    def dependents(self, task_id: str) -> list[Task]:
        """Tasks that list ``task_id`` as a dependency, in natural id order."""
        found = [t for t in self.tasks.values() if task_id in t.dependency_ids]
        return sorted(found, key=id_sort_key)

    def find_cycles(self) -> list[list[str]]:
        return find_cycles(list(self.tasks.values()))


def build_digraph(tasks: list[Task]) -> nx.DiGraph:
    """Directed graph with an edge task -> dependency for every resolvable reference."""
    graph = nx.DiGraph()
    ids = {t.id for t in tasks}
    for task in tasks:
        graph.add_node(task.id)
        for dep_id in task.dependency_ids:
            if dep_id in ids:
                graph.add_edge(task.id, dep_id)
    return graph


def find_cycles(tasks: list[Task]) -> list[list[str]]:
    """Every elementary dependency cycle, as a closed id path.

    Each cycle is rotated to start at its naturally-smallest id and the
    list is sorted, so output is stable across runs.

    Returns:
        e.g. ``[["T1.1", "T1.2", "T1.1"]]`` for two tasks depending on each other
    """
    cycles: list[list[str]] = []
    for cycle in nx.simple_cycles(build_digraph(tasks)):
        start = min(range(len(cycle)), key=lambda i: natural_key(cycle[i]))
        rotated = cycle[start:] + cycle[:start]
        cycles.append(rotated + [rotated[0]])
    cycles.sort(key=lambda c: [natural_key(i) for i in c])
    return cycles

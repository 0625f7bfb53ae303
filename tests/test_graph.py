"""Dependency graph engine: classification, ordering, unresolved ids and cycles."""

from tasktree.graph import Classification, DependencyGraph, find_cycles
from tasktree.models import Priority, Task, TaskStatus


def make(task_id: str, status: TaskStatus = TaskStatus.TODO, deps=(), **kwargs) -> Task:
    return Task(id=task_id, project_id="web", status=status, dependency_ids=list(deps), **kwargs)


def test_chain_blocks_until_dependency_done() -> None:
    """A done, B todo [A], C todo [B]: B ready, C blocked by B."""
    a = make("T1.1", TaskStatus.DONE, title="A")
    b = make("T1.2", deps=["T1.1"], title="B")
    c = make("T1.3", deps=["T1.2"], title="C")
    graph = DependencyGraph([a, b, c])

    assert graph.state("T1.1").classification == Classification.DONE
    assert graph.state("T1.2").classification == Classification.READY
    c_state = graph.state("T1.3")
    assert c_state.classification == Classification.BLOCKED
    assert [t.id for t in c_state.blockers] == ["T1.2"]
    assert c_state.blocker_names() == ["B"]


def test_chain_unblocks_one_step_at_a_time() -> None:
    """A, B [A], C [B] all todo: completing each task readies the next."""
    a = make("T1.1", title="A")
    b = make("T1.2", deps=["T1.1"], title="B")
    c = make("T1.3", deps=["T1.2"], title="C")

    def split(graph: DependencyGraph) -> tuple[list[str], list[str]]:
        return [s.task.id for s in graph.ready()], [s.task.id for s in graph.blocked()]

    assert split(DependencyGraph([a, b, c])) == (["T1.1"], ["T1.2", "T1.3"])
    a.status = TaskStatus.DONE
    assert split(DependencyGraph([a, b, c])) == (["T1.2"], ["T1.3"])
    b.status = TaskStatus.DONE
    assert split(DependencyGraph([a, b, c])) == (["T1.3"], [])


def test_done_dependencies_are_not_blockers() -> None:
    a = make("T1.1", TaskStatus.DONE, title="A")
    b = make("T1.2", title="B")
    c = make("T1.3", deps=["T1.1", "T1.2"], title="C")
    state = DependencyGraph([a, b, c]).state("T1.3")
    assert state.is_blocked
    assert state.blocker_names() == ["B"]


def test_all_unmet_dependencies_are_listed_in_order() -> None:
    a = make("T1.1", TaskStatus.IN_PROGRESS, title="A")
    b = make("T1.2", title="B")
    c = make("T1.3", deps=["T1.2", "T1.1"], title="C")
    state = DependencyGraph([a, b, c]).state("T1.3")
    assert state.blocker_names() == ["B", "A"]


def test_unresolved_dependency_is_satisfied_by_default() -> None:
    task = make("T1.1", deps=["T9.9"])
    state = DependencyGraph([task]).state("T1.1")
    assert state.classification == Classification.READY
    assert state.unresolved == ["T9.9"]
    assert state.blocker_names() == []


def test_unresolved_dependency_blocks_under_blocking_policy() -> None:
    task = make("T1.1", deps=["T9.9"])
    state = DependencyGraph([task], unresolved_policy="blocking").state("T1.1")
    assert state.classification == Classification.BLOCKED
    assert state.blocker_names() == ["T9.9"]


def test_only_todo_tasks_can_be_blocked() -> None:
    """An in-progress task with an unmet dependency stays in progress."""
    dep = make("T1.1")
    working = make("T1.2", TaskStatus.IN_PROGRESS, deps=["T1.1"])
    graph = DependencyGraph([dep, working])
    state = graph.state("T1.2")
    assert state.classification == Classification.IN_PROGRESS
    assert [t.id for t in state.blockers] == ["T1.1"]


def test_review_status_classified_in_review() -> None:
    graph = DependencyGraph([make("T1.1", TaskStatus.REVIEW)])
    assert graph.state("T1.1").classification == Classification.IN_REVIEW


def test_ready_ordered_by_priority_then_natural_id() -> None:
    tasks = [
        make("T1.10", priority=Priority.HIGH),
        make("T1.2", priority=Priority.LOW),
        make("T1.3", priority=Priority.CRITICAL),
        make("T1.9", priority=Priority.HIGH),
    ]
    ready = [s.task.id for s in DependencyGraph(tasks).ready()]
    assert ready == ["T1.3", "T1.9", "T1.10", "T1.2"]


def test_counts_cover_every_classification() -> None:
    graph = DependencyGraph(
        [
            make("T1.1", TaskStatus.DONE),
            make("T1.2", deps=["T1.3"]),
            make("T1.3", TaskStatus.IN_PROGRESS),
            make("T1.4"),
        ]
    )
    counts = graph.counts()
    assert counts[Classification.DONE] == 1
    assert counts[Classification.BLOCKED] == 1
    assert counts[Classification.IN_PROGRESS] == 1
    assert counts[Classification.READY] == 1
    assert counts[Classification.IN_REVIEW] == 0


def test_cycle_terminates_and_is_reported() -> None:
    """A depends on B and B on A: both blocked, classification finishes, cycle found."""
    a = make("T1.1", deps=["T1.2"])
    b = make("T1.2", deps=["T1.1"])
    graph = DependencyGraph([a, b])

    assert graph.state("T1.1").is_blocked
    assert graph.state("T1.2").is_blocked
    assert graph.find_cycles() == [["T1.1", "T1.2", "T1.1"]]


def test_cycles_ignore_unresolved_edges() -> None:
    assert find_cycles([make("T1.1", deps=["T9.9"])]) == []


def test_self_dependency_is_a_cycle() -> None:
    assert find_cycles([make("T1.1", deps=["T1.1"])]) == [["T1.1", "T1.1"]]


def test_dependents() -> None:
    a = make("T1.1")
    b = make("T1.2", deps=["T1.1"])
    c = make("T1.10", deps=["T1.1"])
    assert [t.id for t in DependencyGraph([c, a, b]).dependents("T1.1")] == ["T1.2", "T1.10"]


def test_duplicate_ids_keep_first(caplog) -> None:
    first = make("T1.1", TaskStatus.DONE, title="first")
    second = make("T1.1", title="second")
    graph = DependencyGraph([first, second])
    assert graph.tasks["T1.1"].title == "first"
    assert "Duplicate task id" in caplog.text

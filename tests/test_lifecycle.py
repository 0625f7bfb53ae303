"""Lifecycle controller: legal moves, typed rejections, and untouched files on rejection."""

from datetime import UTC, datetime

import pytest
import yaml

from tasktree.errors import NotFoundError, TransitionError, ValidationError
from tasktree.lifecycle import (
    ALREADY_DONE,
    NOT_FOUND,
    SKIP_STAGE,
    STILL_BLOCKED,
    LifecycleController,
    parse_status,
)
from tasktree.models import TaskStatus
from tasktree.storage import EntityStore

LATER = datetime(2024, 3, 2, 9, 30, tzinfo=UTC)


@pytest.fixture
def controller(store: EntityStore) -> LifecycleController:
    return LifecycleController(store, clock=lambda: LATER)


@pytest.fixture
def chain(write_task):
    """A done, B todo depends on A, C todo depends on B."""
    return {
        "A": write_task("web", "T1.1", title="A", status="done"),
        "B": write_task("web", "T1.2", title="B", dependency_ids=["T1.1"]),
        "C": write_task("web", "T1.3", title="C", dependency_ids=["T1.2"]),
    }


def test_start_ready_task(controller: LifecycleController, chain) -> None:
    result = controller.request_transition("T1.2", "in_progress", project_id="web")
    assert result.success
    assert result.changed
    record = yaml.safe_load(chain["B"].read_text())
    assert record["status"] == "in_progress"
    assert record["updated"] == "2024-03-02T09:30:00+00:00"


def test_start_blocked_task_names_blockers_and_leaves_file(controller, chain) -> None:
    before = chain["C"].read_bytes()
    result = controller.request_transition("T1.3", "in_progress", project_id="web")

    assert not result.success
    assert result.kind == STILL_BLOCKED
    assert result.blockers == ["B"]
    assert "blocked by: B" in result.error
    assert chain["C"].read_bytes() == before


def test_done_is_terminal(controller, chain) -> None:
    before = chain["A"].read_bytes()
    result = controller.request_transition("T1.1", "todo", project_id="web")
    assert result.kind == ALREADY_DONE
    assert "done is terminal" in result.error
    assert chain["A"].read_bytes() == before


def test_todo_cannot_skip_to_done(controller, chain) -> None:
    result = controller.request_transition("T1.2", "done", project_id="web")
    assert result.kind == SKIP_STAGE
    assert "Move it to in_progress first" in result.error


def test_full_lifecycle(controller, chain) -> None:
    assert controller.request_transition("T1.2", "in_progress", "web").success
    assert controller.request_transition("T1.2", "done", "web").success
    # C's only dependency is now done
    assert controller.request_transition("T1.3", "in_progress", "web").success


def test_stop_work_returns_to_todo(controller, chain) -> None:
    controller.transition("T1.2", "in_progress", "web")
    task = controller.transition("T1.2", "todo", "web")
    assert task.status == TaskStatus.TODO


def test_same_status_is_noop_without_write(controller, chain) -> None:
    before = chain["A"].read_bytes()
    result = controller.request_transition("T1.1", "done", project_id="web")
    assert result.success
    assert not result.changed
    assert chain["A"].read_bytes() == before


def test_missing_task_is_not_found(controller, chain) -> None:
    result = controller.request_transition("T1.9", "in_progress", project_id="web")
    assert not result.success
    assert result.kind == NOT_FOUND


def test_invalid_input_raises_before_io(controller) -> None:
    with pytest.raises(ValidationError):
        controller.request_transition("../etc", "done")
    with pytest.raises(ValidationError, match="Unknown status"):
        controller.request_transition("T1.1", "finished")
    with pytest.raises(ValidationError, match="cannot be set directly"):
        controller.request_transition("T1.1", "blocked")
    with pytest.raises(ValidationError, match="review stage"):
        controller.request_transition("T1.1", "review")


def test_raising_form(controller, chain) -> None:
    with pytest.raises(TransitionError) as excinfo:
        controller.transition("T1.3", "in_progress", "web")
    assert excinfo.value.kind == STILL_BLOCKED
    assert excinfo.value.blockers == ["B"]
    with pytest.raises(NotFoundError):
        controller.transition("T1.9", "in_progress", "web")


def test_review_stage_variant(settings, write_task) -> None:
    store = EntityStore(settings.model_copy(update={"review_stage": True}))
    controller = LifecycleController(store)
    write_task("web", "T1.1", status="in_progress")

    rejected = controller.request_transition("T1.1", "done", "web")
    assert rejected.kind == SKIP_STAGE
    assert "review" in rejected.error

    assert controller.request_transition("T1.1", "review", "web").success
    assert controller.request_transition("T1.1", "in_progress", "web").success
    assert controller.request_transition("T1.1", "review", "web").success
    assert controller.request_transition("T1.1", "done", "web").success


def test_blocking_policy_names_unresolved(settings, write_task) -> None:
    store = EntityStore(settings.model_copy(update={"unresolved_dependencies": "blocking"}))
    write_task("web", "T1.1", dependency_ids=["T4.4"])
    result = LifecycleController(store).request_transition("T1.1", "in_progress", "web")
    assert result.kind == STILL_BLOCKED
    assert result.blockers == ["T4.4"]


def test_field_updates_and_dependency_edits(controller, chain) -> None:
    result = controller.update_task(
        "T1.3",
        "web",
        title="C renamed",
        priority="high",
        assignee="ana",
        add_dependencies=["T1.1", "T1.1"],
        remove_dependencies=["T1.2"],
    )
    assert result.success and result.changed
    record = yaml.safe_load(chain["C"].read_text())
    assert record["title"] == "C renamed"
    assert record["priority"] == "high"
    assert record["assignee"] == "ana"
    assert record["dependency_ids"] == ["T1.1"]


def test_status_check_sees_edited_dependencies(controller, chain) -> None:
    """Dropping the unmet dependency in the same update unblocks the start."""
    result = controller.update_task("T1.3", "web", status="in_progress", remove_dependencies=["T1.2"])
    assert result.success
    assert yaml.safe_load(chain["C"].read_text())["status"] == "in_progress"


def test_rejected_status_discards_field_edits(controller, chain) -> None:
    before = chain["C"].read_bytes()
    result = controller.update_task("T1.3", "web", status="in_progress", title="changed")
    assert result.kind == STILL_BLOCKED
    assert chain["C"].read_bytes() == before


def test_self_dependency_rejected(controller, chain) -> None:
    with pytest.raises(ValidationError, match="itself"):
        controller.update_task("T1.2", "web", add_dependencies=["T1.2"])


def test_blockers_resolve_in_directory_project(controller, write_task) -> None:
    """A stale project_id field must not swap in another project's graph."""
    write_task("web", "T1.1", title="A")
    b = write_task("web", "T1.2", title="B", dependency_ids=["T1.1"], project_id="api")
    write_task("api", "T1.1", title="Other A", status="done")
    before = b.read_bytes()

    result = controller.request_transition("T1.2", "in_progress", project_id="web")

    assert not result.success
    assert result.kind == STILL_BLOCKED
    assert result.blockers == ["A"]
    assert b.read_bytes() == before


def test_malformed_project_field_does_not_block_update(controller, write_task) -> None:
    path = write_task("web", "T1.1", title="A", project_id="Web App")

    result = controller.request_transition("T1.1", "in_progress", project_id="web")

    assert result.success
    record = yaml.safe_load(path.read_text())
    assert record["status"] == "in_progress"
    assert record["project_id"] == "web"


def test_parse_status_aliases() -> None:
    assert parse_status("in-progress") == TaskStatus.IN_PROGRESS
    assert parse_status("completed") == TaskStatus.DONE
    assert parse_status("review", review_stage=True) == TaskStatus.REVIEW

"""Settings resolution: defaults, settings file, environment and overrides."""

from pathlib import Path

import pytest

from tasktree.config import Settings, load_settings
from tasktree.errors import ConfigError


def test_defaults(tmp_path) -> None:
    settings = load_settings(env={"TASKTREE_ROOT": str(tmp_path)})
    assert settings.store_root == tmp_path
    assert settings.record_extension == "yaml"
    assert settings.review_stage is False
    assert settings.enforce_structural_ids is True
    assert settings.unresolved_dependencies == "satisfied"
    assert settings.log_level == "WARNING"


def test_default_root_is_dropbox_folder() -> None:
    assert Settings().store_root == Path("~/Dropbox/project-management").expanduser()


def test_settings_file_in_store_root(tmp_path) -> None:
    (tmp_path / "tasktree.yaml").write_text(
        "review_stage: true\nunresolved_dependencies: blocking\n", encoding="utf-8"
    )
    settings = load_settings(env={"TASKTREE_ROOT": str(tmp_path)})
    assert settings.review_stage is True
    assert settings.unresolved_dependencies == "blocking"


def test_precedence_override_env_file(tmp_path) -> None:
    config = tmp_path / "custom.yaml"
    config.write_text("log_level: debug\nreview_stage: true\n", encoding="utf-8")
    env = {
        "TASKTREE_ROOT": str(tmp_path),
        "TASKTREE_CONFIG": str(config),
        "TASKTREE_LOG_LEVEL": "error",
    }
    settings = load_settings(overrides={"review_stage": False, "record_extension": None}, env=env)
    assert settings.log_level == "ERROR"
    assert settings.review_stage is False
    assert settings.record_extension == "yaml"


def test_explicit_root_beats_environment(tmp_path) -> None:
    settings = load_settings(
        overrides={"store_root": tmp_path / "explicit"},
        env={"TASKTREE_ROOT": str(tmp_path / "env")},
    )
    assert settings.store_root == tmp_path / "explicit"


def test_env_booleans(tmp_path) -> None:
    settings = load_settings(env={"TASKTREE_ROOT": str(tmp_path), "TASKTREE_REVIEW_STAGE": "yes"})
    assert settings.review_stage is True


@pytest.mark.parametrize(
    "env_extra",
    [
        {"TASKTREE_UNRESOLVED_DEPENDENCIES": "maybe"},
        {"TASKTREE_LOG_LEVEL": "chatty"},
        {"TASKTREE_RECORD_EXTENSION": "a/b"},
    ],
)
def test_invalid_values_raise_config_error(tmp_path, env_extra) -> None:
    with pytest.raises(ConfigError):
        load_settings(env={"TASKTREE_ROOT": str(tmp_path), **env_extra})


def test_unreadable_settings_file(tmp_path) -> None:
    (tmp_path / "tasktree.yaml").write_text("- not\n- a mapping\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="must contain a mapping"):
        load_settings(env={"TASKTREE_ROOT": str(tmp_path)})

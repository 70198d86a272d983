"""Tests for layered YAML loading and the include: directive."""

import sys
from pathlib import Path

import pytest

from guardian.core.config import State
from guardian.core.yaml_settings import (
    YamlWithIncludesSettingsSource,
    merge_dicts,
)


@pytest.fixture
def fixtures_dir():
    """Path to test fixtures directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture(autouse=True)
def clean_argv(monkeypatch, no_user_config):
    monkeypatch.setattr(sys, "argv", ["guardian"])


def load(path):
    return YamlWithIncludesSettingsSource(State, yaml_file=str(path))()


def test_defaults_always_loaded(fixtures_dir):
    data = load(fixtures_dir / "minimal.yaml")

    assert data["config"]["ollama"]["timeout_ms"] == 1000
    # From the packaged defaults, not the fixture
    assert data["config"]["scripts"]["timeout"] == 300


def test_lists_are_replaced_not_merged(fixtures_dir):
    data = load(fixtures_dir / "minimal.yaml")

    assert [b["name"] for b in data["config"]["ollama"]["backends"]] == ["big72"]


def test_include_directive(fixtures_dir):
    data = load(fixtures_dir / "with_include.yaml")

    assert data["config"]["ollama"]["default_model"] == "llama3"
    assert data["config"]["policy"]["rules"][0]["id"] == "no-todo"
    assert "include" not in data


def test_nested_includes(fixtures_dir):
    data = load(fixtures_dir / "nested_include.yaml")

    assert data["config"]["ollama"]["timeout_ms"] == 4000
    assert data["config"]["ollama"]["default_model"] == "llama3"
    assert data["config"]["policy"]["rules"][0]["id"] == "no-todo"


def test_include_relative_to_including_file(fixtures_dir, tmp_path):
    config_file = tmp_path / "project.yaml"
    config_file.write_text(
        f"include: {fixtures_dir / 'policy_rules.yaml'}\n"
        "config:\n"
        "  scripts:\n"
        "    commands: [make]\n"
    )
    sub = tmp_path / "sub"
    sub.mkdir()
    (sub / "extra.yaml").write_text("config:\n  review:\n    enabled: true\n")
    (tmp_path / "top.yaml").write_text(
        "include: [project.yaml, sub/extra.yaml]\n"
    )

    data = load(tmp_path / "top.yaml")

    assert data["config"]["scripts"]["commands"] == ["make"]
    assert data["config"]["review"]["enabled"] is True
    assert data["config"]["policy"]["rules"][0]["id"] == "no-todo"


def test_circular_include_rejected(fixtures_dir):
    with pytest.raises(ValueError, match="Circular include"):
        load(fixtures_dir / "circular_a.yaml")


def test_cli_include_applied_last(fixtures_dir, monkeypatch):
    monkeypatch.setattr(sys, "argv", [
        "guardian", "check",
        "--include", str(fixtures_dir / "override_review.yaml"),
    ])

    data = load(fixtures_dir / "minimal.yaml")

    assert data["config"]["review"]["enabled"] is True
    assert data["config"]["review"]["model"] == "qwen2.5-coder:7b"
    assert data["config"]["ollama"]["timeout_ms"] == 1000


def test_cli_include_equals_form(fixtures_dir, monkeypatch):
    monkeypatch.setattr(sys, "argv", [
        "guardian", f"--include={fixtures_dir / 'override_review.yaml'}",
    ])

    data = load(fixtures_dir / "minimal.yaml")

    assert data["config"]["review"]["enabled"] is True


def test_user_config_between_defaults_and_project(fixtures_dir, monkeypatch, tmp_path):
    user_file = tmp_path / "user.yaml"
    user_file.write_text(
        "config:\n  ollama:\n    timeout_ms: 7000\n    default_model: mistral\n"
    )
    monkeypatch.setattr(
        "guardian.core.yaml_settings.user_config_path", lambda: user_file
    )

    data = load(fixtures_dir / "minimal.yaml")

    # Project file beats user file; user file beats defaults
    assert data["config"]["ollama"]["timeout_ms"] == 1000
    assert data["config"]["ollama"]["default_model"] == "mistral"


def test_missing_project_file_is_not_an_error(tmp_path):
    data = load(tmp_path / "absent.yaml")

    assert data["config"]["ollama"]["timeout_ms"] == 2500


def test_merge_dicts_is_deep_and_pure():
    base = {"a": {"b": 1, "c": 2}, "x": [1]}
    override = {"a": {"c": 3}, "x": [2]}

    merged = merge_dicts(base, override)

    assert merged == {"a": {"b": 1, "c": 3}, "x": [2]}
    assert base == {"a": {"b": 1, "c": 2}, "x": [1]}

"""Tests for configuration models and State loading."""

from pathlib import Path

import pytest

from guardian.core.config import (
    Backend,
    EngineConfig,
    OllamaConfig,
    State,
    Tier,
)
from guardian.core.errors import UnknownCheck


def test_defaults_load(test_state):
    config = test_state.config

    assert config.ollama.timeout_ms == 2500
    assert config.ollama.timeout_s == 2.5
    assert [b.name for b in config.ollama.backends] == ["local"]
    assert config.ollama.backends[0].tier == Tier.FALLBACK
    assert config.review.enabled is False
    assert config.scripts.commands == ()


def test_environment_overrides_yaml(isolated, monkeypatch):
    monkeypatch.setenv("GUARDIAN_CONFIG__OLLAMA__TIMEOUT_MS", "5000")

    state = State()

    assert state.config.ollama.timeout_ms == 5000


def test_project_file_overrides_defaults(isolated, tmp_path):
    (tmp_path / "guardian.yaml").write_text("""
config:
  ollama:
    default_model: qwen2.5-coder:7b
  scripts:
    commands: ["make lint", "make test"]
""")

    state = State()

    assert state.config.ollama.default_model == "qwen2.5-coder:7b"
    assert state.config.scripts.commands == ("make lint", "make test")
    # Untouched keys keep their defaults
    assert state.config.ollama.timeout_ms == 2500


def test_fallback_flag_maps_to_tier():
    backend = Backend(name="x", base_url="http://x:11434", fallback=True)

    assert backend.tier == Tier.FALLBACK
    assert Backend(name="y", base_url="http://y", fallback=False).tier == Tier.PRIMARY


def test_unknown_backend_keys_rejected():
    with pytest.raises(ValueError):
        Backend(name="x", base_url="http://x", weight=3)


def test_enabled_backends_primary_first():
    ollama = OllamaConfig(backends=[
        {"name": "f1", "base_url": "http://f1", "tier": "fallback"},
        {"name": "p1", "base_url": "http://p1"},
        {"name": "off", "base_url": "http://off", "enabled": False},
        {"name": "p2", "base_url": "http://p2"},
    ])

    assert [b.name for b in ollama.enabled_backends()] == ["p1", "p2", "f1"]
    assert ollama.find("off") is None
    assert ollama.find("f1").name == "f1"


def test_engine_snapshot_is_frozen(test_state):
    engine = test_state.config.engine()

    assert isinstance(engine, EngineConfig)
    with pytest.raises(ValueError):
        engine.ollama.timeout_ms = 1


def test_templates_substituted_in_frozen_sections(isolated, tmp_path):
    (tmp_path / "guardian.yaml").write_text("""
config:
  project: demo
  scripts:
    workdir: "{Path.home}/src/{config.project}"
    commands: ["echo {config.project}", "grep -E 'x{2}' file"]
""")

    state = State()

    assert state.config.scripts.workdir == Path.home() / "src" / "demo"
    assert state.config.scripts.commands == (
        "echo demo",
        "grep -E 'x{2}' file",
    )


def test_unknown_templates_left_alone(isolated):
    state = State()

    assert state.config.logger.file.path == "{log_root}/{run_name}/guardian.log"


def engine_with_everything():
    return EngineConfig(
        scripts={"commands": ["make test"]},
        policy={"rules": [
            {"kind": "forbidden_pattern", "id": "no-todo", "pattern": "TODO"},
            {"kind": "line_count", "id": "loc", "max_lines": 400},
        ]},
        review={"enabled": True},
    )


@pytest.mark.parametrize(("only", "commands", "rule_ids", "review"), [
    (["scripts"], ("make test",), (), False),
    (["policy"], (), ("no-todo", "loc"), False),
    (["llm"], (), (), True),
    (["loc", " scripts "], ("make test",), ("loc",), False),
])
def test_select_switches_off_units_not_named(only, commands, rule_ids, review):
    engine = engine_with_everything().select(only)

    assert engine.scripts.commands == commands
    assert tuple(rule.id for rule in engine.policy.rules) == rule_ids
    assert engine.review.enabled is review


def test_select_unknown_name():
    with pytest.raises(UnknownCheck) as exc_info:
        engine_with_everything().select(["policy", "nope"])

    assert exc_info.value.names == ["nope"]
    assert "no-todo" in str(exc_info.value)


def test_with_workdir_only_moves_scripts(tmp_path):
    engine = engine_with_everything()

    moved = engine.with_workdir(tmp_path)

    assert moved.scripts.workdir == tmp_path
    assert moved.scripts.commands == engine.scripts.commands
    assert engine.scripts.workdir == Path(".")

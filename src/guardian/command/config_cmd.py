"""Configuration commands: show-config, config-path."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from guardian.command.output import print_json
from guardian.core.yaml_settings import DEFAULTS_FILE, user_config_path

if TYPE_CHECKING:
    from guardian.core.config import State


class ShowConfigCommand(BaseModel):
    """Show the effective check configuration after all layers merge."""

    model_config = ConfigDict(populate_by_name=True)

    json_output: bool = Field(default=False, alias="json")

    async def run(self, state: State) -> int:
        engine = state.config.engine()
        if self.json_output:
            print_json(engine)
            return 0

        ollama = engine.ollama
        print(f"Probe timeout: {ollama.timeout_ms} ms")
        print(f"Default model: {ollama.default_model or '(first listed)'}")
        print(f"Hosts ({len(ollama.backends)}):")
        for b in ollama.backends:
            flags = [str(b.tier)]
            if not b.enabled:
                flags.append("disabled")
            print(f"  {b.name:<12} {b.base_url}  [{', '.join(flags)}]")
            if b.description:
                print(f"      {b.description}")

        print(f"Scripts ({len(engine.scripts.commands)}, timeout {engine.scripts.timeout}s):")
        for command in engine.scripts.commands:
            print(f"  {command}")
        print(f"Policy rules ({len(engine.policy.rules)}):")
        for rule in engine.policy.rules:
            print(f"  {rule.id:<20} {rule.kind:<18} {rule.severity}")
        review = engine.review
        print(f"LLM review: {'enabled' if review.enabled else 'disabled'}")
        return 0


class ConfigPathCommand(BaseModel):
    """Show where configuration files are read from."""

    async def run(self, state: State) -> int:  # noqa: ARG002
        print(f"defaults: {DEFAULTS_FILE}")
        print(f"user:     {user_config_path()}")
        print("project:  ./guardian.yaml")
        return 0

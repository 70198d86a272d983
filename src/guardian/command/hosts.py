"""Host commands: ping-hosts, list-models, select-host."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from guardian.backend.resolver import probe_all, require_backend
from guardian.command.output import print_json, render_probes

if TYPE_CHECKING:
    from guardian.core.config import State


class PingHostsCommand(BaseModel):
    """Probe every enabled Ollama host and report which answer."""

    model_config = ConfigDict(populate_by_name=True)

    json_output: bool = Field(default=False, alias="json")

    async def run(self, state: State) -> int:
        ollama = state.config.ollama
        if not ollama.enabled_backends():
            print("No hosts configured")
            return 2

        outcomes = await probe_all(ollama.backends, ollama.timeout_s)
        if self.json_output:
            print_json(outcomes)
            return 0

        print(f"Pinging {len(outcomes)} host(s)...\n")
        print(render_probes(outcomes))
        reachable = sum(o.reachable for o in outcomes)
        print(f"\n{reachable}/{len(outcomes)} hosts reachable")
        return 0


class ListModelsCommand(BaseModel):
    """List the models installed on reachable hosts."""

    model_config = ConfigDict(populate_by_name=True)

    host: str | None = Field(default=None, description="Only this host")
    json_output: bool = Field(default=False, alias="json")

    async def run(self, state: State) -> int:
        ollama = state.config.ollama
        backends = [
            b for b in ollama.enabled_backends()
            if self.host is None or b.name == self.host
        ]
        if not backends:
            print("No matching hosts found")
            return 2

        report = []
        for outcome in await probe_all(backends, ollama.timeout_s):
            backend = outcome.backend
            entry = {
                "host": backend.name,
                "base_url": backend.base_url,
                "reachable": outcome.reachable,
                "models": [],
            }
            if outcome.reachable:
                entry["models"] = list(outcome.models)
            else:
                entry["error"] = outcome.reason
            report.append(entry)

        if self.json_output:
            print_json(report)
            return 0

        for entry in report:
            print(f"\n{entry['host']} ({entry['base_url']}):", end="")
            if "error" in entry:
                print(f" UNREACHABLE - {entry['error']}")
                continue
            print(f" {len(entry['models'])} model(s)")
            for name in entry["models"]:
                print(f"  - {name}")
        return 0


class SelectHostCommand(BaseModel):
    """Print the host the resolver picks (for scripting)."""

    model_config = ConfigDict(populate_by_name=True)

    model: str | None = Field(
        default=None, description="Require this model to be installed"
    )
    json_output: bool = Field(default=False, alias="json")

    async def run(self, state: State) -> int:
        """Raises NoBackendAvailable when nothing answers."""
        ollama = state.config.ollama
        resolved = await require_backend(
            ollama.backends, ollama.timeout_s, required_model=self.model
        )
        if self.json_output:
            print_json(resolved)
        else:
            print(f"{resolved.backend.name} {resolved.backend.base_url}")
        return 0

"""Ask command - send one prompt to a model."""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import CliPositionalArg

from guardian.backend.client import OllamaClient, describe_error
from guardian.backend.resolver import require_backend
from guardian.command.output import print_json
from guardian.core.errors import LlmTransportError, NoBackendAvailable
from guardian.core.log import logger

if TYPE_CHECKING:
    from guardian.core.config import State


class AskCommand(BaseModel):
    """Send a prompt to an Ollama model and print the reply."""

    model_config = ConfigDict(populate_by_name=True)

    prompt: CliPositionalArg[str] = Field(description="The prompt to send")
    model: str | None = Field(
        default=None,
        description="Model to use (default: config or first available)",
    )
    host: str | None = Field(default=None, description="Host to use")
    json_output: bool = Field(default=False, alias="json")

    async def run(self, state: State) -> int:
        """Raises NoBackendAvailable when no host can serve the prompt."""
        ollama = state.config.ollama
        client = OllamaClient(request_timeout=ollama.request_timeout_s)

        if self.host:
            backend = ollama.find(self.host)
            if backend is None:
                raise NoBackendAvailable(f"Host '{self.host}' is not configured")
        else:
            resolved = await require_backend(
                ollama.backends,
                ollama.timeout_s,
                client=client,
                required_model=self.model,
            )
            backend = resolved.backend

        model = self.model or ollama.default_model
        if model is None:
            try:
                models = await client.list_models(
                    backend, timeout=ollama.timeout_s
                )
            except (
                aiohttp.ClientError, TimeoutError, ValidationError, ValueError
            ) as e:
                raise LlmTransportError(backend.name, describe_error(e)) from e
            if not models:
                raise NoBackendAvailable(f"Host '{backend.name}' has no models")
            model = models[0].name

        with logger.span("Ask {model}", model=model, backend=backend.name):
            reply = await client.generate(backend, model, self.prompt)

        if self.json_output:
            print_json({
                "host": backend.name,
                "model": model,
                "response": reply.response,
            })
        else:
            print(reply.response)
        return 0

"""aiohttp client for the Ollama HTTP API."""

from __future__ import annotations

import errno
import socket
import time
from typing import Any

import aiohttp
from pydantic import BaseModel, ValidationError

from guardian.core.config import Backend
from guardian.core.errors import LlmTransportError
from guardian.core.log import logger


class OllamaModel(BaseModel):
    """A model installed on an Ollama server."""

    name: str
    modified_at: str | None = None
    size: int | None = None
    digest: str | None = None


class TagsResponse(BaseModel):
    models: list[OllamaModel] = []


class GenerateResponse(BaseModel):
    """Reply of a non-streaming /api/generate call."""

    response: str
    done: bool = True
    total_duration: int | None = None
    eval_count: int | None = None


def describe_error(exc: BaseException) -> str:
    """Short reason string for a failed request.

    Distinguishes the cases an operator cares about when a host is
    down: refused, DNS, TLS, timeout, bad status.
    """
    if isinstance(exc, TimeoutError):
        return "timeout"
    if isinstance(exc, aiohttp.ClientResponseError):
        return f"http status {exc.status}"
    if isinstance(exc, aiohttp.ClientSSLError):
        return "tls failure"
    if isinstance(exc, aiohttp.ClientConnectorError):
        os_error = exc.os_error
        if isinstance(os_error, socket.gaierror):
            return "dns failure"
        if isinstance(os_error, ConnectionRefusedError) or (
            getattr(os_error, "errno", None) == errno.ECONNREFUSED
        ):
            return "connection refused"
        return f"connection error: {os_error or exc}"
    if isinstance(exc, aiohttp.ContentTypeError | ValidationError | ValueError):
        return f"invalid response: {exc}"
    if isinstance(exc, aiohttp.ClientError):
        return f"connection error: {exc}"
    return f"{type(exc).__name__}: {exc}"


class OllamaClient:
    """Minimal Ollama API client: model listing and generation.

    A fresh ClientSession is opened per request, so one client can
    be shared by concurrently running probes and reviews without
    any session lifetime to manage.
    """

    def __init__(self, request_timeout: float = 180.0):
        """
        Args:
            request_timeout: Total timeout for generate requests in
                seconds
        """
        self.request_timeout = request_timeout

    @staticmethod
    def _url(backend: Backend, path: str) -> str:
        return f"{backend.base_url.rstrip('/')}{path}"

    async def list_models(
        self, backend: Backend, timeout: float | None = None
    ) -> list[OllamaModel]:
        """List the models installed on a backend (GET /api/tags).

        This is also the liveness call used by probes: it is cheap
        and has no side effects.

        Raises:
            aiohttp.ClientError, TimeoutError, ValidationError: on
                any transport or decoding failure
        """
        url = self._url(backend, "/api/tags")
        client_timeout = aiohttp.ClientTimeout(
            total=timeout or self.request_timeout
        )
        logger.spew("Listing models", backend=backend.name, url=url)

        async with (
            aiohttp.ClientSession(timeout=client_timeout) as session,
            session.get(url) as resp,
        ):
            resp.raise_for_status()
            tags = TagsResponse.model_validate(await resp.json())

        logger.debug(
            "Listed models",
            backend=backend.name,
            model_count=len(tags.models),
        )
        return tags.models

    async def generate(
        self,
        backend: Backend,
        model: str,
        prompt: str,
        system: str | None = None,
        format: dict[str, Any] | str | None = None,  # noqa: A002
    ) -> GenerateResponse:
        """Run one non-streaming completion (POST /api/generate).

        Args:
            backend: Host to send the request to
            model: Model name installed on the host
            prompt: User prompt
            system: Optional system instruction
            format: "json" or a JSON schema constraining the reply

        Raises:
            LlmTransportError: On timeout, connection failure, error
                status, or an undecodable envelope
        """
        url = self._url(backend, "/api/generate")
        body: dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "stream": False,
        }
        if system:
            body["system"] = system
        if format is not None:
            body["format"] = format

        logger.info(
            "Sending generate request",
            backend=backend.name,
            model=model,
            prompt_len=len(prompt),
        )
        logger.trace("Full prompt", prompt=prompt)

        start = time.monotonic()
        try:
            async with (
                aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self.request_timeout)
                ) as session,
                session.post(url, json=body) as resp,
            ):
                if resp.status >= 400:
                    text = await resp.text()
                    raise LlmTransportError(
                        backend.name,
                        f"http status {resp.status}: {text[:500]}",
                    )
                reply = GenerateResponse.model_validate(await resp.json())
        except LlmTransportError:
            raise
        except (aiohttp.ClientError, TimeoutError, ValidationError, ValueError) as e:
            raise LlmTransportError(backend.name, describe_error(e)) from e

        logger.info(
            "Generate complete",
            backend=backend.name,
            model=model,
            response_len=len(reply.response),
            duration_ms=int((time.monotonic() - start) * 1000),
            eval_count=reply.eval_count,
        )
        logger.trace("Full response", response=reply.response)
        return reply

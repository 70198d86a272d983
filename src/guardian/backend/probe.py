"""Single-backend liveness probe."""

from __future__ import annotations

import asyncio
import time

import aiohttp
from pydantic import ValidationError

from guardian.backend.client import OllamaClient, describe_error
from guardian.core.config import Backend
from guardian.core.log import logger
from guardian.core.result import ProbeOutcome


async def probe(
    backend: Backend,
    timeout: float,
    client: OllamaClient | None = None,
) -> ProbeOutcome:
    """Check whether a backend answers its model listing in time.

    An unreachable backend is an ordinary outcome, not an error: all
    network failures come back as reachable=False with a reason.

    Args:
        backend: Backend to probe
        timeout: Deadline in seconds; never exceeded
        client: Client to use (a default one when None)

    Returns:
        ProbeOutcome with latency and installed model names
    """
    client = client or OllamaClient()
    start = time.monotonic()
    logger.debug("Probing backend", backend=backend.name, url=backend.base_url)

    try:
        models = await asyncio.wait_for(
            client.list_models(backend, timeout=timeout), timeout
        )
    except (aiohttp.ClientError, TimeoutError, ValidationError, ValueError) as e:
        reason = describe_error(e)
        logger.warn(
            "Backend unreachable", backend=backend.name, reason=reason
        )
        return ProbeOutcome(
            backend=backend,
            reachable=False,
            latency_ms=None if reason == "timeout" else _elapsed_ms(start),
            reason=reason,
        )

    latency = _elapsed_ms(start)
    logger.info("Backend reachable", backend=backend.name, latency_ms=latency)
    return ProbeOutcome(
        backend=backend,
        reachable=True,
        latency_ms=latency,
        models=tuple(m.name for m in models),
    )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)

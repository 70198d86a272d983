"""Backend selection: race probes within a tier, fall through tiers."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from functools import partial
from typing import Generic, TypeVar

from guardian.backend.client import OllamaClient, describe_error
from guardian.backend.probe import probe
from guardian.core.config import Backend, Tier
from guardian.core.errors import NoBackendAvailable
from guardian.core.log import logger
from guardian.core.result import ProbeOutcome, ResolvedBackend

ProbeFn = Callable[[Backend, float], Awaitable[ProbeOutcome]]

T = TypeVar("T")


class FirstWriterSlot(Generic[T]):
    """Holds one value; the first offer wins, later offers are dropped."""

    def __init__(self):
        self._value: T | None = None
        self._filled = False

    @property
    def filled(self) -> bool:
        return self._filled

    @property
    def value(self) -> T | None:
        return self._value

    def offer(self, value: T) -> bool:
        """Store value unless the slot is already filled.

        Returns:
            True if this offer was stored
        """
        if self._filled:
            return False
        self._value = value
        self._filled = True
        return True


def has_model(models: Iterable[str], name: str) -> bool:
    """Whether name is installed; an untagged name means ':latest'."""
    models = set(models)
    return name in models or (":" not in name and f"{name}:latest" in models)


def _default_probe(client: OllamaClient | None) -> ProbeFn:
    return partial(probe, client=client or OllamaClient())


def _outcome_of(task: asyncio.Task, backend: Backend) -> ProbeOutcome:
    """Probe outcome of a finished task, even if the probe raised."""
    if task.cancelled():
        return ProbeOutcome(backend=backend, reachable=False, reason="cancelled")
    exc = task.exception()
    if exc is not None:
        return ProbeOutcome(
            backend=backend, reachable=False, reason=describe_error(exc)
        )
    return task.result()


def _usable(outcome: ProbeOutcome, required_model: str | None) -> bool:
    if not outcome.reachable:
        return False
    if required_model and not has_model(outcome.models, required_model):
        logger.info(
            "Backend lacks required model",
            backend=outcome.backend.name,
            model=required_model,
        )
        return False
    return True


async def _race(
    backends: list[Backend],
    timeout: float,
    probe_fn: ProbeFn,
    required_model: str | None,
) -> ProbeOutcome | None:
    """Probe backends concurrently and return the first usable one.

    Probes still running when a winner is found (or the deadline
    passes) are cancelled and never awaited, so a late result has
    no path into the return value.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    order = {}
    for index, backend in enumerate(backends):
        order[asyncio.create_task(probe_fn(backend, timeout))] = index

    slot: FirstWriterSlot[ProbeOutcome] = FirstWriterSlot()
    pending = set(order)
    try:
        while pending and not slot.filled:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            done, pending = await asyncio.wait(
                pending,
                timeout=remaining,
                return_when=asyncio.FIRST_COMPLETED,
            )
            # Several probes can finish in the same tick; configured
            # order decides between them, not arrival order.
            for task in sorted(done, key=order.__getitem__):
                outcome = _outcome_of(task, backends[order[task]])
                if _usable(outcome, required_model):
                    slot.offer(outcome)
    finally:
        for task in pending:
            task.cancel()

    if pending and not slot.filled:
        logger.debug(
            "Probe race timed out",
            still_pending=len(pending),
            timeout_s=timeout,
        )
    return slot.value


async def resolve(
    backends: Iterable[Backend],
    timeout: float,
    probe_fn: ProbeFn | None = None,
    client: OllamaClient | None = None,
    required_model: str | None = None,
) -> ResolvedBackend | None:
    """Pick a reachable backend, preferring the primary tier.

    Enabled primaries are raced first; fallbacks get their own race
    with a fresh timeout only if no primary answers. Finding nothing
    is a normal result, not an error.

    Args:
        backends: Configured backends in priority order
        timeout: Timeout for each tier's race, in seconds
        probe_fn: Probe implementation (defaults to an HTTP probe)
        client: Client for the default probe
        required_model: Skip backends that do not have this model

    Returns:
        The selected backend and its tier, or None
    """
    probe_fn = probe_fn or _default_probe(client)
    enabled = [b for b in backends if b.enabled]

    for tier in (Tier.PRIMARY, Tier.FALLBACK):
        members = [b for b in enabled if b.tier == tier]
        if not members:
            continue

        with logger.span(
            "Racing {tier} backends",
            tier=str(tier),
            backends=[b.name for b in members],
        ):
            winner = await _race(members, timeout, probe_fn, required_model)

        if winner is not None:
            logger.info(
                "Selected backend",
                backend=winner.backend.name,
                tier=str(tier),
                latency_ms=winner.latency_ms,
            )
            return ResolvedBackend(
                backend=winner.backend,
                tier=tier,
                latency_ms=winner.latency_ms,
            )

    logger.warn("No reachable backends", configured=len(enabled))
    return None


async def require_backend(
    backends: Iterable[Backend],
    timeout: float,
    probe_fn: ProbeFn | None = None,
    client: OllamaClient | None = None,
    required_model: str | None = None,
) -> ResolvedBackend:
    """Like resolve(), for callers that cannot proceed without one.

    Raises:
        NoBackendAvailable: No backend in any tier answered
    """
    resolved = await resolve(
        backends,
        timeout,
        probe_fn=probe_fn,
        client=client,
        required_model=required_model,
    )
    if resolved is None:
        if required_model:
            raise NoBackendAvailable(
                f"No reachable backend has model '{required_model}'"
            )
        raise NoBackendAvailable()
    return resolved


async def probe_all(
    backends: Iterable[Backend],
    timeout: float,
    probe_fn: ProbeFn | None = None,
    client: OllamaClient | None = None,
) -> list[ProbeOutcome]:
    """Probe every enabled backend and wait for all of them.

    Diagnostic counterpart of resolve(): nothing short-circuits.
    Results are ordered primaries first, then fallbacks, each in
    configured order.
    """
    probe_fn = probe_fn or _default_probe(client)
    enabled = [b for b in backends if b.enabled]
    ordered = (
        [b for b in enabled if b.tier == Tier.PRIMARY]
        + [b for b in enabled if b.tier == Tier.FALLBACK]
    )

    tasks = [
        asyncio.create_task(asyncio.wait_for(probe_fn(b, timeout), timeout))
        for b in ordered
    ]
    if tasks:
        await asyncio.wait(tasks)
    return [_outcome_of(t, b) for t, b in zip(tasks, ordered, strict=True)]

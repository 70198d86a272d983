"""ResolveBackend node - pick the backend and model for the review."""

from __future__ import annotations

from dataclasses import dataclass

import aiohttp
from pydantic import ValidationError
from pydantic_graph import BaseNode, GraphRunContext

from guardian.backend.client import describe_error
from guardian.backend.resolver import resolve
from guardian.core.log import logger
from guardian.core.result import LlmCheckOutcome
from guardian.workflow.nodes.run_checks import RunChecks
from guardian.workflow.state import CheckDeps, CheckRunState, CoordinatorPhase


@dataclass
class ResolveBackend(BaseNode[CheckRunState, CheckDeps]):
    """Resolve a backend; moves on to RunChecks whether or not one is found."""

    async def run(
        self, ctx: GraphRunContext[CheckRunState, CheckDeps]
    ) -> RunChecks:
        state, deps = ctx.state, ctx.deps
        state.enter(CoordinatorPhase.RESOLVING_BACKEND)
        ollama = deps.config.ollama

        state.resolved = await resolve(
            ollama.backends,
            ollama.timeout_s,
            probe_fn=deps.probe_fn,
            client=deps.client,
        )
        if state.resolved is None:
            state.llm_outcome = LlmCheckOutcome.skipped("no reachable backend")
            return RunChecks()

        state.model = deps.config.review.model or ollama.default_model
        if state.model is None:
            await self._pick_listed_model(ctx)
        return RunChecks()

    @staticmethod
    async def _pick_listed_model(
        ctx: GraphRunContext[CheckRunState, CheckDeps],
    ):
        """Use the first model the backend lists when none is configured."""
        state = ctx.state
        backend = state.resolved.backend
        try:
            models = await ctx.deps.client.list_models(
                backend, timeout=ctx.deps.config.ollama.timeout_s
            )
        except (aiohttp.ClientError, TimeoutError, ValidationError, ValueError) as e:
            reason = describe_error(e)
            logger.error(
                "Could not list models", backend=backend.name, reason=reason
            )
            state.llm_outcome = LlmCheckOutcome.errored(
                f"listing models failed: {reason}", backend=backend.name
            )
            return

        if not models:
            state.llm_outcome = LlmCheckOutcome.errored(
                "backend has no models installed", backend=backend.name
            )
            return
        state.model = models[0].name
        logger.info("Using first listed model", model=state.model)

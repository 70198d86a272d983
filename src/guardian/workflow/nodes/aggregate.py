"""Aggregate node - fold unit outcomes into the verdict."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic_graph import BaseNode, End, GraphRunContext

from guardian.core.log import logger
from guardian.core.result import CheckVerdict, LlmStatus
from guardian.core.verdict import compute_overall_status
from guardian.workflow.state import CheckDeps, CheckRunState, CoordinatorPhase


@dataclass
class Aggregate(BaseNode[CheckRunState, CheckDeps, CheckVerdict]):
    """Compute the overall status once every unit has reported."""

    async def run(
        self, ctx: GraphRunContext[CheckRunState, CheckDeps]
    ) -> End[CheckVerdict]:
        state = ctx.state
        state.enter(CoordinatorPhase.AGGREGATING)

        llm = next((o for o in state.outcomes if o.kind == "llm"), None)
        ran_llm = llm is not None and llm.status != LlmStatus.SKIPPED

        verdict = CheckVerdict(
            overall_status=compute_overall_status(state.outcomes),
            outcomes=tuple(state.outcomes),
            backend=state.resolved.backend.name if ran_llm and state.resolved else None,
            model=state.model if ran_llm else None,
            duration_ms=state.elapsed_ms,
        )
        state.enter(CoordinatorPhase.DONE)

        logger.info(
            "Check run complete",
            overall_status=str(verdict.overall_status),
            units=len(verdict.outcomes),
            duration_ms=verdict.duration_ms,
        )
        return End(verdict)

"""RunChecks node - run every check unit and wait for all of them."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from pydantic_graph import BaseNode, GraphRunContext

from guardian.checks.policy import evaluate_rules
from guardian.core.log import logger
from guardian.core.result import (
    LlmCheckOutcome,
    PolicyRuleOutcome,
    PolicyStatus,
    PolicyViolation,
    ScriptCheckResult,
    ScriptStatus,
    UnitOutcome,
)
from guardian.workflow.nodes.aggregate import Aggregate
from guardian.workflow.state import CheckDeps, CheckRunState, CoordinatorPhase


@dataclass
class RunChecks(BaseNode[CheckRunState, CheckDeps]):
    """Launch script, policy and LLM units concurrently.

    This is a barrier: the node returns only when every launched
    unit has an outcome. A unit that raises unexpectedly is turned
    into an errored outcome of its own kind so siblings still count.
    """

    async def run(
        self, ctx: GraphRunContext[CheckRunState, CheckDeps]
    ) -> Aggregate:
        state, deps = ctx.state, ctx.deps
        state.enter(CoordinatorPhase.RUNNING_CHECKS)
        config = deps.config

        script_unit, policy_unit, llm_unit = await asyncio.gather(
            _run_scripts(ctx),
            asyncio.to_thread(_run_policy, ctx),
            _run_llm(ctx),
        )

        outcomes: list[UnitOutcome] = [*script_unit, *policy_unit]
        if llm_unit is not None:
            outcomes.append(llm_unit)
        state.outcomes = outcomes

        logger.debug(
            "All check units finished",
            scripts=len(config.scripts.commands),
            rules=len(config.policy.rules),
            llm=llm_unit is not None,
        )
        return Aggregate()


async def _run_scripts(
    ctx: GraphRunContext[CheckRunState, CheckDeps],
) -> list[ScriptCheckResult]:
    scripts = ctx.deps.config.scripts
    try:
        return await ctx.deps.script_runner.arun_all(
            scripts.commands, scripts.timeout
        )
    except Exception as e:
        logger.error("Script unit failed", error=str(e))
        return [
            ScriptCheckResult(
                command=command,
                status=ScriptStatus.ERRORED,
                error=f"internal error: {e}",
            )
            for command in scripts.commands
        ]


def _run_policy(
    ctx: GraphRunContext[CheckRunState, CheckDeps],
) -> list[PolicyRuleOutcome]:
    rules = ctx.deps.config.policy.rules
    try:
        return evaluate_rules(ctx.state.payload, rules)
    except Exception as e:
        logger.error("Policy unit failed", error=str(e))
        return [
            PolicyRuleOutcome(
                rule_id=rule.id,
                rule_kind=rule.kind,
                status=PolicyStatus.INVALID,
                violations=(
                    PolicyViolation(
                        rule_id=rule.id,
                        severity=rule.severity,
                        message=f"internal error: {e}",
                    ),
                ),
                error=str(e),
            )
            for rule in rules
        ]


async def _run_llm(
    ctx: GraphRunContext[CheckRunState, CheckDeps],
) -> LlmCheckOutcome | None:
    state, deps = ctx.state, ctx.deps
    review = deps.config.review
    if not review.enabled:
        return None
    if state.llm_outcome is not None:
        return state.llm_outcome
    if state.resolved is None:
        return LlmCheckOutcome.skipped("no reachable backend")

    try:
        return await deps.reviewer.evaluate(
            state.resolved.backend,
            state.model,
            state.payload,
            rules_text=review.rules_text,
            task_context=review.task,
        )
    except Exception as e:
        logger.error("LLM unit failed", error=str(e))
        return LlmCheckOutcome.errored(
            f"internal error: {e}",
            backend=state.resolved.backend.name,
            model=state.model,
        )

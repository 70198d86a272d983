"""Console and JSON rendering for command results."""

from __future__ import annotations

import json
from collections.abc import Iterable

from pydantic import BaseModel, TypeAdapter

from guardian.core.result import (
    CheckVerdict,
    LlmCheckOutcome,
    PolicyRuleOutcome,
    ProbeOutcome,
    ScriptCheckResult,
)


def print_json(value) -> None:
    """Print a model, list of models or plain data as indented JSON."""
    if isinstance(value, BaseModel):
        print(value.model_dump_json(indent=2))
    elif isinstance(value, list) and value and isinstance(value[0], BaseModel):
        adapter = TypeAdapter(list[type(value[0])])
        print(adapter.dump_json(value, indent=2).decode())
    else:
        print(json.dumps(value, indent=2, default=str))


def _script_lines(outcome: ScriptCheckResult) -> list[str]:
    detail = f"exit {outcome.exit_code}" if outcome.exit_code is not None else outcome.error
    lines = [
        f"  [script] {outcome.status.upper():<9} {outcome.command} "
        f"({detail}, {outcome.duration_ms} ms)"
    ]
    if outcome.status != "passed":
        tail = (outcome.stderr or outcome.stdout).strip().splitlines()[-5:]
        lines += [f"      {line}" for line in tail]
    return lines


def _policy_lines(outcome: PolicyRuleOutcome) -> list[str]:
    lines = [f"  [policy] {outcome.status.upper():<9} {outcome.rule_id}"]
    for v in outcome.violations:
        where = f" {v.location}" if v.location else ""
        lines.append(f"      {v.severity}{where}: {v.message}")
    return lines


def _llm_lines(outcome: LlmCheckOutcome) -> list[str]:
    head = f"  [llm]    {outcome.status.upper():<9}"
    if outcome.model:
        head += f" {outcome.model}"
    if outcome.fail_open:
        head += " (fail-open)"
    lines = [head]
    if outcome.error and not outcome.fail_open:
        lines.append(f"      {outcome.error}")
    if outcome.result:
        lines.append(f"      severity {outcome.result.severity}")
        lines += [f"      - {reason}" for reason in outcome.result.reasons]
        lines += [
            f"      see {path}"
            for path in outcome.result.file_context_suggestions
        ]
    return lines


_RENDERERS = {
    "script": _script_lines,
    "policy": _policy_lines,
    "llm": _llm_lines,
}


def render_verdict(verdict: CheckVerdict) -> str:
    """Human-readable verdict, one block per unit outcome."""
    head = f"guardian: {verdict.overall_status.upper()}"
    if verdict.backend:
        head += f" (backend {verdict.backend}, model {verdict.model})"
    head += f" in {verdict.duration_ms} ms"

    lines = [head]
    for outcome in verdict.outcomes:
        lines += _RENDERERS[outcome.kind](outcome)
    if not verdict.outcomes:
        lines.append("  no checks configured")
    return "\n".join(lines)


def render_probes(outcomes: Iterable[ProbeOutcome]) -> str:
    lines = []
    for o in outcomes:
        b = o.backend
        if o.reachable:
            lines.append(
                f"  {b.name:<12} {b.tier:<8} OK    {o.latency_ms} ms  {b.base_url}"
            )
        else:
            lines.append(
                f"  {b.name:<12} {b.tier:<8} DOWN  {o.reason}  {b.base_url}"
            )
    return "\n".join(lines)

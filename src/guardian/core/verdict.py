"""Fold unit outcomes into one overall status.

The fold is a three-level lattice, passed < warning < blocked.
Every outcome contributes the highest level it justifies and the
run takes the maximum, so a blocking condition always wins no
matter how many warnings sit next to it.
"""

from __future__ import annotations

from collections.abc import Iterable

from guardian.core.config import Severity
from guardian.core.result import (
    LlmCheckOutcome,
    LlmStatus,
    OverallStatus,
    PolicyRuleOutcome,
    ScriptCheckResult,
    ScriptStatus,
    UnitOutcome,
)

_RANK = {
    OverallStatus.PASSED: 0,
    OverallStatus.WARNING: 1,
    OverallStatus.BLOCKED: 2,
}


def script_level(outcome: ScriptCheckResult) -> OverallStatus:
    if outcome.status in (ScriptStatus.FAILED, ScriptStatus.ERRORED):
        return OverallStatus.BLOCKED
    if outcome.status == ScriptStatus.TIMED_OUT:
        return OverallStatus.WARNING
    return OverallStatus.PASSED


def policy_level(outcome: PolicyRuleOutcome) -> OverallStatus:
    level = OverallStatus.PASSED
    for violation in outcome.violations:
        if violation.severity == Severity.HIGH:
            return OverallStatus.BLOCKED
        level = OverallStatus.WARNING
    return level


def llm_level(outcome: LlmCheckOutcome) -> OverallStatus:
    if outcome.status == LlmStatus.SKIPPED:
        return OverallStatus.PASSED
    if outcome.status == LlmStatus.ERRORED:
        return OverallStatus.WARNING
    if outcome.fail_open:
        return OverallStatus.WARNING

    result = outcome.result
    if result is None:
        return OverallStatus.PASSED
    if not result.ok_to_proceed:
        if result.severity == Severity.HIGH:
            return OverallStatus.BLOCKED
        return OverallStatus.WARNING
    if result.reasons:
        return OverallStatus.WARNING
    return OverallStatus.PASSED


def outcome_level(outcome: UnitOutcome) -> OverallStatus:
    """Highest status a single unit outcome justifies."""
    if outcome.kind == "script":
        return script_level(outcome)
    if outcome.kind == "policy":
        return policy_level(outcome)
    if outcome.kind == "llm":
        return llm_level(outcome)
    raise TypeError(f"Unknown outcome kind: {outcome.kind!r}")


def compute_overall_status(
    outcomes: Iterable[UnitOutcome],
) -> OverallStatus:
    """Overall status for a run; passed when there are no outcomes."""
    return max(
        (outcome_level(o) for o in outcomes),
        key=_RANK.__getitem__,
        default=OverallStatus.PASSED,
    )

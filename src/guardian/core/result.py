"""Result types produced by probes and check units."""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from guardian.core.config import Backend, Severity, Tier


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ============================================================
# BACKEND SELECTION
# ============================================================

class ProbeOutcome(_Frozen):
    """Result of one liveness probe against one backend."""

    backend: Backend
    reachable: bool
    latency_ms: int | None = None
    reason: str | None = None
    models: tuple[str, ...] = ()


class ResolvedBackend(_Frozen):
    """The backend chosen for a run and the tier it came from."""

    backend: Backend
    tier: Tier
    latency_ms: int | None = None


# ============================================================
# CHECK UNITS
# ============================================================

class ScriptStatus(StrEnum):
    PASSED = "passed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    ERRORED = "errored"


class ScriptCheckResult(_Frozen):
    """Outcome of one script check."""

    kind: Literal["script"] = "script"
    command: str
    status: ScriptStatus
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    error: str | None = None


class Location(_Frozen):
    path: str | None = None
    line: int | None = None

    def __str__(self) -> str:
        if self.path and self.line:
            return f"{self.path}:{self.line}"
        if self.path:
            return self.path
        return f"line {self.line}" if self.line else ""


class PolicyViolation(_Frozen):
    """One rule violation found in the change."""

    rule_id: str
    severity: Severity
    message: str
    location: Location | None = None


class PolicyStatus(StrEnum):
    PASSED = "passed"
    VIOLATED = "violated"
    INVALID = "invalid"


class PolicyRuleOutcome(_Frozen):
    """Outcome of evaluating one policy rule."""

    kind: Literal["policy"] = "policy"
    rule_id: str
    rule_kind: str
    status: PolicyStatus
    violations: tuple[PolicyViolation, ...] = ()
    error: str | None = None


class LlmCheckResult(_Frozen):
    """The JSON document the reviewer model must return.

    Replies are parsed in strict mode: every field is required,
    ok_to_proceed must be a JSON boolean and severity one of low,
    medium, high.
    """

    ok_to_proceed: bool = Field(
        description="Whether the change may proceed"
    )
    severity: Severity = Field(
        description="How serious the problems found are"
    )
    reasons: list[str] = Field(
        description="Short reasons supporting the decision"
    )
    file_context_suggestions: list[str] = Field(
        description="Paths of files worth reading to fix the problems"
    )


class LlmStatus(StrEnum):
    PASSED = "passed"
    WARNED = "warned"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERRORED = "errored"


class LlmCheckOutcome(_Frozen):
    """Outcome of the LLM review unit."""

    kind: Literal["llm"] = "llm"
    status: LlmStatus
    result: LlmCheckResult | None = None
    fail_open: bool = False
    attempts: int = 0
    error: str | None = None
    backend: str | None = None
    model: str | None = None

    @classmethod
    def skipped(cls, reason: str) -> LlmCheckOutcome:
        return cls(status=LlmStatus.SKIPPED, error=reason)

    @classmethod
    def errored(
        cls,
        reason: str,
        backend: str | None = None,
        model: str | None = None,
        attempts: int = 0,
    ) -> LlmCheckOutcome:
        return cls(
            status=LlmStatus.ERRORED,
            error=reason,
            backend=backend,
            model=model,
            attempts=attempts,
        )


UnitOutcome = Annotated[
    ScriptCheckResult | PolicyRuleOutcome | LlmCheckOutcome,
    Field(discriminator="kind"),
]


# ============================================================
# VERDICT
# ============================================================

class OverallStatus(StrEnum):
    PASSED = "passed"
    WARNING = "warning"
    BLOCKED = "blocked"


class CheckVerdict(_Frozen):
    """Aggregate decision for one run plus every unit outcome."""

    overall_status: OverallStatus
    outcomes: tuple[UnitOutcome, ...]
    backend: str | None = None
    model: str | None = None
    duration_ms: int = 0

    @property
    def scripts(self) -> list[ScriptCheckResult]:
        return [o for o in self.outcomes if o.kind == "script"]

    @property
    def policy(self) -> list[PolicyRuleOutcome]:
        return [o for o in self.outcomes if o.kind == "policy"]

    @property
    def llm(self) -> LlmCheckOutcome | None:
        return next((o for o in self.outcomes if o.kind == "llm"), None)

    @property
    def violations(self) -> list[PolicyViolation]:
        return [v for o in self.policy for v in o.violations]


__all__ = [
    "CheckVerdict",
    "LlmCheckOutcome",
    "LlmCheckResult",
    "LlmStatus",
    "Location",
    "OverallStatus",
    "PolicyRuleOutcome",
    "PolicyStatus",
    "PolicyViolation",
    "ProbeOutcome",
    "ResolvedBackend",
    "ScriptCheckResult",
    "ScriptStatus",
    "UnitOutcome",
]

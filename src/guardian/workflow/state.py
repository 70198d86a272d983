"""Per-run state and dependencies of the check workflow."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum

from guardian.backend.client import OllamaClient
from guardian.backend.resolver import ProbeFn
from guardian.checks.review import LlmReviewer
from guardian.checks.script import ScriptRunner
from guardian.core.change import ChangePayload
from guardian.core.config import EngineConfig
from guardian.core.log import logger
from guardian.core.result import LlmCheckOutcome, ResolvedBackend, UnitOutcome


class CoordinatorPhase(StrEnum):
    IDLE = "idle"
    RESOLVING_BACKEND = "resolving_backend"
    RUNNING_CHECKS = "running_checks"
    AGGREGATING = "aggregating"
    DONE = "done"


@dataclass
class CheckRunState:
    """Mutable bookkeeping for one run; only graph nodes write it."""

    payload: ChangePayload
    phase: CoordinatorPhase = CoordinatorPhase.IDLE
    phases: list[CoordinatorPhase] = field(default_factory=list)
    resolved: ResolvedBackend | None = None
    model: str | None = None
    # Set when the LLM unit is settled before it runs (skipped/errored)
    llm_outcome: LlmCheckOutcome | None = None
    outcomes: list[UnitOutcome] = field(default_factory=list)
    started: float = field(default_factory=time.monotonic)

    def enter(self, phase: CoordinatorPhase):
        logger.debug("Coordinator phase", previous=str(self.phase), phase=str(phase))
        self.phase = phase
        self.phases.append(phase)

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


@dataclass
class CheckDeps:
    """Read-only collaborators shared by all nodes of a run."""

    config: EngineConfig
    client: OllamaClient
    script_runner: ScriptRunner
    reviewer: LlmReviewer
    probe_fn: ProbeFn | None = None

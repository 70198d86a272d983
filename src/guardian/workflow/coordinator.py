"""Check coordinator: one verdict per invocation."""

from __future__ import annotations

from guardian.backend.client import OllamaClient
from guardian.backend.resolver import ProbeFn
from guardian.checks.review import LlmReviewer
from guardian.checks.script import ScriptRunner
from guardian.core.change import ChangePayload
from guardian.core.config import EngineConfig
from guardian.core.log import logger
from guardian.core.result import CheckVerdict
from guardian.workflow.graph import create_workflow
from guardian.workflow.nodes import ResolveBackend, RunChecks
from guardian.workflow.state import CheckDeps, CheckRunState


class CheckCoordinator:
    """Runs every configured check unit and folds their outcomes.

    The configuration is an immutable snapshot taken at construction;
    collaborators can be substituted for tests.
    """

    def __init__(
        self,
        config: EngineConfig,
        client: OllamaClient | None = None,
        script_runner: ScriptRunner | None = None,
        reviewer: LlmReviewer | None = None,
        probe_fn: ProbeFn | None = None,
    ):
        self.config = config
        self.client = client or OllamaClient(
            request_timeout=config.ollama.request_timeout_s
        )
        self.script_runner = script_runner or ScriptRunner(
            config.scripts.workdir,
            max_output_bytes=config.scripts.max_output_bytes,
        )
        self.reviewer = reviewer or LlmReviewer(self.client)
        self.probe_fn = probe_fn
        self.workflow = create_workflow()

    async def run(
        self, payload: ChangePayload | str
    ) -> tuple[CheckVerdict, CheckRunState]:
        """Run all checks against a change.

        Returns:
            The verdict and the final run state (phase history,
            resolved backend)
        """
        if isinstance(payload, str):
            payload = ChangePayload(text=payload)

        state = CheckRunState(payload=payload)
        deps = CheckDeps(
            config=self.config,
            client=self.client,
            script_runner=self.script_runner,
            reviewer=self.reviewer,
            probe_fn=self.probe_fn,
        )
        start = ResolveBackend() if self.config.review.enabled else RunChecks()

        with logger.span("Check run", start=type(start).__name__):
            result = await self.workflow.run(start, state=state, deps=deps)
        return result.output, state

    async def check(self, payload: ChangePayload | str) -> CheckVerdict:
        """Run all checks and return only the verdict."""
        verdict, _ = await self.run(payload)
        return verdict

"""Check command - run every configured check against a change."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

from invoke.exceptions import UnexpectedExit
from pydantic import BaseModel, ConfigDict, Field

from guardian.command.output import print_json, render_verdict
from guardian.core.log import logger
from guardian.core.result import CheckVerdict, OverallStatus
from guardian.git.changes import collect_changes
from guardian.workflow.coordinator import CheckCoordinator

if TYPE_CHECKING:
    from guardian.core.config import State


def exit_code_for(verdict: CheckVerdict, strict: bool = False) -> int:
    """0 when the change may proceed, 1 when it is blocked."""
    if verdict.overall_status == OverallStatus.BLOCKED:
        return 1
    if strict and verdict.overall_status == OverallStatus.WARNING:
        return 1
    return 0


class CheckCommand(BaseModel):
    """Run script checks, policy rules and the LLM review on a change.

    The change is read from git: staged changes by default, or the
    working tree against a ref with --against.
    """

    model_config = ConfigDict(populate_by_name=True)

    path: Path | None = Field(
        default=None,
        description="Repository to check (default: config.scripts.workdir)",
    )
    against: str | None = Field(
        default=None,
        description="Diff the working tree against this ref instead of the index",
    )
    json_output: bool = Field(
        default=False,
        alias="json",
        description="Print the verdict as JSON",
    )
    strict: bool = Field(
        default=False,
        description="Exit non-zero on warnings as well as blocks",
    )
    only: str | None = Field(
        default=None,
        description=(
            "Comma-separated checks to run: scripts, policy, llm "
            "or policy rule ids"
        ),
    )

    async def run(self, state: State) -> int:
        """Collect the change, run the coordinator, report the verdict.

        Returns:
            Exit code (0 proceed, 1 blocked, 2 git failure)

        Raises:
            UnknownCheck: --only names a check that does not exist
        """
        config = state.config.engine()
        if self.only is not None:
            config = config.select(self.only.split(","))
        if self.path is not None:
            config = config.with_workdir(self.path)
        workdir = config.scripts.workdir

        try:
            payload = await asyncio.to_thread(
                collect_changes, workdir, self.against
            )
        except UnexpectedExit as e:
            logger.error(
                "Could not read changes from git",
                workdir=str(workdir),
                stderr=e.result.stderr.strip(),
            )
            return 2

        verdict = await CheckCoordinator(config).check(payload)

        if self.json_output:
            print_json(verdict)
        else:
            print(render_verdict(verdict))
        return exit_code_for(verdict, self.strict)

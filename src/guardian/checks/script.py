"""Script checks: run shell commands and record how they ended."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Sequence
from pathlib import Path

from invoke.exceptions import Failure, ThreadException

from guardian.core.errors import ScriptExecutionError
from guardian.core.log import logger
from guardian.core.result import ScriptCheckResult, ScriptStatus
from guardian.core.runner import Runner, terminate_all

# Exit statuses the shell uses when it could not start the command
_LAUNCH_FAILURES = {
    126: "command not executable",
    127: "command not found",
}


def truncate(text: str, limit: int, dropped: int = 0) -> str:
    """Bound text to limit bytes of UTF-8, marking what was cut.

    dropped counts bytes already discarded before text was captured.
    """
    data = text.encode("utf-8", errors="replace")
    cut = max(len(data) - limit, 0) + dropped
    if not cut:
        return text
    kept = data[:limit].decode("utf-8", errors="ignore")
    return f"{kept}\n... [truncated {cut} bytes]"


class ScriptRunner:
    """Runs configured commands; every command yields one result.

    Nothing here raises for a failing command: non-zero exits,
    timeouts and launch failures are all reported as results so
    that one broken script cannot stop the others.
    """

    def __init__(
        self,
        workdir: Path,
        max_output_bytes: int = 65536,
        runner_factory: Callable[[], Runner] = Runner,
    ):
        """
        Args:
            workdir: Working directory for every command
            max_output_bytes: Per-stream capture limit
            runner_factory: Builds the invoke context for one command;
                contexts are not shared between threads
        """
        self.workdir = Path(workdir)
        self.max_output_bytes = max_output_bytes
        self.runner_factory = runner_factory

    def run(self, command: str, timeout: float) -> ScriptCheckResult:
        """Run one command.

        Args:
            command: Shell command line
            timeout: Seconds before the process tree is killed

        Returns:
            ScriptCheckResult with status passed, failed, timed_out
            or errored
        """
        start = time.monotonic()
        with logger.span("Script check {command}", command=command):
            try:
                result = self._execute(command, timeout)
            except ScriptExecutionError as e:
                logger.error(
                    "Script could not be launched",
                    command=command,
                    reason=e.reason,
                )
                return ScriptCheckResult(
                    command=command,
                    status=ScriptStatus.ERRORED,
                    duration_ms=_elapsed_ms(start),
                    error=str(e),
                )

            dropped = getattr(result, "dropped", {})
            stdout = truncate(
                result.stdout, self.max_output_bytes, dropped.get("stdout", 0)
            )
            stderr = truncate(
                result.stderr, self.max_output_bytes, dropped.get("stderr", 0)
            )

            if result.exited is None:
                status, error = ScriptStatus.TIMED_OUT, f"timed out after {timeout}s"
            elif result.exited in _LAUNCH_FAILURES:
                status, error = ScriptStatus.ERRORED, _LAUNCH_FAILURES[result.exited]
            elif result.exited == 0:
                status, error = ScriptStatus.PASSED, None
            else:
                status, error = ScriptStatus.FAILED, None

            outcome = ScriptCheckResult(
                command=command,
                status=status,
                exit_code=result.exited,
                stdout=stdout,
                stderr=stderr,
                duration_ms=_elapsed_ms(start),
                error=error,
            )

        level = "info" if status == ScriptStatus.PASSED else "warn"
        logger.log(
            level,
            "Script check finished",
            command=command,
            status=str(status),
            exit_code=outcome.exit_code,
            duration_ms=outcome.duration_ms,
        )
        return outcome

    def _execute(self, command: str, timeout: float):
        if not self.workdir.is_dir():
            raise ScriptExecutionError(
                command, f"working directory {self.workdir} does not exist"
            )
        try:
            return self.runner_factory().execute(
                command,
                cwd=self.workdir,
                timeout=timeout,
                check=False,
                capture_limit=self.max_output_bytes,
            )
        except (Failure, ThreadException, OSError) as e:
            raise ScriptExecutionError(command, str(e)) from e

    def run_all(
        self, commands: Sequence[str], timeout: float
    ) -> list[ScriptCheckResult]:
        """Run commands one after another; never stops early."""
        return [self.run(command, timeout) for command in commands]

    async def arun_all(
        self, commands: Sequence[str], timeout: float
    ) -> list[ScriptCheckResult]:
        """Run commands concurrently in worker threads.

        Results keep the order of commands. A command whose run raises
        is reported as errored on its own. When the caller is cancelled
        (Ctrl-C) every running process tree is killed before the
        cancellation propagates, so the worker threads can finish.
        """
        try:
            results = await asyncio.gather(
                *(
                    asyncio.to_thread(self.run, command, timeout)
                    for command in commands
                ),
                return_exceptions=True,
            )
        except asyncio.CancelledError:
            killed = terminate_all()
            logger.warn("Script checks cancelled", killed_commands=killed)
            raise

        outcomes = []
        for command, result in zip(commands, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Script check crashed", command=command, error=str(result)
                )
                result = ScriptCheckResult(
                    command=command,
                    status=ScriptStatus.ERRORED,
                    error=f"internal error: {result}",
                )
            outcomes.append(result)
        return outcomes


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)

#!/usr/bin/env python3
"""Guardian CLI - local governor for development process rules."""

import asyncio
import sys

from pydantic_settings import CliApp, CliSubCommand, get_subcommand

from guardian.command import (
    AskCommand,
    CheckCommand,
    ConfigPathCommand,
    ListModelsCommand,
    PingHostsCommand,
    SelectHostCommand,
    ShowConfigCommand,
)
from guardian.core.config import State
from guardian.core.errors import GuardianError, NoBackendAvailable
from guardian.core.log import logger
from guardian.core.runner import terminate_all


class CliState(State):
    """Local governor that checks a change before it is committed.

    Guardian runs configured script checks, static policy rules and
    an LLM review on a locally hosted Ollama model, and folds the
    results into one verdict: passed, warning or blocked.

    Configuration sources (in priority order):
    1. Command-line arguments (--config.ollama.timeout-ms 5000)
    2. --include files, ./guardian.yaml, the user config file and
       the packaged defaults
    3. .env file
    4. Environment variables
       (GUARDIAN_CONFIG__OLLAMA__TIMEOUT_MS=5000)
    """

    check: CliSubCommand[CheckCommand]
    ping_hosts: CliSubCommand[PingHostsCommand]
    list_models: CliSubCommand[ListModelsCommand]
    select_host: CliSubCommand[SelectHostCommand]
    ask: CliSubCommand[AskCommand]
    show_config: CliSubCommand[ShowConfigCommand]
    config_path: CliSubCommand[ConfigPathCommand]

    def cli_cmd(self):
        """Dispatch to the active subcommand, or show help if none."""
        subcommand = get_subcommand(self, is_required=False)

        if subcommand is None:
            CliApp.run(CliState, cli_args=['--help'])
            sys.exit(1)

        # Closing the config closes the logger sinks
        with self.config:
            raise SystemExit(run_command(subcommand, self))


def run_command(subcommand, state: State) -> int:
    """Run one subcommand to completion and map errors to exit codes."""
    try:
        return asyncio.run(subcommand.run(state))
    except NoBackendAvailable as e:
        logger.error("No backend available", reason=str(e))
        print(f"error: {e}", file=sys.stderr)
        return 2
    except GuardianError as e:
        logger.error("Command failed", reason=str(e))
        print(f"error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        killed = terminate_all()
        logger.warn("Interrupted", killed_commands=killed)
        return 130


def main():
    """Main entry point for CLI."""
    CliApp.run(CliState)


if __name__ == "__main__":
    main()

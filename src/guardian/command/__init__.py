"""CLI command modules for guardian."""

from guardian.command.ask import AskCommand
from guardian.command.check import CheckCommand
from guardian.command.config_cmd import ConfigPathCommand, ShowConfigCommand
from guardian.command.hosts import (
    ListModelsCommand,
    PingHostsCommand,
    SelectHostCommand,
)

__all__ = [
    "AskCommand",
    "CheckCommand",
    "ConfigPathCommand",
    "ListModelsCommand",
    "PingHostsCommand",
    "SelectHostCommand",
    "ShowConfigCommand",
]

"""Workflow nodes for the check run state machine."""

from guardian.workflow.nodes.aggregate import Aggregate
from guardian.workflow.nodes.resolve_backend import ResolveBackend
from guardian.workflow.nodes.run_checks import RunChecks

__all__ = [
    "ResolveBackend",
    "RunChecks",
    "Aggregate",
]

"""Check run workflow."""

from guardian.workflow.coordinator import CheckCoordinator
from guardian.workflow.graph import create_workflow
from guardian.workflow.state import CheckDeps, CheckRunState, CoordinatorPhase

__all__ = [
    "CheckCoordinator",
    "CheckDeps",
    "CheckRunState",
    "CoordinatorPhase",
    "create_workflow",
]

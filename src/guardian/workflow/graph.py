"""Graph workflow definition."""

from pydantic_graph import Graph

from guardian.core.log import logger
from guardian.core.result import CheckVerdict
from guardian.workflow.nodes import Aggregate, ResolveBackend, RunChecks
from guardian.workflow.state import CheckDeps, CheckRunState


def create_workflow() -> Graph[CheckRunState, CheckDeps, CheckVerdict]:
    """Create the check run graph.

    ResolveBackend → RunChecks → Aggregate → End[CheckVerdict]

    ResolveBackend is only the start node when the LLM review is
    enabled; otherwise runs start at RunChecks with no backend.
    """
    logger.debug("Building workflow graph")
    return Graph(
        nodes=(ResolveBackend, RunChecks, Aggregate),
        name="check_run",
        state_type=CheckRunState,
        run_end_type=CheckVerdict,
    )

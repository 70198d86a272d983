"""Individual checks: scripts, static policy, LLM review."""

from guardian.checks.policy import evaluate, evaluate_rule, evaluate_rules
from guardian.checks.review import LlmReviewer
from guardian.checks.script import ScriptRunner

__all__ = [
    "LlmReviewer",
    "ScriptRunner",
    "evaluate",
    "evaluate_rule",
    "evaluate_rules",
]

"""Error taxonomy for the check engine.

Only NoBackendAvailable is ever raised out of the engine to a
caller, and UnknownCheck out of check selection. The other errors
are raised and caught inside a single check unit and end up as data
in the verdict.
"""


class GuardianError(Exception):
    """Base class for all guardian errors."""


class BackendUnreachable(GuardianError):
    """Every backend tier was exhausted without a reachable host."""


class NoBackendAvailable(BackendUnreachable):
    """A caller that needs a backend unconditionally found none."""

    def __init__(self, message: str = "No reachable backends found"):
        super().__init__(message)


class ScriptExecutionError(GuardianError):
    """A script check could not be launched."""

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to launch '{command}': {reason}")


class PolicyRuleInvalid(GuardianError):
    """A policy rule definition cannot be evaluated."""

    def __init__(self, rule_id: str, reason: str):
        self.rule_id = rule_id
        self.reason = reason
        super().__init__(f"Policy rule '{rule_id}' is invalid: {reason}")


class LlmResponseUnparseable(GuardianError):
    """The model reply did not match the review schema."""

    def __init__(self, reason: str, raw: str = ""):
        self.reason = reason
        self.raw = raw
        super().__init__(f"Unparseable LLM response: {reason}")


class LlmTransportError(GuardianError):
    """Talking to a backend failed (timeout, connection, HTTP status)."""

    def __init__(self, backend: str, reason: str):
        self.backend = backend
        self.reason = reason
        super().__init__(f"Backend '{backend}': {reason}")


class UnknownCheck(GuardianError):
    """A check selection named a unit that is not configured."""

    def __init__(self, names: list[str], available: list[str]):
        self.names = names
        self.available = available
        super().__init__(
            f"Unknown check(s): {', '.join(names)} "
            f"(available: {', '.join(available)})"
        )


__all__ = [
    "GuardianError",
    "BackendUnreachable",
    "NoBackendAvailable",
    "ScriptExecutionError",
    "PolicyRuleInvalid",
    "LlmResponseUnparseable",
    "LlmTransportError",
    "UnknownCheck",
]

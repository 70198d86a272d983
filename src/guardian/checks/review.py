"""LLM review of a change with a bounded retry-then-fail-open rule."""

from __future__ import annotations

from pydantic import ValidationError

from guardian.backend.client import OllamaClient
from guardian.core.change import ChangePayload
from guardian.core.config import Backend, Severity
from guardian.core.errors import LlmResponseUnparseable, LlmTransportError
from guardian.core.log import logger
from guardian.core.result import LlmCheckOutcome, LlmCheckResult, LlmStatus

# One request plus exactly one retry of the same request
MAX_ATTEMPTS = 2

SYSTEM_PROMPT = (
    "You are a code review guardian enforcing a project's development "
    "process and architecture rules. You review one proposed change "
    "before it is committed and decide whether it may proceed. Judge "
    "the change only against the rules you are given. Answer with a "
    "single JSON object and nothing else."
)

REPLY_FORMAT = """\
Reply with a JSON object with exactly these fields:
- "ok_to_proceed": true if the change may be committed, false otherwise
- "severity": "low", "medium" or "high"; how serious the problems are
- "reasons": list of short strings explaining the decision (may be empty)
- "file_context_suggestions": list of file paths worth reading to fix
  the problems (may be empty)"""

RESPONSE_SCHEMA = LlmCheckResult.model_json_schema()


def build_prompt(
    payload: ChangePayload,
    rules_text: str = "",
    task_context: str | None = None,
) -> str:
    """Assemble the review request from rules, task and change."""
    sections = [
        "## Rules",
        rules_text.strip() or "(no project rules were provided)",
    ]
    if task_context:
        sections += ["## Task", task_context.strip()]
    if payload.files:
        sections += [
            "## Files touched",
            "\n".join(f"- {f.path}" for f in payload.files),
        ]
    sections += [
        "## Change",
        payload.text.strip() or "(the change is empty)",
        "## Reply format",
        REPLY_FORMAT,
    ]
    return "\n\n".join(sections) + "\n"


def parse_review(text: str) -> LlmCheckResult:
    """Strictly parse a reviewer reply.

    Raises:
        LlmResponseUnparseable: Not JSON, a missing field, or a value
            of the wrong type or outside the allowed enum
    """
    try:
        return LlmCheckResult.model_validate_json(text.strip(), strict=True)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'reply'}: {err['msg']}"
            for err in e.errors()
        )
        raise LlmResponseUnparseable(problems, raw=text) from e


def fail_open_result(error: LlmResponseUnparseable | None) -> LlmCheckResult:
    reason = "LLM response was unparseable after one retry"
    if error is not None:
        reason = f"{reason} ({error.reason})"
    return LlmCheckResult(
        ok_to_proceed=True,
        severity=Severity.LOW,
        reasons=[reason],
        file_context_suggestions=[],
    )


def status_for(result: LlmCheckResult) -> LlmStatus:
    if not result.ok_to_proceed:
        return LlmStatus.FAILED
    if result.reasons:
        return LlmStatus.WARNED
    return LlmStatus.PASSED


class LlmReviewer:
    """Sends review requests and applies the parse/retry contract.

    Parse failures get exactly one retry of the identical request;
    a second failure fails open with a visible warning. Transport
    failures are not retried: the backend was reachable moments ago,
    so losing it now is reported as an errored unit.
    """

    def __init__(self, client: OllamaClient | None = None):
        self.client = client or OllamaClient()

    async def evaluate(
        self,
        backend: Backend,
        model: str,
        payload: ChangePayload,
        rules_text: str = "",
        task_context: str | None = None,
    ) -> LlmCheckOutcome:
        """Review a change on a resolved backend.

        Args:
            backend: Backend selected by the resolver
            model: Model to ask
            payload: The change under review
            rules_text: Project rules the change is judged against
            task_context: What the change is supposed to accomplish

        Returns:
            LlmCheckOutcome; never raises for model or network trouble
        """
        prompt = build_prompt(payload, rules_text, task_context)
        last_error: LlmResponseUnparseable | None = None

        for attempt in range(1, MAX_ATTEMPTS + 1):
            with logger.span(
                "LLM review attempt {attempt}",
                attempt=attempt,
                backend=backend.name,
                model=model,
            ):
                try:
                    reply = await self.client.generate(
                        backend,
                        model,
                        prompt,
                        system=SYSTEM_PROMPT,
                        format=RESPONSE_SCHEMA,
                    )
                except LlmTransportError as e:
                    logger.error(
                        "LLM request failed",
                        backend=backend.name,
                        model=model,
                        reason=e.reason,
                    )
                    return LlmCheckOutcome.errored(
                        str(e),
                        backend=backend.name,
                        model=model,
                        attempts=attempt,
                    )

                try:
                    result = parse_review(reply.response)
                except LlmResponseUnparseable as e:
                    last_error = e
                    logger.warn(
                        "Unparseable LLM review reply",
                        attempt=attempt,
                        reason=e.reason,
                        reply=e.raw[:500],
                    )
                    continue

            logger.info(
                "LLM review complete",
                ok_to_proceed=result.ok_to_proceed,
                severity=str(result.severity),
                reasons=len(result.reasons),
            )
            return LlmCheckOutcome(
                status=status_for(result),
                result=result,
                attempts=attempt,
                backend=backend.name,
                model=model,
            )

        logger.warn(
            "LLM review failed open",
            backend=backend.name,
            model=model,
            attempts=MAX_ATTEMPTS,
        )
        return LlmCheckOutcome(
            status=LlmStatus.WARNED,
            result=fail_open_result(last_error),
            fail_open=True,
            attempts=MAX_ATTEMPTS,
            error=str(last_error) if last_error else None,
            backend=backend.name,
            model=model,
        )

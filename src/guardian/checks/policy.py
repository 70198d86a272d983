"""Static policy rules evaluated against a change.

Evaluation is pure: no I/O, and identical inputs always produce the
identical, identically ordered output. Rules that look at whole files
or at the project layout read them from the payload (file contents
and the tree listing collected with the change).
"""

from __future__ import annotations

import posixpath
import re
from collections.abc import Callable, Iterator, Sequence
from fnmatch import fnmatchcase
from urllib.parse import parse_qs, urlsplit

from guardian.core.change import ChangePayload, added_text, text_lines
from guardian.core.config import (
    ForbiddenPatternRule,
    FunctionCountRule,
    ImageCacheBustingRule,
    LineCountRule,
    LintSuppressionRule,
    MaxFileSizeRule,
    ModuleCountRule,
    PathRestrictionRule,
    PolicyRule,
    RequiredPatternRule,
    Severity,
    TrivialTestRule,
)
from guardian.core.errors import PolicyRuleInvalid
from guardian.core.log import logger
from guardian.core.result import (
    Location,
    PolicyRuleOutcome,
    PolicyStatus,
    PolicyViolation,
)

# ![alt](path) and <img src="path">
_IMAGE_LINK = re.compile(
    r"!\[[^\]]*\]\(\s*<?([^)\s>]+)|\bsrc\s*=\s*[\"']([^\"']+)[\"']"
)


def _pattern(rule_id: str, pattern: str, flags: int = 0) -> re.Pattern:
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        raise PolicyRuleInvalid(rule_id, f"bad pattern {pattern!r}: {e}") from e


def _compile(rule: ForbiddenPatternRule | RequiredPatternRule) -> re.Pattern:
    flags = re.IGNORECASE if rule.ignore_case else 0
    return _pattern(rule.id, rule.pattern, flags | re.MULTILINE)


def _violation(
    rule,
    message: str,
    path=None,
    line=None,
    severity: Severity | None = None,
) -> PolicyViolation:
    location = Location(path=path, line=line) if path or line else None
    return PolicyViolation(
        rule_id=rule.id,
        severity=severity or rule.severity,
        message=rule.message or message,
        location=location,
    )


def _applies(rule, path: str | None) -> bool:
    """Whether a file rule covers path; pathless plain text always is."""
    if path is None:
        return True
    return any(fnmatchcase(path, g) for g in rule.globs) and not any(
        fnmatchcase(path, g) for g in rule.exclude
    )


def check_max_file_size(
    payload: ChangePayload, rule: MaxFileSizeRule
) -> list[PolicyViolation]:
    return [
        _violation(
            rule,
            f"{f.path} is {f.size_bytes} bytes (limit {rule.max_bytes})",
            path=f.path,
        )
        for f in payload.files
        if f.size_bytes is not None and f.size_bytes > rule.max_bytes
    ]


def check_forbidden_pattern(
    payload: ChangePayload, rule: ForbiddenPatternRule
) -> list[PolicyViolation]:
    pattern = _compile(rule)
    return [
        _violation(
            rule,
            f"Forbidden pattern {rule.pattern!r} found",
            path=line.path,
            line=line.number,
        )
        for line in text_lines(payload)
        if pattern.search(line.content)
    ]


def check_required_pattern(
    payload: ChangePayload, rule: RequiredPatternRule
) -> list[PolicyViolation]:
    pattern = _compile(rule)
    if rule.globs:
        return [
            _violation(
                rule,
                f"Required pattern {rule.pattern!r} not found in {f.path}",
                path=f.path,
            )
            for f in payload.files
            if f.content is not None
            and any(fnmatchcase(f.path, g) for g in rule.globs)
            and not pattern.search(f.content)
        ]
    if pattern.search(added_text(payload)):
        return []
    return [_violation(rule, f"Required pattern {rule.pattern!r} not found")]


def check_path_restriction(
    payload: ChangePayload, rule: PathRestrictionRule
) -> list[PolicyViolation]:
    if not rule.globs:
        raise PolicyRuleInvalid(rule.id, "no globs given")

    violations = []
    for path in payload.paths:
        matched = any(fnmatchcase(path, glob) for glob in rule.globs)
        if rule.mode == "deny" and matched:
            violations.append(
                _violation(rule, f"{path} is in a restricted path", path=path)
            )
        elif rule.mode == "allow" and not matched:
            violations.append(
                _violation(
                    rule, f"{path} is outside the allowed paths", path=path
                )
            )
    return violations


def check_line_count(
    payload: ChangePayload, rule: LineCountRule
) -> list[PolicyViolation]:
    if rule.warn_lines is not None and rule.warn_lines >= rule.max_lines:
        raise PolicyRuleInvalid(rule.id, "warn_lines must be below max_lines")

    violations = []
    for f in payload.files:
        lines = f.line_count
        if lines is None or not _applies(rule, f.path):
            continue
        if lines > rule.max_lines:
            violations.append(_violation(
                rule,
                f"{f.path} has {lines} lines (limit {rule.max_lines})",
                path=f.path,
            ))
        elif rule.warn_lines is not None and lines > rule.warn_lines:
            violations.append(_violation(
                rule,
                f"{f.path} has {lines} lines (warning above {rule.warn_lines})",
                path=f.path,
                severity=rule.warn_severity,
            ))
    return violations


def check_function_count(
    payload: ChangePayload, rule: FunctionCountRule
) -> list[PolicyViolation]:
    pattern = _pattern(rule.id, rule.pattern, re.MULTILINE)
    violations = []
    for f in payload.files:
        if f.content is None or not _applies(rule, f.path):
            continue
        count = sum(1 for _ in pattern.finditer(f.content))
        if count > rule.max_functions:
            violations.append(_violation(
                rule,
                f"{f.path} defines {count} functions "
                f"(limit {rule.max_functions})",
                path=f.path,
            ))
    return violations


def count_modules(
    tree: Sequence[str], directory: str, rule: ModuleCountRule
) -> int:
    """Modules directly inside directory, per the rule's globs."""
    prefix = f"{directory}/" if directory else ""
    modules = set()
    for path in tree:
        if not path.startswith(prefix):
            continue
        head, _, rest = path[len(prefix):].partition("/")
        name = posixpath.basename(path)
        if "/" in rest or not any(
            fnmatchcase(name, g) for g in rule.module_globs
        ):
            continue
        if rest:
            modules.add(f"{head}/")
        elif not any(fnmatchcase(name, g) for g in rule.ignore):
            modules.add(head)
    return len(modules)


def check_module_count(
    payload: ChangePayload, rule: ModuleCountRule
) -> list[PolicyViolation]:
    if not payload.tree:
        return []
    directories = sorted({
        posixpath.dirname(path)
        for path in payload.paths
        if _applies(rule, path)
    })
    violations = []
    for directory in directories:
        count = count_modules(payload.tree, directory, rule)
        if count > rule.max_modules:
            where = directory or "."
            violations.append(_violation(
                rule,
                f"{where} holds {count} modules (limit {rule.max_modules})",
                path=where,
            ))
    return violations


def iter_test_bodies(
    content: str, test_def: re.Pattern
) -> Iterator[tuple[int, str, str]]:
    """(line number, test name, line) for each line inside a test."""
    current = None
    for number, line in enumerate(content.splitlines(), start=1):
        match = test_def.match(line)
        if match:
            current = (match["name"], len(match["indent"].expandtabs()))
            continue
        if current is None or not line.strip():
            continue
        indent = len(line.expandtabs()) - len(line.expandtabs().lstrip())
        if indent <= current[1]:
            current = None
            continue
        yield number, current[0], line


def check_trivial_test(
    payload: ChangePayload, rule: TrivialTestRule
) -> list[PolicyViolation]:
    test_def = _pattern(rule.id, rule.test_pattern)
    if not {"indent", "name"} <= set(test_def.groupindex):
        raise PolicyRuleInvalid(
            rule.id, "test_pattern needs 'indent' and 'name' groups"
        )
    placeholders = [_pattern(rule.id, p) for p in rule.patterns]

    violations = []
    for f in payload.files:
        if f.content is None or not _applies(rule, f.path):
            continue
        for number, name, line in iter_test_bodies(f.content, test_def):
            if any(p.search(line) for p in placeholders):
                violations.append(_violation(
                    rule,
                    f"Placeholder {line.strip()!r} in {name}",
                    path=f.path,
                    line=number,
                ))
    return violations


def check_lint_suppression(
    payload: ChangePayload, rule: LintSuppressionRule
) -> list[PolicyViolation]:
    patterns = [_pattern(rule.id, p) for p in rule.patterns]
    return [
        _violation(
            rule,
            f"Lint suppression: {line.content.strip()}",
            path=line.path,
            line=line.number,
        )
        for line in text_lines(payload)
        if _applies(rule, line.path)
        and any(p.search(line.content) for p in patterns)
        and not any(allowed in line.content for allowed in rule.allow)
    ]


def _lacks_cache_buster(link: str, rule: ImageCacheBustingRule) -> bool:
    if link.startswith(("http://", "https://", "data:", "//")):
        return False
    url = urlsplit(link)
    extensions = tuple(e.lower() for e in rule.extensions)
    if not url.path.lower().endswith(extensions):
        return False
    query = parse_qs(url.query, keep_blank_values=True)
    return not any(param in query for param in rule.params)


def check_image_cache_busting(
    payload: ChangePayload, rule: ImageCacheBustingRule
) -> list[PolicyViolation]:
    violations = []
    for line in text_lines(payload):
        if not _applies(rule, line.path):
            continue
        for match in _IMAGE_LINK.finditer(line.content):
            link = match.group(1) or match.group(2)
            if _lacks_cache_buster(link, rule):
                violations.append(_violation(
                    rule,
                    f"Image link without cache-busting: {link}",
                    path=line.path,
                    line=line.number,
                ))
    return violations


_CHECKS: dict[str, Callable[[ChangePayload, PolicyRule], list[PolicyViolation]]] = {
    "max_file_size": check_max_file_size,
    "forbidden_pattern": check_forbidden_pattern,
    "required_pattern": check_required_pattern,
    "path_restriction": check_path_restriction,
    "line_count": check_line_count,
    "function_count": check_function_count,
    "module_count": check_module_count,
    "trivial_test": check_trivial_test,
    "lint_suppression": check_lint_suppression,
    "image_cache_busting": check_image_cache_busting,
}


def evaluate_rule(payload: ChangePayload, rule: PolicyRule) -> PolicyRuleOutcome:
    """Evaluate one rule.

    A rule that cannot be evaluated is reported as status 'invalid'
    with a single violation at the rule's own severity, so a broken
    rule is visible in the verdict instead of silently passing.
    """
    try:
        violations = _CHECKS[rule.kind](payload, rule)
    except PolicyRuleInvalid as e:
        logger.warn("Invalid policy rule", rule=rule.id, reason=e.reason)
        return PolicyRuleOutcome(
            rule_id=rule.id,
            rule_kind=rule.kind,
            status=PolicyStatus.INVALID,
            violations=(
                PolicyViolation(
                    rule_id=rule.id,
                    severity=rule.severity,
                    message=str(e),
                ),
            ),
            error=e.reason,
        )

    return PolicyRuleOutcome(
        rule_id=rule.id,
        rule_kind=rule.kind,
        status=PolicyStatus.VIOLATED if violations else PolicyStatus.PASSED,
        violations=tuple(violations),
    )


def evaluate_rules(
    payload: ChangePayload | str, rules: Sequence[PolicyRule]
) -> list[PolicyRuleOutcome]:
    """One outcome per rule, in declaration order."""
    if isinstance(payload, str):
        payload = ChangePayload(text=payload)
    outcomes = [evaluate_rule(payload, rule) for rule in rules]
    logger.debug(
        "Policy evaluated",
        rules=len(outcomes),
        violations=sum(len(o.violations) for o in outcomes),
    )
    return outcomes


def evaluate(
    payload: ChangePayload | str, rules: Sequence[PolicyRule]
) -> list[PolicyViolation]:
    """All violations, grouped by rule in declaration order."""
    return [
        violation
        for outcome in evaluate_rules(payload, rules)
        for violation in outcome.violations
    ]

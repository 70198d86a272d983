"""Application settings and the immutable engine configuration."""

from __future__ import annotations

import os
import re
from collections.abc import Iterable
from enum import StrEnum
from pathlib import Path
from typing import Annotated, Any, Literal

import platformdirs
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from guardian.core.base import BaseConfig, FrozenConfig
from guardian.core.errors import UnknownCheck
from guardian.core.log import Logger
from guardian.core.yaml_settings import YamlWithIncludesSettingsSource

# Modules reachable from {name.attr} templates in YAML values,
# e.g. {platformdirs.user_cache_dir} or {Path.home}
TEMPLATE_NAMESPACE = {
    'os': os,
    'platformdirs': platformdirs,
    'Path': Path,
}


class Tier(StrEnum):
    """Backend priority class."""

    PRIMARY = "primary"
    FALLBACK = "fallback"


class Severity(StrEnum):
    """Severity shared by policy rules and LLM reviews."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ============================================================
# BACKENDS
# ============================================================

class Backend(FrozenConfig):
    """One Ollama inference host."""

    name: str = Field(description="Short host name (e.g. 'big72')")
    base_url: str = Field(
        description="Ollama API base URL (e.g. http://big72:11434)"
    )
    enabled: bool = Field(default=True, description="Use this host")
    tier: Tier = Field(
        default=Tier.PRIMARY,
        description="'primary' hosts are raced first; 'fallback' after",
    )
    description: str | None = Field(default=None)

    @model_validator(mode="before")
    @classmethod
    def _accept_fallback_flag(cls, data: Any) -> Any:
        """Accept the older `fallback: true` spelling of the tier."""
        if isinstance(data, dict) and "fallback" in data:
            data = dict(data)
            fallback = data.pop("fallback")
            data.setdefault(
                "tier", Tier.FALLBACK if fallback else Tier.PRIMARY
            )
        return data


class OllamaConfig(FrozenConfig):
    """Backend discovery and request settings."""

    timeout_ms: int = Field(
        default=2500,
        gt=0,
        description="Probe timeout per tier in milliseconds",
    )
    request_timeout_s: float = Field(
        default=180.0,
        gt=0,
        description="Timeout for a single generate request in seconds",
    )
    default_model: str | None = Field(
        default=None,
        description=(
            "Model used when none is given; when unset the first model "
            "listed by the selected host is used"
        ),
    )
    backends: tuple[Backend, ...] = Field(
        default=(),
        description="Hosts in priority order within each tier",
    )

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000

    def enabled_backends(self) -> list[Backend]:
        """Enabled hosts, primaries before fallbacks, config order."""
        enabled = [b for b in self.backends if b.enabled]
        return (
            [b for b in enabled if b.tier == Tier.PRIMARY]
            + [b for b in enabled if b.tier == Tier.FALLBACK]
        )

    def find(self, name: str) -> Backend | None:
        """Enabled host by name."""
        for backend in self.enabled_backends():
            if backend.name == name:
                return backend
        return None


# ============================================================
# CHECKS
# ============================================================

class ScriptsConfig(FrozenConfig):
    """Shell commands run as script checks."""

    commands: tuple[str, ...] = Field(
        default=(),
        description="Commands to run; each one is a separate check",
    )
    timeout: float = Field(
        default=300,
        gt=0,
        description="Per-command timeout in seconds",
    )
    max_output_bytes: int = Field(
        default=65536,
        gt=0,
        description="Captured stdout/stderr limit per stream",
    )
    workdir: Path = Field(
        default=Path("."),
        description="Working directory for the commands",
    )


class _Rule(FrozenConfig):
    id: str = Field(description="Rule identifier shown in reports")
    severity: Severity = Field(default=Severity.MEDIUM)
    message: str | None = Field(
        default=None,
        description="Message used instead of the generated one",
    )


class MaxFileSizeRule(_Rule):
    """Touched files must not exceed a size."""

    kind: Literal["max_file_size"] = "max_file_size"
    max_bytes: int = Field(gt=0)


class ForbiddenPatternRule(_Rule):
    """A regex that must not appear in the change."""

    kind: Literal["forbidden_pattern"] = "forbidden_pattern"
    pattern: str
    ignore_case: bool = False


class RequiredPatternRule(_Rule):
    """A regex that must appear in the change.

    Without globs the pattern is searched in what the change adds (the
    added lines of a diff, or the whole text). With globs, every touched
    file matching them must contain the pattern, e.g. a manifest that
    must keep declaring a language edition.
    """

    kind: Literal["required_pattern"] = "required_pattern"
    pattern: str
    ignore_case: bool = False
    globs: tuple[str, ...] = ()


class PathRestrictionRule(_Rule):
    """Glob restrictions on touched paths.

    In 'deny' mode a path matching any glob is a violation; in
    'allow' mode a path matching none of them is.
    """

    kind: Literal["path_restriction"] = "path_restriction"
    globs: tuple[str, ...]
    mode: Literal["deny", "allow"] = "deny"


class _FileRule(_Rule):
    globs: tuple[str, ...] = Field(
        default=("*",),
        description="Touched files the rule applies to",
    )
    exclude: tuple[str, ...] = Field(
        default=(),
        description="Touched files skipped even when a glob matches",
    )


class LineCountRule(_FileRule):
    """Touched files must stay under a line count.

    A file above max_lines is reported at severity; one above
    warn_lines (but not max_lines) at warn_severity.
    """

    kind: Literal["line_count"] = "line_count"
    severity: Severity = Field(default=Severity.HIGH)
    max_lines: int = Field(gt=0)
    warn_lines: int | None = Field(default=None, gt=0)
    warn_severity: Severity = Field(default=Severity.MEDIUM)


class FunctionCountRule(_FileRule):
    """Touched source files must not define too many functions."""

    kind: Literal["function_count"] = "function_count"
    globs: tuple[str, ...] = ("*.py",)
    max_functions: int = Field(gt=0)
    pattern: str = Field(
        default=r"^[ \t]*(?:async[ \t]+)?def[ \t]+\w+",
        description="Regex matching one function definition line",
    )


class ModuleCountRule(_FileRule):
    """Directories holding touched files must not hold too many modules.

    A module is a file in the directory matching module_globs (and
    not ignore), or a subdirectory containing such a file. Directories
    are read from the project tree listing of the change.
    """

    kind: Literal["module_count"] = "module_count"
    max_modules: int = Field(gt=0)
    module_globs: tuple[str, ...] = ("*.py",)
    ignore: tuple[str, ...] = ("__init__.py", "__main__.py", "conftest.py")


class TrivialTestRule(_FileRule):
    """Tests in touched test files must assert something real."""

    kind: Literal["trivial_test"] = "trivial_test"
    globs: tuple[str, ...] = ("test_*.py", "*/test_*.py", "*_test.py")
    test_pattern: str = Field(
        default=r"^(?P<indent>[ \t]*)(?:async[ \t]+)?def[ \t]+(?P<name>test\w*)",
        description="Regex for a test definition; needs indent and name groups",
    )
    patterns: tuple[str, ...] = Field(
        default=(
            r"^\s*assert\s+True\s*$",
            r"^\s*assert\s+not\s+False\s*$",
            r"^\s*assert\s+(\w+)\s*==\s*\1\s*$",
            r"^\s*pass\s*$",
            r"raise\s+NotImplementedError",
        ),
        description="Regexes for placeholder lines inside a test body",
    )


class LintSuppressionRule(_FileRule):
    """Added lines must not silence linters or type checkers."""

    kind: Literal["lint_suppression"] = "lint_suppression"
    globs: tuple[str, ...] = ("*.py",)
    patterns: tuple[str, ...] = (
        r"#\s*noqa\b",
        r"#\s*type:\s*ignore\b",
        r"#\s*pylint:\s*disable",
        r"#\s*pragma:\s*no\s*cover",
    )
    allow: tuple[str, ...] = Field(
        default=(),
        description="Substrings that make a matching line acceptable",
    )


class ImageCacheBustingRule(_FileRule):
    """Local images linked from added markdown need a version query."""

    kind: Literal["image_cache_busting"] = "image_cache_busting"
    globs: tuple[str, ...] = ("*.md",)
    extensions: tuple[str, ...] = (
        ".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp",
    )
    params: tuple[str, ...] = ("v", "ts", "t", "version", "hash")


PolicyRule = Annotated[
    MaxFileSizeRule
    | ForbiddenPatternRule
    | RequiredPatternRule
    | PathRestrictionRule
    | LineCountRule
    | FunctionCountRule
    | ModuleCountRule
    | TrivialTestRule
    | LintSuppressionRule
    | ImageCacheBustingRule,
    Field(discriminator="kind"),
]


class PolicyConfig(FrozenConfig):
    """Static policy rules, evaluated in declaration order."""

    rules: tuple[PolicyRule, ...] = Field(default=())


class ReviewConfig(FrozenConfig):
    """LLM review of the change."""

    enabled: bool = Field(
        default=False,
        description="Run the LLM review (requires a reachable backend)",
    )
    model: str | None = Field(
        default=None,
        description="Model for the review; falls back to ollama.default_model",
    )
    rules_text: str = Field(
        default="",
        description="Project rules the reviewer enforces",
    )
    task: str | None = Field(
        default=None,
        description="Description of the task the change implements",
    )


# Unit ids accepted by EngineConfig.select() besides policy rule ids
CHECK_UNITS = ("scripts", "policy", "llm")


class EngineConfig(FrozenConfig):
    """Everything the check coordinator reads during one run."""

    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    scripts: ScriptsConfig = Field(default_factory=ScriptsConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    review: ReviewConfig = Field(default_factory=ReviewConfig)

    def select(self, only: Iterable[str]) -> EngineConfig:
        """Copy that runs only the named check units.

        Names are 'scripts', 'policy' (every rule), 'llm', or the id
        of a single policy rule. Units not named are switched off.

        Raises:
            UnknownCheck: A name matches no unit and no rule
        """
        wanted = {name.strip() for name in only if name.strip()}
        rule_ids = [rule.id for rule in self.policy.rules]
        unknown = sorted(wanted - set(CHECK_UNITS) - set(rule_ids))
        if unknown:
            raise UnknownCheck(unknown, [*CHECK_UNITS, *rule_ids])

        scripts, review = self.scripts, self.review
        if "scripts" not in wanted:
            scripts = scripts.model_copy(update={"commands": ()})
        if "llm" not in wanted:
            review = review.model_copy(update={"enabled": False})
        rules = tuple(
            rule for rule in self.policy.rules
            if "policy" in wanted or rule.id in wanted
        )
        return self.model_copy(update={
            "scripts": scripts,
            "policy": self.policy.model_copy(update={"rules": rules}),
            "review": review,
        })

    def with_workdir(self, workdir: Path) -> EngineConfig:
        """Copy whose script checks run in workdir."""
        return self.model_copy(update={
            "scripts": self.scripts.model_copy(update={"workdir": Path(workdir)}),
        })


# ============================================================
# APPLICATION CONFIG
# ============================================================

class Config(BaseConfig):
    """Configuration loaded from YAML/env/CLI."""

    logger: Logger = Field(
        default=None,
        description="Logger sinks and levels",
    )
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    scripts: ScriptsConfig = Field(default_factory=ScriptsConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    review: ReviewConfig = Field(default_factory=ReviewConfig)

    project: str = Field(
        default_factory=lambda: Path.cwd().name,
        description="Project name used for the log subdirectory",
    )
    log_root: Path = Field(
        default_factory=(
            lambda: Path(platformdirs.user_state_dir()) / "guardian"
        ),
        description="Root directory for log files",
    )

    @model_validator(mode='after')
    def _setup_logger(self) -> Config:
        """Install the global logger from the loaded sink settings."""
        from guardian.core.log import setup_logger

        if self.logger is None:
            self.logger = Logger()

        setup_logger(
            log_root=self.log_root,
            run_name=self.project,
            level=self.logger.level,
            console=self.logger.console,
            file=self.logger.file,
            logfire=self.logger.logfire,
        )
        return self

    def engine(self) -> EngineConfig:
        """Snapshot of the sections the check engine uses."""
        return EngineConfig(
            ollama=self.ollama,
            scripts=self.scripts,
            policy=self.policy,
            review=self.review,
        )

    def close(self):
        from guardian.core.log import logger
        logger.close()
        super().close()


# ============================================================
# STATE
# ============================================================

class State(BaseSettings):
    """Loaded settings: configuration plus CLI bookkeeping.

    Sources, highest priority first: init arguments (and CLI when
    run through CliApp), environment variables
    (GUARDIAN_CONFIG__OLLAMA__TIMEOUT_MS=...), .env, YAML files with
    includes. Environment beats YAML because the packaged defaults
    file sets most keys.
    """

    config: Config = Field(
        default_factory=Config,
        description="Configuration (from YAML/env/CLI)",
    )
    include: list[str] | None = Field(
        default=None,
        description=(
            "Additional YAML files to deep-merge over the defaults. "
            "Use --include on the CLI or include: in YAML files"
        ),
    )

    model_config = SettingsConfigDict(
        yaml_file="guardian.yaml",
        env_file=".env",
        env_prefix="GUARDIAN_",
        env_nested_delimiter="__",
        cli_implicit_flags=True,
        cli_kebab_case=True,
        cli_use_class_docs_for_groups=True,
        extra='ignore',
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlWithIncludesSettingsSource(settings_cls),
            file_secret_settings,
        )

    @model_validator(mode="after")
    def substitute_templates(self) -> State:
        """Expand {config.*} and {module.attr} templates.

        Frozen sections are rebuilt with model_copy(); mutable ones
        are updated in place.
        """
        for name in self.__class__.model_fields:
            value = getattr(self, name)
            new_value = self._substitute_value(value)
            if new_value is not value:
                setattr(self, name, new_value)
        return self

    def _substitute_value(self, value: Any) -> Any:
        if isinstance(value, str):
            substituted = self._substitute_string(value)
            return value if substituted == value else substituted
        if isinstance(value, Path):
            substituted = self._substitute_string(str(value))
            return value if substituted == str(value) else Path(substituted)
        if isinstance(value, BaseModel):
            updates = {}
            for name in value.__class__.model_fields:
                current = getattr(value, name)
                new = self._substitute_value(current)
                if new is not current:
                    updates[name] = new
            if not updates:
                return value
            if value.model_config.get("frozen"):
                return value.model_copy(update=updates)
            for name, new in updates.items():
                setattr(value, name, new)
            return value
        if isinstance(value, (list, tuple)):
            items = [self._substitute_value(v) for v in value]
            if all(a is b for a, b in zip(items, value, strict=True)):
                return value
            return type(value)(items)
        if isinstance(value, dict):
            items = {k: self._substitute_value(v) for k, v in value.items()}
            if all(items[k] is value[k] for k in value):
                return value
            return items
        return value

    def _substitute_string(self, value: str) -> str:
        """Replace {dotted.path} templates with their values.

        Examples:
            "{config.scripts.workdir}/build" → "./build"
            "{platformdirs.user_log_dir}" → "~/.local/state/guardian/log"
        """
        def replace(match):
            parts = match.group(1).split(".")
            root = parts[0]
            if root in TEMPLATE_NAMESPACE:
                obj = TEMPLATE_NAMESPACE[parts[0]]
                parts = parts[1:]
            else:
                obj = self

            try:
                for part in parts:
                    obj = getattr(obj, part)
                if callable(obj) and root == 'platformdirs':
                    obj = obj('guardian', appauthor=False)
                elif callable(obj):
                    obj = obj()
                return str(obj)
            except (AttributeError, TypeError):
                # Not a reference we know; leave it for the consumer
                return match.group(0)

        return re.sub(r'\{([A-Za-z_][A-Za-z0-9_.]*)\}', replace, value)


__all__ = [
    "Backend",
    "Config",
    "EngineConfig",
    "ForbiddenPatternRule",
    "MaxFileSizeRule",
    "OllamaConfig",
    "PathRestrictionRule",
    "PolicyConfig",
    "PolicyRule",
    "RequiredPatternRule",
    "ReviewConfig",
    "ScriptsConfig",
    "Severity",
    "State",
    "Tier",
]

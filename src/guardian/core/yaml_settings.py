"""YAML settings source with include: directive support."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import yaml
from platformdirs import user_config_dir
from pydantic_settings import BaseSettings, YamlConfigSettingsSource

from guardian.core.log import logger

DEFAULTS_FILE = Path(__file__).parent.parent / "defaults" / "default.yaml"


def user_config_path() -> Path:
    """Per-user configuration file location."""
    return Path(user_config_dir("guardian", appauthor=False)) / "guardian.yaml"


def _cli_includes(argv: list[str]) -> list[str]:
    """Collect --include values before pydantic parses the CLI."""
    includes = []
    args = iter(argv[1:])
    for arg in args:
        if arg == "--include":
            value = next(args, None)
            if value is not None:
                includes.append(value)
        elif arg.startswith("--include="):
            includes.append(arg.split("=", 1)[1])
    return includes


class YamlWithIncludesSettingsSource(YamlConfigSettingsSource):
    """YAML source that layers several files and follows include:.

    Deep merge order, lowest priority first: package defaults, user
    config, project ./guardian.yaml, then --include files from the
    command line. Any file may name further files in an include:
    list; paths are resolved relative to the including file.
    """

    def __init__(self, settings_cls: type[BaseSettings], yaml_file=None):
        includes = _cli_includes(sys.argv)
        base = yaml_file or settings_cls.model_config.get("yaml_file")
        if base and includes:
            base = [base] if isinstance(base, (str, os.PathLike)) else list(base)
            yaml_file = base + includes
        elif includes:
            yaml_file = includes
        else:
            yaml_file = base

        super().__init__(settings_cls, yaml_file)

    def _read_files(self, files, deep_merge: bool = True):  # noqa: ARG002
        """Load and deep-merge every configuration layer.

        Layers are always deep-merged, whatever pydantic-settings
        asks for.

        Args:
            files: Project config and --include file path(s)

        Returns:
            Merged dictionary of all files that exist
        """
        candidates = [DEFAULTS_FILE, user_config_path()]
        if files:
            if isinstance(files, (str, os.PathLike)):
                files = [files]
            candidates.extend(Path(f).expanduser() for f in files)

        result = {}
        for path in candidates:
            if not path.is_file():
                logger.debug("Configuration file not found", file=str(path))
                continue
            with logger.span("Loading configuration", file=str(path)):
                result = merge_dicts(result, self._load_file(path, set()))
        return result

    def _load_file(self, path: Path, visited: set[Path]) -> dict:
        """Load one file with its include: directives resolved.

        Raises:
            ValueError: On a circular include chain
        """
        path = path.resolve()
        if path in visited:
            raise ValueError(f"Circular include: {path}")
        visited = visited | {path}

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        includes = data.pop("include", None) or []
        if isinstance(includes, str):
            includes = [includes]

        merged = {}
        for inc in includes:
            inc_path = Path(inc).expanduser()
            if not inc_path.is_absolute():
                inc_path = path.parent / inc_path
            logger.debug(
                "Including configuration",
                include_file=str(inc_path),
                included_from=str(path),
            )
            merged = merge_dicts(merged, self._load_file(inc_path, visited))

        # The including file wins over what it includes
        return merge_dicts(merged, data)


def merge_dicts(base: dict, override: dict) -> dict:
    """Recursively merge override into a copy of base."""
    result = base.copy()
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = merge_dicts(result[key], value)
        else:
            result[key] = value
    return result

"""The change under review and helpers to walk its diff."""

from __future__ import annotations

import re
from collections.abc import Iterator
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field

_HUNK = re.compile(r"^@@ -\d+(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


class ChangedFile(BaseModel):
    """A file touched by the change."""

    model_config = ConfigDict(frozen=True)

    path: str
    size_bytes: int | None = None
    content: str | None = Field(
        default=None,
        description="Text after the change; None for binary or unread files",
    )

    @property
    def line_count(self) -> int | None:
        if self.content is None:
            return None
        return len(self.content.splitlines())


class ChangePayload(BaseModel):
    """Text of the change plus the files it touches."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(default="", description="Unified diff or raw text")
    files: tuple[ChangedFile, ...] = ()
    tree: tuple[str, ...] = Field(
        default=(),
        description="Every file path in the project after the change",
    )

    @property
    def is_diff(self) -> bool:
        return looks_like_diff(self.text)

    @property
    def paths(self) -> list[str]:
        """Touched paths; read from the diff when files is empty."""
        if self.files:
            return [f.path for f in self.files]
        return diff_paths(self.text) if self.is_diff else []


class Line(NamedTuple):
    path: str | None
    number: int
    content: str


def looks_like_diff(text: str) -> bool:
    """A unified diff has at least one well-formed hunk header."""
    return any(_HUNK.match(line) for line in text.splitlines())


def _header_path(value: str) -> str | None:
    value = value.split("\t", 1)[0].strip()
    if value == "/dev/null":
        return None
    if value.startswith(("a/", "b/")):
        return value[2:]
    return value


def diff_paths(text: str) -> list[str]:
    """New-side paths named by +++ headers, in order."""
    paths = []
    for line in text.splitlines():
        if line.startswith("+++ "):
            path = _header_path(line[4:])
            if path and path not in paths:
                paths.append(path)
    return paths


def added_lines(text: str) -> Iterator[Line]:
    """Lines added by a unified diff, with new-file path and line.

    Hunk line counts are tracked so that an added line whose content
    itself begins with '++' is not mistaken for a file header.
    """
    path = None
    new_line = 0
    old_left = new_left = 0

    for raw in text.splitlines():
        if old_left > 0 or new_left > 0:
            tag, content = raw[:1], raw[1:]
            if tag == "+":
                yield Line(path, new_line, content)
                new_line += 1
                new_left -= 1
            elif tag == "-":
                old_left -= 1
            elif tag == "\\":
                pass
            else:
                new_line += 1
                old_left -= 1
                new_left -= 1
            continue

        if raw.startswith("+++ "):
            path = _header_path(raw[4:])
            continue

        match = _HUNK.match(raw)
        if match:
            old_left = int(match.group(1) or 1)
            new_line = int(match.group(2))
            new_left = int(match.group(3) or 1)


def text_lines(payload: ChangePayload) -> Iterator[Line]:
    """Lines a content rule should look at.

    For a diff only the added lines count (removing a bad line is not
    a violation); plain text is taken line by line.
    """
    if payload.is_diff:
        yield from added_lines(payload.text)
        return
    for number, content in enumerate(payload.text.splitlines(), start=1):
        yield Line(None, number, content)


def added_text(payload: ChangePayload) -> str:
    """What the change adds: added diff lines, or the whole text."""
    if not payload.is_diff:
        return payload.text
    return "\n".join(line.content for line in added_lines(payload.text))

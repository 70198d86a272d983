"""Git helpers."""

from guardian.git.changes import collect_changes

__all__ = ["collect_changes"]

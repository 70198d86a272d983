"""Base classes for configuration models.

This module holds the foundations shared by the config and log
modules:
- Closeable Protocol for resource cleanup
- BaseCloseable for the automatic cleanup cascade
- BaseConfig for mutable configuration sections (logger, sinks)
- FrozenConfig for the immutable sections handed to the engine

Kept separate from config.py so that log.py can import it without
a circular dependency.
"""

from __future__ import annotations

import sys
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict


@runtime_checkable
class Closeable(Protocol):
    """Protocol for objects that support close()."""

    def close(self) -> None:
        """Release resources."""
        ...


class BaseCloseable(BaseModel):
    """Pydantic model that closes its Closeable children.

    Subclasses become context managers. On close() every field
    holding a Closeable is closed in turn; a failure in one child
    is reported on stderr and does not stop the others.

    Cascade: State.close() → Config.close() → Logger.close() →
    Sink.close()
    """

    def close(self):
        """Close all closeable child objects."""
        for field_name in self.__class__.model_fields:
            child = getattr(self, field_name, None)
            if child is None:
                continue

            if isinstance(child, Closeable):
                try:
                    child.close()
                except Exception as e:
                    print(
                        f"Warning: Error closing {field_name}: {e}",
                        file=sys.stderr,
                    )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):  # noqa: U100
        self.close()
        return False


class BaseConfig(BaseCloseable):
    """Base class for mutable configuration sections.

    Used for sections that carry runtime resources (the logger and
    its sinks) and therefore cannot be frozen.
    """
    pass


class FrozenConfig(BaseConfig):
    """Base class for immutable configuration sections.

    Everything the check engine reads (backends, scripts, policy
    rules, review settings) derives from this class so that a run
    cannot mutate the configuration it was started with.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")


__all__ = ["Closeable", "BaseCloseable", "BaseConfig", "FrozenConfig"]

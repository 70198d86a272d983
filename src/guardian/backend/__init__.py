"""Inference backend access: HTTP client, probes, selection."""

from guardian.backend.client import GenerateResponse, OllamaClient, OllamaModel
from guardian.backend.probe import probe
from guardian.backend.resolver import (
    probe_all,
    require_backend,
    resolve,
)

__all__ = [
    "GenerateResponse",
    "OllamaClient",
    "OllamaModel",
    "probe",
    "probe_all",
    "require_backend",
    "resolve",
]

"""Pytest configuration and fixtures for guardian tests."""

import sys
import tempfile
from pathlib import Path

import pytest

from guardian.core.config import Backend, Tier
from guardian.core.log import ConsoleSink, FileSink, setup_logger
from guardian.core.result import ProbeOutcome


@pytest.fixture(autouse=True, scope="session")
def configure_logging():
    """Configure console-only logging for the test session.

    Debug output shows up on failing tests without writing log
    files or sending anything to logfire.dev.
    """
    test_log_root = Path(tempfile.gettempdir()) / "guardian-tests"
    setup_logger(
        log_root=test_log_root,
        run_name="test",
        console=ConsoleSink(level="debug"),
        file=FileSink(enabled=False),
    )


@pytest.fixture
def no_user_config(monkeypatch, tmp_path):
    """Point the per-user config file at a path that does not exist."""
    monkeypatch.setattr(
        "guardian.core.yaml_settings.user_config_path",
        lambda: tmp_path / "missing-user-config.yaml",
    )


@pytest.fixture
def isolated(no_user_config, monkeypatch, tmp_path):
    """Run State loading away from the real environment.

    sys.argv is replaced so pytest's own arguments are not read as
    --include options, the working directory is an empty directory
    so no ./guardian.yaml is picked up, and log files go under
    tmp_path.
    """
    monkeypatch.setattr(sys, "argv", ["guardian"])
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GUARDIAN_CONFIG__LOG_ROOT", str(tmp_path / "logs"))
    return tmp_path


@pytest.fixture
def test_state(isolated):
    """State loaded from the packaged defaults only."""
    from guardian.core.config import State

    return State()


def make_backend(name: str, tier: Tier = Tier.PRIMARY, enabled: bool = True):
    return Backend(
        name=name,
        base_url=f"http://{name}.invalid:11434",
        tier=tier,
        enabled=enabled,
    )


class FakeProbe:
    """Probe double: per-backend delay and reachability.

    Records which backends were probed and which probes ran to
    completion (cancelled probes never complete).
    """

    def __init__(self, plan: dict[str, tuple[float, bool]], models=()):
        self.plan = plan
        self.models = tuple(models)
        self.started: list[str] = []
        self.finished: list[str] = []

    async def __call__(self, backend: Backend, timeout: float) -> ProbeOutcome:
        import asyncio

        delay, reachable = self.plan.get(backend.name, (0.0, False))
        self.started.append(backend.name)
        await asyncio.sleep(delay)
        self.finished.append(backend.name)
        return ProbeOutcome(
            backend=backend,
            reachable=reachable,
            latency_ms=int(delay * 1000),
            reason=None if reachable else "connection refused",
            models=self.models if reachable else (),
        )


@pytest.fixture
def fake_probe():
    return FakeProbe


@pytest.fixture
def backend():
    """Factory for test backends on unresolvable hosts."""
    return make_backend

"""Tests for backend resolution across tiers."""

import asyncio
import time

import pytest

from guardian.backend.resolver import (
    FirstWriterSlot,
    has_model,
    probe_all,
    require_backend,
    resolve,
)
from guardian.core.config import Tier
from guardian.core.errors import BackendUnreachable, NoBackendAvailable


async def test_single_enabled_primary_is_selected(backend, fake_probe):
    """Two disabled primaries and one live one: the live one wins fast."""
    backends = [
        backend("a", enabled=False),
        backend("b", enabled=False),
        backend("c"),
    ]
    probe = fake_probe({"c": (0.02, True)})

    start = time.monotonic()
    resolved = await resolve(backends, timeout=2.5, probe_fn=probe)

    assert resolved is not None
    assert resolved.backend.name == "c"
    assert resolved.tier == Tier.PRIMARY
    assert time.monotonic() - start < 2.5
    assert probe.started == ["c"]


async def test_primary_preferred_over_faster_fallback(backend, fake_probe):
    backends = [
        backend("fast-fallback", tier=Tier.FALLBACK),
        backend("slow-primary"),
    ]
    probe = fake_probe({
        "fast-fallback": (0.0, True),
        "slow-primary": (0.1, True),
    })

    resolved = await resolve(backends, timeout=1.0, probe_fn=probe)

    assert resolved.backend.name == "slow-primary"
    assert resolved.tier == Tier.PRIMARY
    assert "fast-fallback" not in probe.started


async def test_fallback_used_when_primaries_down(backend, fake_probe):
    backends = [
        backend("p1"),
        backend("p2"),
        backend("f1", tier=Tier.FALLBACK),
    ]
    probe = fake_probe({
        "p1": (0.0, False),
        "p2": (0.01, False),
        "f1": (0.01, True),
    })

    resolved = await resolve(backends, timeout=1.0, probe_fn=probe)

    assert resolved.backend.name == "f1"
    assert resolved.tier == Tier.FALLBACK


async def test_fallback_used_when_primaries_disabled(backend, fake_probe):
    backends = [
        backend("p1", enabled=False),
        backend("f1", tier=Tier.FALLBACK),
    ]
    probe = fake_probe({"p1": (0.0, True), "f1": (0.0, True)})

    resolved = await resolve(backends, timeout=1.0, probe_fn=probe)

    assert resolved.backend.name == "f1"
    assert probe.started == ["f1"]


async def test_fallback_gets_fresh_timeout(backend, fake_probe):
    """A hung primary tier uses up its own budget, not the fallback's."""
    backends = [backend("hung"), backend("f1", tier=Tier.FALLBACK)]
    probe = fake_probe({"hung": (10.0, True), "f1": (0.05, True)})

    resolved = await resolve(backends, timeout=0.2, probe_fn=probe)

    assert resolved.backend.name == "f1"


async def test_nothing_reachable_returns_none(backend, fake_probe):
    backends = [backend("p1"), backend("f1", tier=Tier.FALLBACK)]
    probe = fake_probe({"p1": (0.0, False), "f1": (0.0, False)})

    assert await resolve(backends, timeout=0.5, probe_fn=probe) is None


async def test_no_backends_returns_none(fake_probe):
    assert await resolve([], timeout=0.5, probe_fn=fake_probe({})) is None


async def test_timeout_is_honored(backend, fake_probe):
    probe = fake_probe({"slow": (5.0, True)})

    start = time.monotonic()
    resolved = await resolve([backend("slow")], timeout=0.1, probe_fn=probe)

    assert resolved is None
    assert time.monotonic() - start < 1.0


async def test_first_success_short_circuits(backend, fake_probe):
    """Losing probes are abandoned and never run to completion."""
    backends = [backend("fast"), backend("slow")]
    probe = fake_probe({"fast": (0.0, True), "slow": (0.3, True)})

    resolved = await resolve(backends, timeout=2.0, probe_fn=probe)
    await asyncio.sleep(0.4)

    assert resolved.backend.name == "fast"
    assert probe.finished == ["fast"]


async def test_same_tick_tie_breaks_on_config_order(backend, fake_probe):
    backends = [backend("first"), backend("second"), backend("third")]
    probe = fake_probe({
        "first": (0.0, True),
        "second": (0.0, True),
        "third": (0.0, True),
    })

    resolved = await resolve(backends, timeout=1.0, probe_fn=probe)

    assert resolved.backend.name == "first"


async def test_probe_exception_counts_as_unreachable(backend, fake_probe):
    async def broken(b, timeout):
        if b.name == "broken":
            raise OSError("boom")
        return await fake_probe({"ok": (0.01, True)})(b, timeout)

    resolved = await resolve(
        [backend("broken"), backend("ok")], timeout=1.0, probe_fn=broken
    )

    assert resolved.backend.name == "ok"


async def test_required_model_skips_backends_without_it(backend, fake_probe):
    backends = [backend("p1"), backend("f1", tier=Tier.FALLBACK)]
    probe = fake_probe(
        {"p1": (0.0, True), "f1": (0.0, True)}, models=["llama3:latest"]
    )

    resolved = await resolve(
        backends, timeout=1.0, probe_fn=probe, required_model="qwen2.5-coder"
    )
    assert resolved is None

    resolved = await resolve(
        backends, timeout=1.0, probe_fn=probe, required_model="llama3"
    )
    assert resolved.backend.name == "p1"


async def test_require_backend_raises_when_none(backend, fake_probe):
    probe = fake_probe({"p1": (0.0, False)})

    with pytest.raises(NoBackendAvailable) as exc_info:
        await require_backend([backend("p1")], timeout=0.5, probe_fn=probe)

    assert isinstance(exc_info.value, BackendUnreachable)


async def test_probe_all_waits_for_every_backend(backend, fake_probe):
    backends = [
        backend("f1", tier=Tier.FALLBACK),
        backend("p1"),
        backend("p2"),
        backend("off", enabled=False),
    ]
    probe = fake_probe({
        "f1": (0.0, True),
        "p1": (0.05, True),
        "p2": (0.0, False),
    })

    outcomes = await probe_all(backends, timeout=1.0, probe_fn=probe)

    assert [o.backend.name for o in outcomes] == ["p1", "p2", "f1"]
    assert [o.reachable for o in outcomes] == [True, False, True]
    assert sorted(probe.finished) == ["f1", "p1", "p2"]


async def test_probe_all_reports_timeouts(backend, fake_probe):
    probe = fake_probe({"slow": (5.0, True), "ok": (0.0, True)})

    outcomes = await probe_all(
        [backend("slow"), backend("ok")], timeout=0.1, probe_fn=probe
    )

    assert outcomes[0].reachable is False
    assert outcomes[0].reason == "timeout"
    assert outcomes[1].reachable is True


def test_first_writer_slot_drops_later_offers():
    slot = FirstWriterSlot()
    assert not slot.filled
    assert slot.offer("a") is True
    assert slot.offer("b") is False
    assert slot.value == "a"


def test_has_model_untagged_means_latest():
    assert has_model(["llama3:latest"], "llama3")
    assert has_model(["llama3:8b"], "llama3:8b")
    assert not has_model(["llama3:8b"], "llama3")

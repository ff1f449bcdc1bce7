# tests/test_scheduler_unit.py
import asyncio

import pytest

from sitemon.config import Settings
from sitemon.engine.scheduler import RoundScheduler
from sitemon.engine.state import StateStore
from sitemon.errors import SettingsError
from sitemon.prober.base import Prober
from sitemon.prober.fake import FakeProber
from sitemon.registry import RegistryHandle, load_registry
from sitemon.schemas import ProbeOutcome, utcnow

PAIR = '{"A": "127.0.0.1", "B": "::1"}'


def make_scheduler(prober, sites=PAIR, **settings):
    registry = RegistryHandle(load_registry(sites))
    store = StateStore(registry.current().names())
    s = Settings(**settings)
    return RoundScheduler(registry, store, prober, s), store, registry


async def test_one_round_fills_both_targets():
    """A (v4) and B (v6), 32-byte payload, 1s timeout: one round -> one sample each."""
    fake = FakeProber(script={"A": [0.05], "B": [0.07]})
    sched, store, _ = make_scheduler(fake, payload_size=32, timeout_s=1.0, interval_s=1.0)

    tasks = sched.run_round()
    await asyncio.gather(*tasks)

    snap = store.snapshot()
    assert set(snap) == {"A", "B"}
    assert snap["A"].sample_count == 1
    assert snap["A"].mean_rtt_ms == pytest.approx(0.05)
    assert snap["B"].sample_count == 1
    assert snap["B"].mean_rtt_ms == pytest.approx(0.07)
    assert sorted(fake.calls) == [("A", 32, 1.0), ("B", 32, 1.0)]
    assert sched.rounds_started == 1
    assert sched.last_round_at is not None
    assert sched.state == "idle"


async def test_run_round_does_not_wait_for_probes():
    fake = FakeProber(default=(5.0, 0.3))
    sched, store, _ = make_scheduler(fake, timeout_s=1.0)

    tasks = sched.run_round()
    assert len(tasks) == 2
    assert sched.in_flight == 2
    assert store.get("A").pending

    await asyncio.gather(*tasks)
    assert sched.in_flight == 0
    assert store.get("A").sample_count == 1


async def test_slow_target_does_not_block_fast_one():
    fake = FakeProber(script={"A": [(1.0, 0.01)], "B": [(2.0, 0.5)]})
    sched, store, _ = make_scheduler(fake, timeout_s=1.0)

    tasks = sched.run_round()
    await asyncio.sleep(0.1)
    assert store.get("A").sample_count == 1
    assert store.get("B").pending
    await asyncio.gather(*tasks)


async def test_start_fires_first_round_immediately():
    fake = FakeProber(default=1.0)
    sched, store, _ = make_scheduler(fake, interval_s=30.0)

    await sched.start()
    await asyncio.sleep(0.05)
    try:
        assert sched.running
        assert sched.rounds_started == 1
        assert store.get("A").sample_count == 1
        assert 29.0 < sched.seconds_until_next_round() <= 30.0
    finally:
        await sched.stop()
    assert not sched.running
    assert sched.seconds_until_next_round() is None


async def test_double_start_keeps_single_timer():
    sched, _, _ = make_scheduler(FakeProber(default=1.0), interval_s=30.0)
    await sched.start()
    await sched.start()
    await asyncio.sleep(0.05)
    assert sched.rounds_started == 1
    await sched.stop()


async def test_refresh_now_fires_round_and_restarts_countdown():
    sched, store, _ = make_scheduler(FakeProber(default=1.0), interval_s=30.0)
    await sched.start(fire_now=False)
    await asyncio.sleep(0.05)
    assert sched.rounds_started == 0

    sched.refresh_now()
    await asyncio.sleep(0.05)
    assert sched.rounds_started == 1
    assert store.get("B").sample_count == 1
    assert sched.seconds_until_next_round() > 29.0
    await sched.stop()


async def test_overlapping_rounds_all_feed_the_mean():
    """100ms interval, 500ms timeout, replies after 400ms: rounds overlap and every reply counts."""
    fake = FakeProber(default=(20.0, 0.4))
    sched, store, _ = make_scheduler(fake, sites='{"A": "127.0.0.1"}', interval_s=0.1, timeout_s=0.5)

    await sched.start()
    await asyncio.sleep(1.0)
    await sched.stop()

    a = store.get("A")
    assert sched.rounds_started >= 5
    assert a.sample_count >= 3
    assert a.mean_rtt_ms == pytest.approx(20.0)


async def test_stop_abandons_in_flight_probes():
    fake = FakeProber(default=(5.0, 0.3))
    sched, store, _ = make_scheduler(fake, timeout_s=1.0)

    sched.run_round()
    await sched.stop()
    await asyncio.sleep(0.4)

    assert sched.in_flight == 0
    assert store.get("A").pending
    assert store.get("B").pending


async def test_stop_does_not_wait_for_stubborn_probes():
    class Stubborn(Prober):
        async def probe(self, target, payload_size, timeout_s):
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                await asyncio.sleep(0.3)
            return ProbeOutcome.success(target.name, utcnow(), 1.0)

    sched, store, _ = make_scheduler(Stubborn(), timeout_s=1.0)
    sched.run_round()
    await asyncio.sleep(0)

    loop = asyncio.get_running_loop()
    began = loop.time()
    await sched.stop()
    assert loop.time() - began < 0.2

    await asyncio.sleep(0.4)
    assert store.get("A").pending
    assert store.get("B").pending


async def test_raising_prober_becomes_transport_error():
    class Boom(Prober):
        async def probe(self, target, payload_size, timeout_s):
            raise RuntimeError("socket table full")

    sched, store, _ = make_scheduler(Boom())
    outcomes = await asyncio.gather(*sched.run_round())

    assert {o.error for o in outcomes} == {"transport"}
    assert store.get("A").latest.is_systemic
    assert "socket table full" in store.get("A").latest.detail


async def test_each_round_reads_a_fresh_snapshot():
    fake = FakeProber(default=1.0)
    sched, store, registry = make_scheduler(fake, sites='{"A": "127.0.0.1"}')

    await asyncio.gather(*sched.run_round())
    new = load_registry('{"C": "10.0.0.3"}')
    registry.swap(new)
    store.reconcile(new.names())
    await asyncio.gather(*sched.run_round())

    assert [name for name, _, _ in fake.calls] == ["A", "C"]
    assert set(store.snapshot()) == {"C"}


async def test_empty_registry_round_is_a_noop():
    sched, store, _ = make_scheduler(FakeProber(), sites="{}")
    assert sched.run_round() == []
    assert store.snapshot() == {}


def test_set_interval_validates():
    sched, _, _ = make_scheduler(FakeProber())
    sched.set_interval(5.0)
    assert sched.interval == 5.0
    with pytest.raises(SettingsError):
        sched.set_interval(0)

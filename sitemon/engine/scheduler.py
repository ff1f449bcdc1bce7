# sitemon/engine/scheduler.py
"""Round scheduler: fires a probe round every ``interval_s`` seconds.

Each round reads a fresh registry snapshot and spawns one task per target.
The timer never waits for a round to drain, so with ``interval_s < timeout_s``
rounds overlap; the store then applies outcomes for a target in completion
order (last write wins for ``latest``) and every reply still feeds the mean.
"""
import asyncio
import logging
import time
from datetime import datetime
from typing import Optional

from sitemon.config import MIN_INTERVAL_S, Settings
from sitemon.engine.state import StateStore
from sitemon.errors import SettingsError
from sitemon.prober.base import Prober
from sitemon.registry import RegistryHandle
from sitemon.schemas import ProbeOutcome, Target, utcnow

logger = logging.getLogger(__name__)


class RoundScheduler:
    def __init__(self, registry: RegistryHandle, store: StateStore, prober: Prober, settings: Settings):
        self.registry = registry
        self.store = store
        self.prober = prober
        self.s = settings
        self._interval = settings.interval_s
        self._running = False
        self._closed = False
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        self._in_flight: set[asyncio.Task] = set()
        self._state = "idle"
        self._rounds = 0
        self._last_round_at: Optional[datetime] = None
        self._next_round_at: Optional[float] = None   # time.monotonic()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def start(self, fire_now: bool = True) -> None:
        if self._running:
            logger.warning("Round scheduler is already running")
            return
        self._running = True
        self._closed = False
        self._task = asyncio.create_task(self._loop(fire_now))
        logger.info("Round scheduler started (interval=%.2fs, timeout=%.2fs, payload=%dB)",
                    self._interval, self.s.timeout_s, self.s.payload_size)

    async def stop(self) -> None:
        """Cancel the timer and abandon outstanding probes without waiting for them.

        Abandoned probes are cancelled so their ping children get killed; any
        result that still completes afterwards is discarded.
        """
        self._running = False
        self._closed = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        pending = list(self._in_flight)
        for t in pending:
            t.cancel()
        # one loop pass delivers the cancellations; nothing waits for the probes to unwind
        await asyncio.sleep(0)
        self._next_round_at = None
        self._state = "idle"
        logger.info("Round scheduler stopped (%d probes abandoned)", len(pending))

    def refresh_now(self) -> None:
        """Fire a round right away and restart the interval countdown."""
        self._wake.set()

    def set_interval(self, seconds: float) -> None:
        if seconds < MIN_INTERVAL_S:
            raise SettingsError("interval_s", f"must be at least {MIN_INTERVAL_S}s")
        self._interval = seconds
        logger.info("Round interval set to %.2fs (applies from the next round)", seconds)

    def run_round(self) -> list[asyncio.Task]:
        """Spawn one probe task per currently registered target and return them."""
        self._state = "ticking"
        snapshot = self.registry.current()
        self._state = "fanning_out"
        tasks = []
        for target in snapshot.targets():
            t = asyncio.create_task(self._probe_one(target), name=f"probe:{target.name}")
            self._in_flight.add(t)
            t.add_done_callback(self._in_flight.discard)
            tasks.append(t)
        self._rounds += 1
        self._last_round_at = utcnow()
        self._state = "idle"
        logger.debug("round %d: %d probes spawned, %d in flight",
                     self._rounds, len(tasks), len(self._in_flight))
        return tasks

    @property
    def running(self) -> bool:
        return self._running

    @property
    def state(self) -> str:
        return self._state

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def rounds_started(self) -> int:
        return self._rounds

    @property
    def last_round_at(self) -> Optional[datetime]:
        return self._last_round_at

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def seconds_until_next_round(self) -> Optional[float]:
        if self._next_round_at is None:
            return None
        return max(0.0, self._next_round_at - time.monotonic())

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _probe_one(self, target: Target) -> ProbeOutcome:
        try:
            outcome = await self.prober.probe(target, self.s.payload_size, self.s.timeout_s)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # a broken prober is a transport problem for this target, not a scheduler crash
            logger.exception("Prober failed for %s", target.name)
            outcome = ProbeOutcome.failure(target.name, utcnow(), "transport", detail=repr(exc))

        if not self._closed:
            self.store.record(outcome)
        return outcome

    async def _loop(self, fire_now: bool) -> None:
        skip_wait = fire_now
        while self._running:
            if not skip_wait:
                self._next_round_at = time.monotonic() + self._interval
                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=self._interval)
                except asyncio.TimeoutError:
                    pass
            skip_wait = False
            self._wake.clear()
            try:
                self.run_round()
            except Exception:
                logger.exception("Probe round failed to start")

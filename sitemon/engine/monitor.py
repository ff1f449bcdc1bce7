# sitemon/engine/monitor.py
"""The wired monitor core: the one object a presentation layer holds."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sitemon.config import Settings
from sitemon.engine.rules import transport_degraded
from sitemon.engine.scheduler import RoundScheduler
from sitemon.engine.state import StateStore, TargetStats
from sitemon.engine.watcher import ReloadWatcher
from sitemon.prober.base import Prober
from sitemon.prober.ping import PingProber
from sitemon.registry import RegistryHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonitorView:
    stats: dict[str, TargetStats]
    reload_error: Optional[str]
    reload_error_at: Optional[datetime]
    degraded: bool
    next_round_in: Optional[float]
    last_round_at: Optional[datetime]


class Monitor:
    def __init__(self, settings: Optional[Settings] = None, prober: Optional[Prober] = None):
        self.settings = (settings or Settings()).validate()
        self.prober = prober or PingProber(
            ping_bin=self.settings.ping_bin, max_in_flight=self.settings.max_in_flight
        )
        self.registry = RegistryHandle()
        self.store = StateStore()
        self.scheduler = RoundScheduler(self.registry, self.store, self.prober, self.settings)
        self.watcher = ReloadWatcher(
            self.settings.sites_path, self.registry, self.store, self.settings.reload_interval_s
        )
        self._was_degraded = False

    async def start(self) -> None:
        """Load targets, fire the first round immediately, then start both timers."""
        self.store.reopen()
        if not await self.watcher.reload_once():
            logger.warning("Starting with %d targets; %s could not be loaded",
                           len(self.registry.current()), self.settings.sites_path)
        await self.watcher.start()
        await self.scheduler.start(fire_now=True)

    async def stop(self) -> None:
        await self.watcher.stop()
        await self.scheduler.stop()
        self.store.close()

    async def __aenter__(self) -> "Monitor":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    def refresh_now(self) -> None:
        self.scheduler.refresh_now()

    async def reload_now(self) -> bool:
        """Re-read the target file now; on success probe the new set right away."""
        ok = await self.watcher.reload_once()
        if ok:
            self.scheduler.refresh_now()
        return ok

    def set_interval(self, seconds: float) -> None:
        self.scheduler.set_interval(seconds)

    def view(self) -> MonitorView:
        stats = self.store.snapshot()
        degraded = transport_degraded(stats)
        if degraded != self._was_degraded:
            if degraded:
                logger.warning("Probing looks broken: most targets report transport errors")
            else:
                logger.info("Probing recovered from transport errors")
            self._was_degraded = degraded
        err = self.watcher.last_error
        return MonitorView(
            stats=stats,
            reload_error=str(err) if err is not None else None,
            reload_error_at=self.watcher.last_error_at,
            degraded=degraded,
            next_round_in=self.scheduler.seconds_until_next_round(),
            last_round_at=self.scheduler.last_round_at,
        )

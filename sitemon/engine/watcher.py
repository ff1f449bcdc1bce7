# sitemon/engine/watcher.py
"""Reload watcher: re-reads the target file and hot-swaps the registry."""
import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from sitemon.engine.state import StateStore
from sitemon.errors import ConfigError
from sitemon.registry import RegistryHandle, TargetRegistry, load_registry_file
from sitemon.schemas import utcnow

logger = logging.getLogger(__name__)


class ReloadWatcher:
    def __init__(self, source: Union[str, Path], registry: RegistryHandle, store: StateStore,
                 interval_s: float = 60.0) -> None:
        self.source = Path(source)
        self.registry = registry
        self.store = store
        self.interval = interval_s
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._last_error: Optional[ConfigError] = None
        self._last_error_at: Optional[datetime] = None
        self._last_reload_at: Optional[datetime] = None

    async def start(self) -> None:
        """Start periodic reloads. With interval 0 reloads happen only on demand."""
        if self._running:
            logger.warning("Reload watcher is already running")
            return
        if self.interval <= 0:
            logger.info("Reload watcher is on-demand only for %s", self.source)
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Reload watcher started (interval=%.1fs, source=%s)", self.interval, self.source)

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Reload watcher stopped")

    async def reload_once(self) -> bool:
        """Load the source and apply it. On failure the previous state stays authoritative."""
        async with self._lock:
            try:
                new = await asyncio.to_thread(load_registry_file, self.source)
            except ConfigError as exc:
                self._last_error = exc
                self._last_error_at = utcnow()
                logger.warning("Reload of %s failed (%s), keeping %d targets: %s",
                               self.source, exc.kind, len(self.registry.current()), exc)
                return False

            self._last_error = None
            self._last_error_at = None
            self._last_reload_at = utcnow()
            self.apply(new)
            return True

    def apply(self, new: TargetRegistry) -> None:
        """Swap in `new` and reconcile the store's tracked targets to it."""
        if new == self.registry.current() and self.store.names() == new.names():
            logger.debug("Reload of %s: no changes", self.source)
            return
        self.registry.swap(new)
        added, removed = self.store.reconcile(new.names())
        logger.info("Reloaded %s: %d targets (%d added, %d removed)",
                    self.source, len(new), len(added), len(removed))

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_error(self) -> Optional[ConfigError]:
        return self._last_error

    @property
    def last_error_at(self) -> Optional[datetime]:
        return self._last_error_at

    @property
    def last_reload_at(self) -> Optional[datetime]:
        return self._last_reload_at

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            try:
                await self.reload_once()
            except Exception:
                logger.exception("Reload cycle failed")

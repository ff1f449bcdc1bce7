# sitemon/engine/state.py
"""Aggregator / state store: per-target rolling statistics.

Each tracked target owns an entry with its own lock, so probes for different
targets never contend and overlapping probes for the same target serialize on
that entry only. Structural changes (reconcile) take a separate lock and swap
in a new entries dict; ``record`` and ``snapshot`` work from whichever dict
they read.
"""
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, Optional

from sitemon.schemas import ProbeOutcome

logger = logging.getLogger(__name__)


@dataclass
class TargetStats:
    name: str
    latest: Optional[ProbeOutcome] = None
    mean_rtt_ms: Optional[float] = None   # over successful probes only
    sample_count: int = 0
    last_refreshed_at: Optional[datetime] = None
    consecutive_failures: int = 0

    @property
    def pending(self) -> bool:
        return self.latest is None


class _Entry:
    __slots__ = ("stats", "lock")

    def __init__(self, name: str):
        self.stats = TargetStats(name=name)
        self.lock = threading.Lock()


class StateStore:
    def __init__(self, names: Iterable[str] = ()):
        self._entries = {n: _Entry(n) for n in sorted(names)}
        self._structure_lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self):
        self._closed = True

    def reopen(self):
        self._closed = False

    def names(self) -> frozenset:
        return frozenset(self._entries)

    def record(self, outcome: ProbeOutcome) -> bool:
        """Apply one probe outcome. Returns False if it was dropped."""
        if self._closed:
            return False
        entry = self._entries.get(outcome.target_name)
        if entry is None:
            # target removed by a reload while its probe was in flight
            logger.debug("dropping outcome for untracked target %s", outcome.target_name)
            return False

        with entry.lock:
            if self._closed or self._entries.get(outcome.target_name) is not entry:
                # closed, or pruned by a reconcile that ran after the lookup above
                return False
            s = entry.stats
            s.latest = outcome
            s.last_refreshed_at = outcome.issued_at
            if outcome.ok:
                s.sample_count += 1
                if s.mean_rtt_ms is None:
                    s.mean_rtt_ms = outcome.rtt_ms
                else:
                    s.mean_rtt_ms += (outcome.rtt_ms - s.mean_rtt_ms) / s.sample_count
                s.consecutive_failures = 0
            else:
                s.consecutive_failures += 1
        return True

    def get(self, name: str) -> Optional[TargetStats]:
        entry = self._entries.get(name)
        if entry is None:
            return None
        with entry.lock:
            return replace(entry.stats)

    def snapshot(self) -> dict[str, TargetStats]:
        entries = self._entries
        out = {}
        for name, entry in entries.items():
            with entry.lock:
                out[name] = replace(entry.stats)
        return out

    def reconcile(self, names: Iterable[str]) -> tuple[frozenset, frozenset]:
        """Track exactly `names`: add zeroed entries, drop stale ones, keep the rest as-is."""
        wanted = frozenset(names)
        with self._structure_lock:
            current = self._entries
            added = wanted - frozenset(current)
            removed = frozenset(current) - wanted
            if not added and not removed:
                return frozenset(), frozenset()
            fresh = {}
            for name in sorted(wanted):
                fresh[name] = current[name] if name in current else _Entry(name)
            self._entries = fresh
        logger.info("tracking %d targets (+%d, -%d)", len(fresh), len(added), len(removed))
        return added, removed

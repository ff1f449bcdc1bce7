# sitemon/engine/rules.py
from collections.abc import Mapping

from sitemon.engine.state import TargetStats

ERROR_LABELS = {
    "timeout": "Timeout",
    "unreachable": "Unreachable",
    "transport": "Error",
}


def format_ms(ms: float) -> str:
    return f"{ms:.2f}ms"


def display_value(stats: TargetStats, show_average: bool = False) -> str:
    """Text for a target's row: latest result, or the running mean when show_average."""
    if stats.pending:
        return "Pending..."
    if show_average:
        if stats.mean_rtt_ms is None:
            return "No replies"
        return format_ms(stats.mean_rtt_ms)
    latest = stats.latest
    if latest.ok:
        return format_ms(latest.rtt_ms)
    return ERROR_LABELS.get(latest.error, "Error")


def is_failing(stats: TargetStats) -> bool:
    return stats.latest is not None and not stats.latest.ok


def all_failing(stats: TargetStats, streak: int) -> bool:
    """
    True once the last `streak` probes all failed.
    A single lost packet should not paint a target as down.
    """
    return stats.consecutive_failures >= streak


def transport_degraded(snapshot: Mapping, min_share: float = 0.5) -> bool:
    """
    True when the probing machinery itself looks broken: at least `min_share` of
    the targets that have reported are failing with transport errors (no ping
    binary, no permission, out of sockets) rather than plain timeouts.
    """
    reported = [s for s in snapshot.values() if s.latest is not None]
    if not reported:
        return False
    systemic = sum(1 for s in reported if s.latest.is_systemic)
    return systemic > 0 and systemic >= min_share * len(reported)

# tools/run_monitor.py
# Console stand-in for the GUI: prints every target's status once per round.
# Usage examples:
#   python3 -m tools.run_monitor --sites sites.json
#   python3 -m tools.run_monitor --sites sites.json --interval 5 --timeout 1 --payload-size 32 --average
#   python3 -m tools.run_monitor --sites sites.json --once

import asyncio
import argparse
import logging
import sys

from sitemon.config import Settings
from sitemon.engine.monitor import Monitor
from sitemon.engine.rules import all_failing, display_value
from sitemon.errors import SettingsError

def render(view, show_average, streak):
    lines = []
    for name, stats in view.stats.items():
        flag = "!" if all_failing(stats, streak) else " "
        lines.append(f"{flag} {name:<24} {display_value(stats, show_average):>12}")
    if view.last_round_at is not None:
        lines.append(f"Last update: {view.last_round_at.astimezone():%I:%M:%S %p}")
    if view.next_round_in is not None:
        lines.append(f"Next refresh in: {view.next_round_in:.0f}s")
    if view.reload_error:
        lines.append(f"WARNING: target reload failed: {view.reload_error}")
    if view.degraded:
        lines.append("WARNING: probing looks broken (transport errors); check ping permissions")
    return "\n".join(lines)

async def run(args, settings):
    monitor = Monitor(settings)
    async with monitor:
        if args.once:
            # let the startup round finish (or time out) before printing
            await asyncio.sleep(settings.timeout_s + 0.1)
            print(render(monitor.view(), args.average, settings.failure_streak))
            return
        while True:
            await asyncio.sleep(settings.interval_s)
            print(render(monitor.view(), args.average, settings.failure_streak))
            print()

def build_argparser():
    ap = argparse.ArgumentParser(description="Site reachability / latency monitor")
    ap.add_argument("--sites", default="sites.json", help="JSON file mapping target name -> IP address")
    ap.add_argument("--interval", type=float, default=30.0, help="Seconds between probe rounds")
    ap.add_argument("--timeout", type=float, default=4.0, help="Per-probe timeout in seconds")
    ap.add_argument("--payload-size", type=int, default=256, help="Echo payload size in bytes")
    ap.add_argument("--reload-interval", type=float, default=60.0,
                    help="Seconds between re-reads of the sites file (0 = never)")
    ap.add_argument("--ping-bin", default="ping", help="ping binary to run")
    ap.add_argument("--average", action="store_true", help="Show mean latency instead of the latest reply")
    ap.add_argument("--once", action="store_true", help="Run a single round, print it and exit")
    ap.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, WARNING...)")
    return ap

if __name__ == "__main__":
    ap = build_argparser()
    args = ap.parse_args()
    logging.basicConfig(level=args.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    s = Settings(
        payload_size=args.payload_size,
        timeout_s=args.timeout,
        interval_s=args.interval,
        reload_interval_s=args.reload_interval,
        sites_path=args.sites,
        ping_bin=args.ping_bin,
    )
    try:
        s.validate()
    except SettingsError as e:
        ap.error(str(e))
    try:
        asyncio.run(run(args, s))
    except KeyboardInterrupt:
        sys.exit(0)

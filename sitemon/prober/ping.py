# sitemon/prober/ping.py
import asyncio
import logging
import math
import re
import sys
from typing import Optional

from sitemon.prober.base import Prober
from sitemon.schemas import ErrorKind, ProbeOutcome, Target, utcnow

logger = logging.getLogger(__name__)

DEFAULT_PING_BIN = "ping"

RTT_RE = re.compile(r"time[=<]\s*([\d.]+)\s*ms")

PERMISSION_MARKERS = (
    "operation not permitted",
    "permission denied",
    "must be root",
    "too many open files",
    "cannot allocate memory",
)
UNREACHABLE_MARKERS = (
    "unreachable",
    "no route to host",
    "host is down",
    "network is down",
)


def build_ping_cmd(ping_bin: str, target: Target, payload_size: int, timeout_s: float,
                   platform: str = sys.platform) -> list[str]:
    addr = str(target.address)
    if platform == "darwin":
        # macOS: separate ping6 binary, -W is in milliseconds and only on the v4 tool
        if target.version == 6:
            bin6 = "ping6" if ping_bin == DEFAULT_PING_BIN else ping_bin
            return [bin6, "-n", "-c", "1", "-s", str(payload_size), addr]
        return [ping_bin, "-n", "-c", "1", "-s", str(payload_size),
                "-W", str(max(1, math.ceil(timeout_s * 1000))), addr]
    # iputils / busybox: whole seconds for -W; the exact deadline is enforced by the caller
    return [ping_bin, f"-{target.version}", "-n", "-c", "1", "-s", str(payload_size),
            "-W", str(max(1, math.ceil(timeout_s))), addr]


def parse_ping_output(returncode: int, output: str,
                      no_reply_codes: tuple[int, ...] = (1,)) -> tuple[Optional[ErrorKind], Optional[float], str]:
    """
    Classify one `ping -c 1` run.
    Returns (error, rtt_ms, detail). error is None on a reply; rtt_ms is None when
    the binary did not time the reply (payload too small to carry a timestamp).
    """
    lowered = output.lower()
    last_line = output.strip().splitlines()[-1] if output.strip() else ""

    if returncode == 0:
        m = RTT_RE.search(output)
        return None, (float(m.group(1)) if m else None), "reply"

    if any(marker in lowered for marker in PERMISSION_MARKERS):
        return "transport", None, last_line or f"ping exited with {returncode}"
    if any(marker in lowered for marker in UNREACHABLE_MARKERS):
        return "unreachable", None, last_line
    if returncode in no_reply_codes:
        return "timeout", None, last_line or "no reply"
    return "transport", None, last_line or f"ping exited with {returncode}"


class PingProber(Prober):
    """
    Wraps the system 'ping' binary: one subprocess per probe, one echo request each.
    The raw ICMP socket belongs to ping (setuid or cap_net_raw), not to this process.
    """

    def __init__(self, ping_bin: str = DEFAULT_PING_BIN, max_in_flight: int = 256,
                 platform: str = sys.platform):
        self.ping_bin = ping_bin
        self.platform = platform
        self.no_reply_codes = (2,) if platform == "darwin" else (1,)
        self._slots = asyncio.Semaphore(max_in_flight)

    async def probe(self, target: Target, payload_size: int, timeout_s: float) -> ProbeOutcome:
        issued_at = utcnow()
        try:
            return await asyncio.wait_for(
                self._run(target, payload_size, timeout_s, issued_at), timeout=timeout_s
            )
        except asyncio.TimeoutError:
            logger.debug("probe %s (%s): no reply within %.3fs", target.name, target.address, timeout_s)
            return ProbeOutcome.failure(target.name, issued_at, "timeout",
                                        detail=f"no reply within {timeout_s}s")

    async def _run(self, target: Target, payload_size: int, timeout_s: float, issued_at) -> ProbeOutcome:
        cmd = build_ping_cmd(self.ping_bin, target, payload_size, timeout_s, self.platform)
        loop = asyncio.get_running_loop()

        # waiting for a free slot counts against the probe's own timeout
        async with self._slots:
            try:
                proc = await asyncio.create_subprocess_exec(
                    *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.STDOUT
                )
            except OSError as e:
                # missing binary, EMFILE, EAGAIN...: the prober is broken, not the target
                logger.warning("could not start %s for %s: %s", self.ping_bin, target.name, e)
                return ProbeOutcome.failure(target.name, issued_at, "transport",
                                            detail=f"could not start {self.ping_bin}: {e}")
            started = loop.time()
            try:
                out, _ = await proc.communicate()
            finally:
                if proc.returncode is None:
                    try:
                        proc.kill()
                    except ProcessLookupError:
                        pass
                    await proc.wait()
            elapsed_ms = (loop.time() - started) * 1000.0

        text = out.decode("utf-8", errors="replace") if out else ""
        error, rtt_ms, detail = parse_ping_output(proc.returncode, text, self.no_reply_codes)
        if error is not None:
            logger.debug("probe %s (%s): %s (%s)", target.name, target.address, error, detail)
            return ProbeOutcome.failure(target.name, issued_at, error, detail=detail)
        if rtt_ms is None:
            rtt_ms = elapsed_ms
        logger.debug("probe %s (%s): %.2fms", target.name, target.address, rtt_ms)
        return ProbeOutcome.success(target.name, issued_at, rtt_ms)

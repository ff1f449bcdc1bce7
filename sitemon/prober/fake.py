# sitemon/prober/fake.py
import asyncio
from collections import deque

from sitemon.prober.base import Prober
from sitemon.schemas import ProbeOutcome, Target, utcnow

ERROR_KINDS = ("timeout", "unreachable", "transport")


class FakeProber(Prober):
    """
    script: dict[target_name] -> list of steps returned one per call.
    A step is an rtt in ms (float), an ErrorKind string, or a (step, delay_s)
    tuple to make the call take that long. Targets with nothing left in the
    script fall back to `default`, itself a step (timeout when None).
    """
    def __init__(self, script=None, default=None):
        self.script = {}
        self.default = default
        self.calls = []
        if script:
            for k, v in script.items():
                self.script[k] = deque(v)

    def _next_step(self, name):
        dq = self.script.get(name)
        if dq:
            return dq.popleft()
        return self.default if self.default is not None else "timeout"

    async def probe(self, target: Target, payload_size: int, timeout_s: float) -> ProbeOutcome:
        issued_at = utcnow()
        self.calls.append((target.name, payload_size, timeout_s))
        step = self._next_step(target.name)

        delay = 0.0
        if isinstance(step, tuple):
            step, delay = step
        if delay:
            # a scripted reply slower than the timeout is a timeout, as with a real network
            await asyncio.sleep(min(delay, timeout_s))
            if delay > timeout_s:
                step = "timeout"
        else:
            await asyncio.sleep(0)

        if step in ERROR_KINDS:
            return ProbeOutcome.failure(target.name, issued_at, step, detail="scripted")
        return ProbeOutcome.success(target.name, issued_at, float(step))

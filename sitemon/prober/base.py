# sitemon/prober/base.py
from abc import ABC, abstractmethod

from sitemon.schemas import ProbeOutcome, Target


class Prober(ABC):
    @abstractmethod
    async def probe(self, target: Target, payload_size: int, timeout_s: float) -> ProbeOutcome:
        """Send exactly one echo request to target and return its ProbeOutcome.

        Network faults come back as error outcomes, never as exceptions.
        """
        raise NotImplementedError

import ipaddress
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional, Union

ErrorKind = Literal["timeout", "unreachable", "transport"]
IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Target:
    name: str
    address: IPAddress

    @property
    def version(self) -> int:
        return self.address.version


@dataclass(frozen=True)
class ProbeOutcome:
    target_name: str
    issued_at: datetime
    rtt_ms: Optional[float] = None
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None    # raw reason for errors, for debugging

    @classmethod
    def success(cls, target_name: str, issued_at: datetime, rtt_ms: float) -> "ProbeOutcome":
        return cls(target_name=target_name, issued_at=issued_at, rtt_ms=rtt_ms)

    @classmethod
    def failure(cls, target_name: str, issued_at: datetime, error: ErrorKind,
                detail: Optional[str] = None) -> "ProbeOutcome":
        return cls(target_name=target_name, issued_at=issued_at, error=error, detail=detail)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_systemic(self) -> bool:
        # transport errors point at the prober itself, not at the target
        return self.error == "transport"

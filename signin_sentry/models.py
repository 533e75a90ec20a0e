# models
import datetime
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class Event:
    """One row returned by the sign-in query."""
    timestamp: datetime.datetime          # tz-aware, UTC
    principal: str                        # UserPrincipalName, exactly as returned
    source_ip: str = ""
    conditional_access_status: str = ""
    error_code: Optional[str] = None      # ResultType, "0" on success
    resource_name: str = ""

    @property
    def signature(self) -> str:
        # timestamp + principal + IP only; other fields do not take part
        return f"{self.timestamp.isoformat()}{self.principal}{self.source_ip}"


@dataclass(frozen=True)
class TriageRequest:
    principal: str
    source_ip: str
    timestamp: datetime.datetime
    conditional_access_status: str
    resource_name: str

    @classmethod
    def from_event(cls, event: Event) -> "TriageRequest":
        return cls(
            principal=event.principal,
            source_ip=event.source_ip,
            timestamp=event.timestamp,
            conditional_access_status=event.conditional_access_status,
            resource_name=event.resource_name,
        )


@dataclass
class CycleResult:
    """What a single poll cycle saw and did."""
    new: List[Event] = field(default_factory=list)
    previous: List[Event] = field(default_factory=list)
    alerted: bool = False
    dispatched: int = 0
    error: Optional[str] = None

"""Live session and payout domain events."""
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class SessionStarted:
    session_id: str
    instructor_id: str
    title: str
    meeting_url: Optional[str]
    started_at: datetime
    participant_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SessionCompleted:
    session_id: str
    instructor_id: str
    title: str
    completed_at: datetime
    participant_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SessionCancelled:
    session_id: str
    instructor_id: str
    title: str
    reason: Optional[str]
    cancelled_at: datetime
    participant_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PayoutProcessed:
    payout_id: str
    instructor_id: str
    amount: float
    currency: str
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

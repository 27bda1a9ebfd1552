"""Data models for the maintenance triage engine."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12]}"


# --- Classification ---


class Urgency(str, Enum):
    """Severity tier. Totally ordered: LOW < MEDIUM < HIGH < EMERGENCY."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    EMERGENCY = "EMERGENCY"

    @property
    def rank(self) -> int:
        return list(Urgency).index(self)

    def upgraded(self) -> "Urgency":
        """Next tier up (EMERGENCY stays EMERGENCY)."""
        tiers = list(Urgency)
        return tiers[min(self.rank + 1, len(tiers) - 1)]

    def __lt__(self, other):
        if not isinstance(other, Urgency):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Urgency):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Urgency):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Urgency):
            return NotImplemented
        return self.rank >= other.rank


class Category(str, Enum):
    """Issue category. SECURITY is reserved: priced, but no keyword rule produces it yet."""

    PLUMBING = "plumbing"
    ELECTRICAL = "electrical"
    HVAC = "hvac"
    APPLIANCE = "appliance"
    SECURITY = "security"
    GENERAL = "general"


class TenantVulnerability(str, Enum):
    NONE = "none"
    ELDERLY = "elderly"
    DISABLED = "disabled"
    CHILDREN = "children"


class CostEstimate(BaseModel):
    """Estimated repair cost range in USD."""

    min: float = Field(..., ge=0.0)
    max: float = Field(..., ge=0.0)

    @model_validator(mode="after")
    def _check_range(self) -> "CostEstimate":
        if self.min > self.max:
            raise ValueError(f"cost min {self.min} exceeds max {self.max}")
        return self


class Classification(BaseModel):
    """Result of classifying a tenant's description of a problem."""

    category: Category
    urgency: Urgency
    confidence: float = Field(..., ge=0.0, le=1.0)
    keywords: list[str] = Field(default_factory=list, description="Matched terms, sorted and unique")
    estimated_cost: CostEstimate
    required_skills: list[str] = Field(default_factory=list)
    time_estimate: float = Field(..., gt=0.0, description="Hours")
    description: str = ""
    safety_risk: bool = False
    property_damage: bool = False
    tenant_vulnerability: TenantVulnerability = TenantVulnerability.NONE
    follow_up_required: bool = False
    preventive_maintenance: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _default_skills(self) -> "Classification":
        if not self.required_skills:
            self.required_skills = [self.category.value]
        return self


# --- Conversation ---


class CallState(str, Enum):
    NEW = "New"
    GATHERING = "Gathering"
    CLASSIFIED = "Classified"
    CONTINUING = "Continuing"
    DISPATCHING = "Dispatching"
    ESCALATING = "Escalating"
    TERMINATED = "Terminated"


class NextAction(str, Enum):
    CONTINUE = "continue"
    DISPATCH = "dispatch"
    ESCALATE = "escalate"


class TranscriptTurn(BaseModel):
    speaker: str = Field(..., description="tenant | agent")
    text: str
    at: datetime = Field(default_factory=utcnow)


class CallSession(BaseModel):
    """One phone call, from answer to hangup/dispatch/handoff."""

    id: str = Field(default_factory=lambda: new_id("call"))
    caller_phone: str
    property_id: str
    unit: str
    turns: list[TranscriptTurn] = Field(default_factory=list)
    classification: Optional[Classification] = None
    state: CallState = CallState.NEW
    scenario: Optional[str] = Field(None, description="Scenario key selected on the first report")
    follow_ups_pending: list[str] = Field(default_factory=list)
    follow_ups_asked: list[str] = Field(default_factory=list)
    follow_up_rounds: int = 0
    ticket_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None

    def tenant_transcript(self) -> str:
        return " ".join(t.text for t in self.turns if t.speaker == "tenant")


# --- Tickets ---


class TicketStatus(str, Enum):
    CREATED = "Created"
    DISPATCHED = "Dispatched"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TicketStatus.COMPLETED, TicketStatus.CANCELLED)


_FORWARD = [
    TicketStatus.CREATED,
    TicketStatus.DISPATCHED,
    TicketStatus.IN_PROGRESS,
    TicketStatus.COMPLETED,
]


def can_transition(current: TicketStatus, target: TicketStatus) -> bool:
    """Forward-only lifecycle; Cancelled is reachable from any non-terminal status."""
    if current.is_terminal:
        return False
    if target == TicketStatus.CANCELLED:
        return True
    return _FORWARD.index(target) > _FORWARD.index(current)


class Ticket(BaseModel):
    """Work order created when a call needs physical intervention."""

    id: str = Field(default_factory=lambda: new_id("ticket"))
    call_id: str
    title: str
    description: str
    category: Category
    urgency: Urgency
    status: TicketStatus = TicketStatus.CREATED
    property_id: str
    unit: str
    tenant_phone: str
    assigned_technician_id: Optional[str] = None
    escalated_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def reference(self) -> str:
        """Short reference number read out to tenants."""
        return self.id[-6:].upper()


class Property(BaseModel):
    id: str
    address: str = ""
    vip: bool = False


# --- Technicians ---


class Technician(BaseModel):
    """A field technician in the shared dispatch pool."""

    id: str = Field(..., description="Unique technician identifier")
    name: str
    phone: str
    email: Optional[str] = None
    skills: list[str] = Field(default_factory=list)
    available: bool = True
    rating: float = Field(default=4.0, ge=0.0, le=5.0)
    response_time_minutes: int = Field(default=30, ge=0)
    hourly_rate: float = Field(default=85.0, ge=0.0)
    emergency_rate: float = Field(default=125.0, ge=0.0)
    max_concurrent_jobs: int = Field(default=3, ge=1)
    active_jobs: int = Field(default=0, ge=0)
    zone: str = ""

    @field_validator("skills")
    @classmethod
    def _lowercase_skills(cls, v: list[str]) -> list[str]:
        return [s.strip().lower() for s in v if s.strip()]


# --- Notifications ---


class DeliveryStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


class NotificationRecord(BaseModel):
    """Append-only audit entry for one outbound message."""

    id: str = Field(default_factory=lambda: new_id("notif"))
    ticket_id: str
    recipient: str
    channel: str = "sms"
    message: str
    status: DeliveryStatus
    created_at: datetime = Field(default_factory=utcnow)


# --- Results ---


class DispatchResult(BaseModel):
    success: bool
    ticket_id: Optional[str] = None
    technician: Optional[Technician] = None
    message: str
    eta: Optional[datetime] = None


class TurnResult(BaseModel):
    """What the transport layer does after one caller turn."""

    session_id: str
    response_text: str
    next_action: NextAction
    follow_ups: list[str] = Field(default_factory=list)
    state: CallState
    classification: Optional[Classification] = None
    ticket_id: Optional[str] = None
    dispatch: Optional[DispatchResult] = None
    transfer_to: Optional[str] = Field(None, description="Set when the caller is handed to a human")

"""
Pydantic models for WhatsApp CRM Bridge

Row models mirror the Supabase tables (tickets, messages, profiles,
departments, evolution_instances). Payload models cover Evolution API
webhooks, the realtime channel and the maintenance reports.
"""
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field, field_validator, ConfigDict


# ============================================================================
# Enums
# ============================================================================

class TicketStatus(str, Enum):
    """Valid ticket statuses"""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    PENDING = "pending"
    RESOLVED = "resolved"
    CLOSED = "closed"

    @classmethod
    def normalize(cls, value: Optional[str]) -> Optional["TicketStatus"]:
        """Map canonical and legacy Portuguese values to a TicketStatus"""
        if value is None:
            return None
        value = LEGACY_STATUS_ALIASES.get(value, value)
        try:
            return cls(value)
        except ValueError:
            return None


# Values written by older flows
LEGACY_STATUS_ALIASES: Dict[str, str] = {
    "pendente": "pending",
    "atendimento": "in_progress",
    "finalizado": "closed",
}

OPEN_STATUSES: List[str] = [
    TicketStatus.OPEN.value,
    TicketStatus.IN_PROGRESS.value,
    TicketStatus.PENDING.value,
    "pendente",
    "atendimento",
]


class Priority(str, Enum):
    """Valid ticket priorities"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class SenderType(str, Enum):
    """Who wrote a message"""
    CUSTOMER = "customer"
    AGENT = "agent"
    SYSTEM = "system"


class RoutingAction(str, Enum):
    """Outcome of routing one incoming message"""
    CREATED = "created"
    UPDATED = "updated"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


class InstanceStatus(str, Enum):
    """Connection status stored in evolution_instances"""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    QR_PENDING = "qr_pending"


class DepartmentIssueKind(str, Enum):
    """Department assignment problems found by diagnostics"""
    USER_WITHOUT_DEPARTMENT = "user_without_department"
    USER_INACTIVE_DEPARTMENT = "user_inactive_department"
    TICKET_WITHOUT_DEPARTMENT = "ticket_without_department"
    TICKET_INACTIVE_DEPARTMENT = "ticket_inactive_department"


def _none_to_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


# ============================================================================
# Database Models (matching Supabase tables)
# ============================================================================

class Ticket(BaseModel):
    """
    Ticket row from the `tickets` table

    WhatsApp tickets keep the customer phone in `nunmsg` and in
    `metadata.client_phone` / `metadata.whatsapp_phone`.
    """
    id: str
    title: Optional[str] = None
    description: Optional[str] = None
    status: str = TicketStatus.OPEN.value
    priority: Optional[str] = Priority.MEDIUM.value
    customer_id: Optional[str] = None
    department_id: Optional[str] = None
    channel: Optional[str] = None
    nunmsg: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    unread: Optional[bool] = None
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    @field_validator("metadata", mode="before")
    @classmethod
    def metadata_default(cls, v):
        return _none_to_dict(v)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_whatsapp(self) -> bool:
        return self.channel == "whatsapp" or bool(self.metadata.get("is_whatsapp"))

    @property
    def customer_phone(self) -> Optional[str]:
        """Phone of the customer, from the column or the metadata"""
        for value in (
            self.nunmsg,
            self.metadata.get("whatsapp_phone"),
            self.metadata.get("client_phone"),
            self.metadata.get("phone"),
        ):
            if value and value != "unknown":
                return value
        return None


class TicketCreate(BaseModel):
    """Ticket creation payload"""
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: str = TicketStatus.OPEN.value
    priority: str = Priority.MEDIUM.value
    customer_id: Optional[str] = None
    department_id: Optional[str] = None
    channel: str = "whatsapp"
    nunmsg: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    unread: bool = True
    last_message_at: Optional[datetime] = None


class Message(BaseModel):
    """Message row from the `messages` table"""
    id: str
    ticket_id: str
    content: str = ""
    sender_id: Optional[str] = None
    sender_name: Optional[str] = None
    sender_type: str = SenderType.CUSTOMER.value
    message_type: str = "text"
    is_internal: bool = False
    is_read: Optional[bool] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    @field_validator("metadata", mode="before")
    @classmethod
    def metadata_default(cls, v):
        return _none_to_dict(v)


class MessageCreate(BaseModel):
    """Message creation payload"""
    ticket_id: str
    content: str
    sender_id: Optional[str] = None
    sender_name: Optional[str] = None
    sender_type: SenderType = SenderType.CUSTOMER
    message_type: str = "text"
    is_internal: bool = False
    is_read: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Profile(BaseModel):
    """User or customer row from the `profiles` table"""
    id: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    department_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    @field_validator("metadata", mode="before")
    @classmethod
    def metadata_default(cls, v):
        return _none_to_dict(v)


class Department(BaseModel):
    """Row from the `departments` table"""
    id: str
    name: str
    is_active: bool = True
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, extra="ignore")


class EvolutionInstance(BaseModel):
    """Row from the `evolution_instances` table"""
    id: Optional[str] = None
    instance_name: str
    instance_display_name: Optional[str] = None
    department_id: Optional[str] = None
    status: Optional[str] = None
    webhook_url: Optional[str] = None
    is_default: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    @field_validator("metadata", mode="before")
    @classmethod
    def metadata_default(cls, v):
        return _none_to_dict(v)


# ============================================================================
# Phone / Incoming message
# ============================================================================

class PhoneInfo(BaseModel):
    """Phone extracted from a WhatsApp JID"""
    phone: str = Field(..., description="Canonical digits with country code, or 'unknown'")
    formatted: str = Field(..., description="Display format, e.g. +55 (11) 99999-8888")
    is_valid: bool
    format: str = Field(..., description="brazilian_mobile, brazilian_landline, north_american, international, invalid")
    country: Optional[str] = None
    jid: Optional[str] = None
    contact_name: Optional[str] = None


class IncomingMessage(BaseModel):
    """A WhatsApp message ready for routing"""
    message_id: Optional[str] = Field(None, description="WhatsApp message id (key.id)")
    phone: str
    phone_info: PhoneInfo
    jid: str
    push_name: Optional[str] = None
    content: str
    message_type: str = "text"
    from_me: bool = False
    instance_name: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    raw: Dict[str, Any] = Field(default_factory=dict)

    @property
    def contact_name(self) -> str:
        return self.push_name or f"Cliente {self.phone[-4:]}"


class RoutingResult(BaseModel):
    """Result of routing one message to a ticket"""
    ticket_id: Optional[str] = None
    message_id: Optional[str] = None
    customer_id: Optional[str] = None
    is_new_ticket: bool = False
    action: RoutingAction
    message: str = ""


# ============================================================================
# Evolution API webhook payloads
# ============================================================================

class MessageKey(BaseModel):
    """The `key` object of a WhatsApp message"""
    remote_jid: Optional[str] = Field(None, alias="remoteJid")
    from_me: bool = Field(False, alias="fromMe")
    id: Optional[str] = None
    participant: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class MessageUpsertData(BaseModel):
    """One message entry of a MESSAGES_UPSERT / SEND_MESSAGE event"""
    key: MessageKey
    push_name: Optional[str] = Field(None, alias="pushName")
    message: Optional[Dict[str, Any]] = None
    message_type: Optional[str] = Field(None, alias="messageType")
    # int, numeric string, ISO string, float or a protobuf Long {"low", "high", "unsigned"}
    message_timestamp: Any = Field(None, alias="messageTimestamp")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class WebhookPayload(BaseModel):
    """
    Evolution API webhook body

    `event` arrives as "messages.upsert" (v2) or "MESSAGES_UPSERT" (v1 and
    per-event URLs); `normalized_event` unifies both.
    """
    event: str = ""
    instance: Optional[str] = None
    data: Any = None
    destination: Optional[str] = None
    date_time: Optional[str] = None
    sender: Optional[str] = None
    server_url: Optional[str] = None

    model_config = ConfigDict(extra="allow")

    @field_validator("instance", mode="before")
    @classmethod
    def instance_name_from_object(cls, v):
        """Some Evolution versions send the instance as an object"""
        if isinstance(v, dict):
            return v.get("instanceName") or v.get("name")
        return v

    @property
    def normalized_event(self) -> str:
        return (self.event or "").upper().replace(".", "_").replace("-", "_")


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the Evolution API"""
    received: bool = True
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    event: str = ""
    instance: Optional[str] = None
    processed: bool = False
    message: str = ""
    ticket_id: Optional[str] = None
    results: List[RoutingResult] = Field(default_factory=list)


# ============================================================================
# Outbound messages
# ============================================================================

class SendMessageRequest(BaseModel):
    """Body of POST /webhook/send-message"""
    phone: Optional[str] = None
    text: Optional[str] = None
    instance: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)


class SendMessageResult(BaseModel):
    """Outcome of sending a text through the Evolution API"""
    success: bool
    message_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None
    phone: Optional[str] = None
    instance: Optional[str] = None


class AgentMessage(BaseModel):
    """send-message event from an agent's realtime connection"""
    ticket_id: str = Field(..., alias="ticketId")
    content: str = Field(..., min_length=1)
    is_internal: bool = Field(False, alias="isInternal")
    user_id: Optional[str] = Field(None, alias="userId")
    sender_name: Optional[str] = Field(None, alias="senderName")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("content cannot be blank")
        return v


# ============================================================================
# Maintenance reports
# ============================================================================

class DuplicateGroup(BaseModel):
    """WhatsApp tickets sharing one customer phone"""
    phone: str
    formatted_phone: str
    count: int
    open_count: int
    # Not closed; what DuplicateTicketService.fix() acts on
    active_count: int = 0
    keep_ticket_id: str
    tickets: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def fixable(self) -> bool:
        return self.active_count > 1


class DuplicateAnalysis(BaseModel):
    """Duplicate ticket analysis over a time window"""
    days_back: int
    whatsapp_tickets: int
    total_duplicates: int
    fixable: int
    duplicate_groups: List[DuplicateGroup] = Field(default_factory=list)
    summary: str = ""


class DuplicateFixSummary(BaseModel):
    """Result of fixing duplicate groups"""
    dry_run: bool
    groups_processed: int = 0
    groups_fixed: int = 0
    tickets_closed: int = 0
    messages_moved: int = 0
    errors: List[str] = Field(default_factory=list)


class WebhookBurstReport(BaseModel):
    """Ticket creation per time bucket, to spot webhook redelivery storms"""
    hours: int
    bucket_minutes: int
    threshold: int
    total_tickets: int
    buckets: Dict[str, int] = Field(default_factory=dict)
    suspicious_buckets: Dict[str, int] = Field(default_factory=dict)

    @property
    def is_suspicious(self) -> bool:
        return bool(self.suspicious_buckets)


class DepartmentIssue(BaseModel):
    """A user or ticket with a missing or inactive department"""
    kind: DepartmentIssueKind
    entity_id: str
    name: Optional[str] = None
    department_id: Optional[str] = None
    detail: str = ""


class InstanceReconciliation(BaseModel):
    """Comparison of evolution_instances rows and the Evolution API"""
    matched: List[str] = Field(default_factory=list)
    missing_remote: List[str] = Field(default_factory=list)
    missing_local: List[str] = Field(default_factory=list)
    remote_states: Dict[str, str] = Field(default_factory=dict)


class WebhookConfigResult(BaseModel):
    """Webhook configuration outcome for one instance"""
    instance: str
    success: bool
    url: Optional[str] = None
    events: List[str] = Field(default_factory=list)
    verified: bool = False
    error: Optional[str] = None

"""
Proposal Suite: API request/response schemas (Pydantic).

Request bodies for every router live here so the OpenAPI document has one
stable contract between the backend, the dashboard and the embeddable
viewer script.

The viewer script posts camelCase keys; tracking models therefore accept
both ``sessionId`` and ``session_id``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from backend.domain.enums import (
    BlockType,
    FieldScope,
    FieldType,
    HeatmapType,
    InteractionType,
    PaymentType,
    PricingItemType,
    TeamRole,
)


TRACKED_TEXT_METADATA = ("section", "deviceType", "country")


class _ViewerModel(BaseModel):
    """Base for payloads sent by the public proposal viewer."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=8, max_length=256)
    name: Optional[str] = None
    company_name: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------

class PricingItemIn(BaseModel):
    name: str
    description: Optional[str] = None
    price: float = 0.0
    type: PricingItemType = PricingItemType.REQUIRED
    min_quantity: int = Field(default=1, ge=1)
    max_quantity: int = Field(default=100, ge=1)


class BlockIn(BaseModel):
    type: BlockType
    order: Optional[int] = None
    content: Dict[str, Any] = Field(default_factory=dict)
    pricing_items: List[PricingItemIn] = Field(default_factory=list)


class ProposalCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    team_id: Optional[str] = None
    currency: Optional[str] = None
    tax_rate: float = Field(default=0.0, ge=0)
    deposit_required: bool = False
    deposit_amount: Optional[float] = Field(default=None, ge=0)
    deposit_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    blocks: List[BlockIn] = Field(default_factory=list)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "title": "Website redesign",
            "client_name": "Acme Ltd",
            "client_email": "buyer@acme.test",
            "tax_rate": 20,
            "deposit_required": True,
            "deposit_percentage": 30,
            "blocks": [
                {"type": "PRICING_TABLE", "pricing_items": [
                    {"name": "Design", "price": 4000},
                    {"name": "Hosting", "price": 300, "type": "OPTIONAL"},
                ]},
            ],
        }
    })


class ProposalUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    currency: Optional[str] = None
    tax_rate: Optional[float] = Field(default=None, ge=0)
    deposit_required: Optional[bool] = None
    deposit_amount: Optional[float] = Field(default=None, ge=0)
    deposit_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    blocks: Optional[List[BlockIn]] = None


class SignatureRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    signer_name: Optional[str] = None
    signer_email: Optional[str] = None
    signature_data: Optional[Any] = None


class DeclineRequest(BaseModel):
    reason: Optional[str] = None


class PricingSelection(_ViewerModel):
    """One line item as configured by the client; quantities are clamped later."""
    item_id: str
    selected: Optional[bool] = None
    quantity: Optional[int] = Field(default=None, ge=1)


class PricingSelectionsRequest(_ViewerModel):
    selections: List[PricingSelection] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Heatmaps / tracking
# ---------------------------------------------------------------------------

class RecordInteractionRequest(_ViewerModel):
    proposal_id: str
    session_id: str
    type: InteractionType
    element_id: Optional[str] = None
    element_type: Optional[str] = None
    element_text: Optional[str] = None
    x: float = 0.0
    y: float = 0.0
    scroll_depth: Optional[float] = None
    viewport_width: Optional[int] = None
    viewport_height: Optional[int] = None
    timestamp: Optional[float] = None          # Unix ms
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("metadata")
    @classmethod
    def validate_metadata(cls, v):
        """Keys the analytics group or average by must be scalars of the right kind."""
        if not v:
            return v
        for key in TRACKED_TEXT_METADATA:
            if key in v and v[key] is not None and not isinstance(v[key], str):
                raise ValueError(f"metadata.{key} must be a string")
        dwell = v.get("dwellTime")
        if dwell is not None and (isinstance(dwell, bool) or not isinstance(dwell, (int, float))):
            raise ValueError("metadata.dwellTime must be a number")
        return v


class RecordInteractionsBatchRequest(_ViewerModel):
    interactions: List[RecordInteractionRequest]


class RecordScrollRequest(_ViewerModel):
    proposal_id: str
    session_id: str
    scroll_depth: float
    scroll_position: float
    document_height: float
    viewport_height: float
    time_spent: Optional[int] = None           # ms
    timestamp: Optional[float] = None


class RecordEngagementRequest(_ViewerModel):
    proposal_id: str
    session_id: str
    time_spent: int
    max_scroll_depth: float
    clicks: int = 0
    hovers: int = 0
    video_watched: bool = False
    pricing_viewed: bool = False
    sections_viewed: List[str] = Field(default_factory=list)


class GenerateHeatmapRequest(BaseModel):
    proposal_id: str
    type: HeatmapType
    width: Optional[int] = None
    height: Optional[int] = None
    intensity: Optional[float] = Field(default=None, gt=0)


class PredictiveScoreRequest(BaseModel):
    proposal_id: str
    session_id: Optional[str] = None


class SectionRangeIn(BaseModel):
    name: str
    start_y: float
    end_y: float


class SectionViewRatesRequest(BaseModel):
    sections: List[SectionRangeIn]


# ---------------------------------------------------------------------------
# View analytics
# ---------------------------------------------------------------------------

class StartSessionRequest(_ViewerModel):
    proposal_id: str
    session_id: str
    visitor_id: Optional[str] = None
    viewer_email: Optional[str] = None
    viewer_name: Optional[str] = None
    viewer_company: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None


class UpdateSessionRequest(_ViewerModel):
    session_id: str
    total_duration: Optional[int] = None
    scroll_depth: Optional[float] = None
    pages_viewed: Optional[int] = None
    interactions: Optional[int] = None


class EndSessionRequest(_ViewerModel):
    session_id: str


class TrackSectionViewRequest(_ViewerModel):
    session_id: str
    section_type: str
    section_index: int
    block_id: Optional[str] = None
    view_duration: Optional[int] = None
    scroll_depth: Optional[float] = None
    interactions: Optional[int] = None


# ---------------------------------------------------------------------------
# Custom fields
# ---------------------------------------------------------------------------

class FieldOption(BaseModel):
    value: Any
    label: Optional[str] = None


class FieldCondition(BaseModel):
    field_id: str
    operator: str
    value: Optional[Any] = None
    action: str


class FieldDefinitionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128, pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    label: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    type: FieldType
    scope: FieldScope
    group_id: Optional[str] = None
    required: bool = False
    unique: bool = False
    order: Optional[int] = None
    default_value: Optional[Any] = None
    placeholder: Optional[str] = None
    help_text: Optional[str] = None
    options: Optional[List[FieldOption]] = None
    validation: Optional[Dict[str, Any]] = None
    conditions: Optional[List[FieldCondition]] = None
    settings: Dict[str, Any] = Field(default_factory=dict)
    formula: Optional[str] = None
    depends_on: Optional[List[str]] = None


class FieldDefinitionUpdate(BaseModel):
    label: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    group_id: Optional[str] = None
    required: Optional[bool] = None
    unique: Optional[bool] = None
    order: Optional[int] = None
    default_value: Optional[Any] = None
    placeholder: Optional[str] = None
    help_text: Optional[str] = None
    options: Optional[List[FieldOption]] = None
    validation: Optional[Dict[str, Any]] = None
    conditions: Optional[List[FieldCondition]] = None
    settings: Optional[Dict[str, Any]] = None
    formula: Optional[str] = None
    depends_on: Optional[List[str]] = None
    is_active: Optional[bool] = None


class ReorderFieldsRequest(BaseModel):
    field_ids: List[str]


class FieldGroupCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    scope: FieldScope
    order: Optional[int] = None
    collapsible: bool = True
    collapsed: bool = False


class FieldGroupUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    order: Optional[int] = None
    collapsible: Optional[bool] = None
    collapsed: Optional[bool] = None


class SetFieldValueRequest(BaseModel):
    field_id: str
    entity_id: str
    scope: FieldScope
    value: Optional[Any] = None


class SetFieldValuesRequest(BaseModel):
    entity_id: str
    scope: FieldScope
    values: Dict[str, Any]


class DynamicFormCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    scope: FieldScope
    field_ids: List[str] = Field(default_factory=list)
    layout: Optional[Any] = None
    settings: Dict[str, Any] = Field(default_factory=dict)


class EvaluateConditionsRequest(BaseModel):
    field_id: str
    values: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------

class CreatePaymentIntentRequest(BaseModel):
    proposal_id: str
    type: PaymentType = PaymentType.DEPOSIT
    amount: Optional[float] = None
    payer_email: str
    payer_name: Optional[str] = None


class RefundRequest(BaseModel):
    reason: Optional[str] = None


class ConnectAccountRequest(BaseModel):
    country: str = "US"


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------

class TeamCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    settings: Dict[str, Any] = Field(default_factory=dict)


class TeamUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    settings: Optional[Dict[str, Any]] = None


class InviteMemberRequest(BaseModel):
    email: str
    role: TeamRole = TeamRole.MEMBER


class UpdateRoleRequest(BaseModel):
    role: TeamRole


class UpdatePermissionsRequest(BaseModel):
    permissions: Dict[str, bool]


class TransferOwnershipRequest(BaseModel):
    new_owner_id: str


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str
    version: str
    database: bool
    cache_backend: str
    websocket_clients: int = 0
    uptime_seconds: float = 0.0
    events_recorded: int = 0
    webhooks_processed: int = 0
    cache_hit_rate: float = 0.0
    errors_last_hour: int = 0

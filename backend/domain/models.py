"""
backend.domain.models: Canonical dataclass models.

These are the single source of truth for data structures flowing between
the analytics functions, the services and the API layer.  ORM rows live in
``backend.database``; the types here are plain values that never touch a
session.

Import pattern::

    from backend.domain.models import AuthUser, EngagementSnapshot, PredictiveScore
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from backend.domain.enums import TimeOfDay


# ---------------------------------------------------------------------------
# Authenticated caller (resolved once per API request)
# ---------------------------------------------------------------------------

@dataclass
class AuthUser:
    """
    Identity decoded from the session token.  Passed down to services as a
    plain ``user_id`` so no layer below the routers touches the request.
    """
    user_id: str
    email: str = ""
    name: Optional[str] = None

    @classmethod
    def from_token_payload(cls, payload: dict) -> "AuthUser":
        return cls(
            user_id=str(payload["sub"]),
            email=payload.get("email", ""),
            name=payload.get("name"),
        )


# ---------------------------------------------------------------------------
# Heatmap primitives
# ---------------------------------------------------------------------------

@dataclass
class HeatmapPoint:
    x: int
    y: int
    value: float
    count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        d = dataclasses.asdict(self)
        if d["count"] is None:
            d.pop("count")
        return d


@dataclass
class DepthBucket:
    """Sessions whose max scroll depth fell in ``[depth - 10, depth)``."""
    depth: int
    count: int = 0
    percentage: float = 0.0


@dataclass
class DropOffPoint:
    depth: int
    drop_off_rate: float


@dataclass
class SectionRange:
    """Vertical pixel span of a named proposal section."""
    name: str
    start_y: float
    end_y: float


# ---------------------------------------------------------------------------
# Predictive scoring
# ---------------------------------------------------------------------------

@dataclass
class EngagementSnapshot:
    """
    Aggregated engagement signals for one proposal (optionally one session).
    Built by ``backend.services.heatmaps`` from raw rows and fed to
    ``backend.analytics.predictive.score_engagement``.
    """
    time_spent: float = 0.0            # seconds
    max_scroll_depth: float = 0.0      # percent
    interactions: int = 0
    pricing_viewed: bool = False
    is_returning: bool = False
    device_type: str = "desktop"
    time_of_day: str = TimeOfDay.BUSINESS.value
    click_count: int = 0
    hover_count: int = 0


@dataclass
class FactorScore:
    value: Any
    weight: float
    score: float


@dataclass
class PredictiveScore:
    proposal_id: str
    session_id: Optional[str]
    conversion_probability: float
    engagement_score: int
    quality_score: int
    factors: Dict[str, FactorScore] = field(default_factory=dict)
    recommendation: str = ""
    next_best_action: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


# ---------------------------------------------------------------------------
# Custom field condition outcome
# ---------------------------------------------------------------------------

@dataclass
class FieldState:
    visible: bool = True
    required: bool = False
    disabled: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return dataclasses.asdict(self)


@dataclass
class PaymentIntentResult:
    client_secret: Optional[str]
    payment_intent_id: str
    amount: float
    currency: str

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class PricedLine:
    id: str
    name: str
    price: float
    quantity: int
    selected: bool
    line_total: float


@dataclass
class PricingBreakdown:
    """Proposal priced with the client's current selections."""
    subtotal: float
    tax_amount: float
    total: float
    deposit_amount: float
    currency: str
    line_items: List[PricedLine] = field(default_factory=list)
    payment_intent_client_secret: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class TeamStats:
    member_count: int = 0
    total_proposals_sent: int = 0
    total_proposals_won: int = 0
    total_revenue: float = 0.0
    avg_win_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


__all__: List[str] = [
    "AuthUser",
    "HeatmapPoint",
    "DepthBucket",
    "DropOffPoint",
    "SectionRange",
    "EngagementSnapshot",
    "FactorScore",
    "PredictiveScore",
    "FieldState",
    "PaymentIntentResult",
    "PricedLine",
    "PricingBreakdown",
    "TeamStats",
]

"""
backend.domain.enums: All enumerations used across the platform.

Keep this module import-clean (stdlib only).
"""

from enum import Enum


# ---------------------------------------------------------------------------
# Proposal lifecycle
# ---------------------------------------------------------------------------

class ProposalStatus(str, Enum):
    DRAFT    = "DRAFT"
    SENT     = "SENT"
    VIEWED   = "VIEWED"
    APPROVED = "APPROVED"
    SIGNED   = "SIGNED"
    DECLINED = "DECLINED"

    @property
    def is_converted(self) -> bool:
        """Approved and signed proposals both count as won deals."""
        return self in (ProposalStatus.APPROVED, ProposalStatus.SIGNED)

    @property
    def can_send(self) -> bool:
        return self in (ProposalStatus.DRAFT, ProposalStatus.SENT, ProposalStatus.VIEWED)


class BlockType(str, Enum):
    TEXT          = "TEXT"
    PRICING_TABLE = "PRICING_TABLE"
    IMAGE         = "IMAGE"
    VIDEO         = "VIDEO"
    SIGNATURE     = "SIGNATURE"


class PricingItemType(str, Enum):
    REQUIRED = "REQUIRED"
    OPTIONAL = "OPTIONAL"
    QUANTITY = "QUANTITY"      # unit price, client picks min_quantity..max_quantity


# ---------------------------------------------------------------------------
# Interaction tracking
# ---------------------------------------------------------------------------

class InteractionType(str, Enum):
    CLICK       = "click"
    HOVER       = "hover"
    SCROLL      = "scroll"
    FOCUS       = "focus"
    INPUT       = "input"
    COPY        = "copy"
    VIDEO_PLAY  = "video_play"
    VIDEO_PAUSE = "video_pause"


class HeatmapType(str, Enum):
    CLICK     = "click"
    SCROLL    = "scroll"
    ATTENTION = "attention"
    MOVEMENT  = "movement"


class TimeOfDay(str, Enum):
    """UTC hour buckets used by predictive scoring."""
    BUSINESS      = "business"        # 09:00-16:59
    EVENING       = "evening"         # 17:00-21:59
    NIGHT         = "night"           # 22:00-05:59
    EARLY_MORNING = "early_morning"   # 06:00-08:59

    @classmethod
    def from_hour(cls, hour: int) -> "TimeOfDay":
        if 9 <= hour < 17:
            return cls.BUSINESS
        if 17 <= hour < 22:
            return cls.EVENING
        if hour >= 22 or hour < 6:
            return cls.NIGHT
        return cls.EARLY_MORNING


# ---------------------------------------------------------------------------
# Custom fields
# ---------------------------------------------------------------------------

class FieldType(str, Enum):
    TEXT         = "text"
    TEXTAREA     = "textarea"
    NUMBER       = "number"
    CURRENCY     = "currency"
    DATE         = "date"
    DATETIME     = "datetime"
    SELECT       = "select"
    MULTI_SELECT = "multi_select"
    CHECKBOX     = "checkbox"
    RADIO        = "radio"
    EMAIL        = "email"
    PHONE        = "phone"
    URL          = "url"
    FILE         = "file"
    IMAGE        = "image"
    SIGNATURE    = "signature"
    RICH_TEXT    = "rich_text"
    CALCULATED   = "calculated"
    LOOKUP       = "lookup"
    RATING       = "rating"
    SLIDER       = "slider"
    COLOR        = "color"
    ADDRESS      = "address"


class FieldScope(str, Enum):
    PROPOSAL  = "proposal"
    CLIENT    = "client"
    LINE_ITEM = "line_item"
    TEMPLATE  = "template"
    TEAM      = "team"


class ConditionOperator(str, Enum):
    EQUALS       = "equals"
    NOT_EQUALS   = "not_equals"
    CONTAINS     = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN    = "less_than"
    IS_EMPTY     = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    IN           = "in"
    NOT_IN       = "not_in"


class ConditionAction(str, Enum):
    SHOW    = "show"
    HIDE    = "hide"
    REQUIRE = "require"
    DISABLE = "disable"


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------

class PaymentType(str, Enum):
    DEPOSIT   = "deposit"
    MILESTONE = "milestone"
    FINAL     = "final"


class PaymentStatus(str, Enum):
    PENDING   = "pending"
    SUCCEEDED = "succeeded"
    FAILED    = "failed"
    REFUNDED  = "refunded"


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------

class TeamRole(str, Enum):
    OWNER  = "OWNER"
    ADMIN  = "ADMIN"
    MEMBER = "MEMBER"
    VIEWER = "VIEWER"

    @property
    def default_permissions(self) -> dict:
        """Permission flags granted to a member when the role is assigned."""
        _ALL_FALSE = {p.value: False for p in Permission}
        _GRANTS = {
            "OWNER": [p.value for p in Permission],
            "ADMIN": [p.value for p in Permission if p is not Permission.MANAGE_BILLING],
            "MEMBER": [
                Permission.CREATE_PROPOSALS.value,
                Permission.EDIT_PROPOSALS.value,
                Permission.SEND_PROPOSALS.value,
                Permission.VIEW_ANALYTICS.value,
            ],
            "VIEWER": [Permission.VIEW_ANALYTICS.value],
        }
        perms = dict(_ALL_FALSE)
        for name in _GRANTS[self.value]:
            perms[name] = True
        return perms


class Permission(str, Enum):
    CREATE_PROPOSALS = "can_create_proposals"
    EDIT_PROPOSALS   = "can_edit_proposals"
    DELETE_PROPOSALS = "can_delete_proposals"
    SEND_PROPOSALS   = "can_send_proposals"
    VIEW_ANALYTICS   = "can_view_analytics"
    MANAGE_TEMPLATES = "can_manage_templates"
    MANAGE_TEAM      = "can_manage_team"
    MANAGE_BILLING   = "can_manage_billing"


# ---------------------------------------------------------------------------
# Notifications / realtime events
# ---------------------------------------------------------------------------

class NotificationType(str, Enum):
    PROPOSAL_VIEWED   = "proposal_viewed"
    PROPOSAL_SIGNED   = "proposal_signed"
    PROPOSAL_DECLINED = "proposal_declined"
    PAYMENT_RECEIVED  = "payment_received"


class RealtimeEvent(str, Enum):
    """Event names pushed to the owner's dashboard over ``/ws/events``."""
    PROPOSAL_VIEWED   = "proposal:viewed"
    PROPOSAL_SIGNED   = "proposal:signed"
    PROPOSAL_DECLINED = "proposal:declined"
    PAYMENT_RECEIVED  = "payment:received"
    PRICING_UPDATED   = "pricing:updated"

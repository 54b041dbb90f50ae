"""
Relational Database Layer for the Proposal Suite backend.
Stores users, teams, proposals, interaction analytics, custom fields,
payments and notifications.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import (
    create_engine, Column, Integer, Float, String, Boolean,
    DateTime, Text, Index, ForeignKey, JSON, UniqueConstraint, event, inspect, text,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from backend import config
from backend.core.utils import utcnow

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


def make_engine(url: str, echo: bool = False):
    """Build an engine; SQLite gets WAL pragmas and a shared in-memory pool."""
    if not url.startswith("sqlite"):
        return create_engine(url, echo=echo, pool_pre_ping=True)

    in_memory = url in ("sqlite://", "sqlite:///:memory:")
    engine = create_engine(
        url,
        echo=echo,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if in_memory else None,
    )

    # Enable WAL mode for concurrent reads during writes
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    return engine


engine = make_engine(config.DATABASE_URL, echo=config.SQL_ECHO)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
Base = declarative_base()


# ---------------------------------------------------------------------------
# Accounts & teams
# ---------------------------------------------------------------------------

class User(Base):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=_new_id)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    company_name = Column(String(255), nullable=True)
    company_logo = Column(String(512), nullable=True)
    password_hash = Column(String(255), nullable=False)
    stripe_connect_id = Column(String(64), nullable=True)
    stripe_connect_enabled = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Team(Base):
    __tablename__ = "teams"

    id = Column(String(32), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    slug = Column(String(32), nullable=False, unique=True)
    owner_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    settings = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    members = relationship(
        "TeamMember", back_populates="team",
        cascade="all, delete-orphan", order_by="TeamMember.joined_at",
    )


class TeamMember(Base):
    """Membership row; permissions are copied from the role and editable."""
    __tablename__ = "team_members"

    id = Column(String(32), primary_key=True, default=_new_id)
    team_id = Column(String(32), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String(16), nullable=False)
    permissions = Column(JSON, default=dict)
    proposals_sent = Column(Integer, default=0, nullable=False)
    proposals_won = Column(Integer, default=0, nullable=False)
    total_revenue = Column(Float, default=0.0, nullable=False)
    joined_at = Column(DateTime, default=utcnow, nullable=False)

    team = relationship("Team", back_populates="members")

    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="uq_team_member"),
    )


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------

class Proposal(Base):
    __tablename__ = "proposals"

    id = Column(String(32), primary_key=True, default=_new_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    team_id = Column(String(32), ForeignKey("teams.id", ondelete="SET NULL"), nullable=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    client_name = Column(String(255), nullable=True)
    client_email = Column(String(255), nullable=True)
    slug = Column(String(32), nullable=False, unique=True, index=True)
    status = Column(String(16), nullable=False, default="DRAFT", index=True)
    currency = Column(String(8), nullable=False, default=config.DEFAULT_CURRENCY)

    tax_rate = Column(Float, default=0.0, nullable=False)          # percent
    deposit_required = Column(Boolean, default=False, nullable=False)
    deposit_amount = Column(Float, nullable=True)
    deposit_percentage = Column(Float, nullable=True)
    deposit_paid = Column(Boolean, default=False, nullable=False)
    deposit_paid_at = Column(DateTime, nullable=True)
    stripe_payment_intent_id = Column(String(64), nullable=True)

    locked = Column(Boolean, default=False, nullable=False)
    sent_at = Column(DateTime, nullable=True)
    signed_at = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    declined_at = Column(DateTime, nullable=True)
    decline_reason = Column(Text, nullable=True)
    signature_data = Column(JSON, nullable=True)
    signer_name = Column(String(255), nullable=True)
    signer_email = Column(String(255), nullable=True)

    view_count = Column(Integer, default=0, nullable=False)
    first_viewed_at = Column(DateTime, nullable=True)
    last_viewed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    blocks = relationship(
        "ProposalBlock", back_populates="proposal",
        cascade="all, delete-orphan", order_by="ProposalBlock.order",
    )


class ProposalBlock(Base):
    __tablename__ = "proposal_blocks"

    id = Column(String(32), primary_key=True, default=_new_id)
    proposal_id = Column(String(32), ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(32), nullable=False)
    order = Column(Integer, default=0, nullable=False)
    content = Column(JSON, default=dict)

    proposal = relationship("Proposal", back_populates="blocks")
    pricing_items = relationship(
        "PricingItem", back_populates="block", cascade="all, delete-orphan", order_by="PricingItem.order",
    )


class PricingItem(Base):
    __tablename__ = "pricing_items"

    id = Column(String(32), primary_key=True, default=_new_id)
    block_id = Column(String(32), ForeignKey("proposal_blocks.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=False, default=0.0)   # unit price for QUANTITY items
    type = Column(String(16), nullable=False, default="REQUIRED")
    order = Column(Integer, default=0, nullable=False)
    min_quantity = Column(Integer, default=1, nullable=False)
    max_quantity = Column(Integer, default=100, nullable=False)

    block = relationship("ProposalBlock", back_populates="pricing_items")


# ---------------------------------------------------------------------------
# Interaction analytics
# ---------------------------------------------------------------------------

class ProposalInteraction(Base):
    """Single click / hover / focus sample captured in the public viewer."""
    __tablename__ = "proposal_interactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    proposal_id = Column(String(32), nullable=False, index=True)
    session_id = Column(String(64), nullable=False, index=True)
    type = Column(String(16), nullable=False)
    element_id = Column(String(255), nullable=True)
    element_type = Column(String(64), nullable=True)
    element_text = Column(String(512), nullable=True)
    x = Column(Float, nullable=False, default=0.0)
    y = Column(Float, nullable=False, default=0.0)
    scroll_depth = Column(Float, nullable=True)
    viewport_width = Column(Integer, nullable=True)
    viewport_height = Column(Integer, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=utcnow)
    meta = Column("metadata", JSON, default=dict)

    __table_args__ = (
        Index("ix_interaction_proposal_type", "proposal_id", "type"),
        Index("ix_interaction_proposal_ts", "proposal_id", "timestamp"),
    )


class ProposalScrollTracking(Base):
    __tablename__ = "proposal_scroll_tracking"

    id = Column(Integer, primary_key=True, autoincrement=True)
    proposal_id = Column(String(32), nullable=False, index=True)
    session_id = Column(String(64), nullable=False, index=True)
    scroll_depth = Column(Float, nullable=False)        # percent 0-100
    scroll_position = Column(Float, nullable=False)     # px from top
    document_height = Column(Float, nullable=False)
    viewport_height = Column(Float, nullable=False)
    time_spent = Column(Integer, nullable=True)         # ms at this position
    timestamp = Column(DateTime, nullable=False, default=utcnow)


class ProposalEngagement(Base):
    """Session summary posted by the viewer when the tab closes."""
    __tablename__ = "proposal_engagements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    proposal_id = Column(String(32), nullable=False, index=True)
    session_id = Column(String(64), nullable=False, index=True)
    time_spent = Column(Integer, nullable=False)        # ms
    max_scroll_depth = Column(Float, nullable=False)
    clicks = Column(Integer, default=0, nullable=False)
    hovers = Column(Integer, default=0, nullable=False)
    video_watched = Column(Boolean, default=False, nullable=False)
    pricing_viewed = Column(Boolean, default=False, nullable=False)
    sections_viewed = Column(JSON, default=list)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class ProposalViewSession(Base):
    __tablename__ = "proposal_view_sessions"

    id = Column(String(32), primary_key=True, default=_new_id)
    proposal_id = Column(String(32), nullable=False, index=True)
    session_id = Column(String(64), nullable=False, unique=True)
    visitor_id = Column(String(64), nullable=True)
    viewer_email = Column(String(255), nullable=True)
    viewer_name = Column(String(255), nullable=True)
    viewer_company = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    device = Column(String(32), nullable=True)
    browser = Column(String(64), nullable=True)
    os = Column(String(64), nullable=True)
    country = Column(String(64), nullable=True)
    city = Column(String(128), nullable=True)
    total_duration = Column(Integer, default=0, nullable=False)   # seconds
    scroll_depth = Column(Float, default=0.0, nullable=False)
    pages_viewed = Column(Integer, default=0, nullable=False)
    interactions = Column(Integer, default=0, nullable=False)
    started_at = Column(DateTime, default=utcnow, nullable=False)
    last_activity_at = Column(DateTime, default=utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)

    section_views = relationship(
        "ProposalSectionView", back_populates="session", cascade="all, delete-orphan",
    )


class ProposalSectionView(Base):
    __tablename__ = "proposal_section_views"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(64),
        ForeignKey("proposal_view_sessions.session_id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    section_type = Column(String(64), nullable=False)
    section_index = Column(Integer, nullable=False)
    block_id = Column(String(32), nullable=True)
    view_duration = Column(Integer, default=0, nullable=False)
    scroll_depth = Column(Float, default=0.0, nullable=False)
    interactions = Column(Integer, default=0, nullable=False)
    revisits = Column(Integer, default=0, nullable=False)
    first_viewed_at = Column(DateTime, default=utcnow, nullable=False)
    last_viewed_at = Column(DateTime, default=utcnow, nullable=False)

    session = relationship("ProposalViewSession", back_populates="section_views")


# ---------------------------------------------------------------------------
# Custom fields
# ---------------------------------------------------------------------------

class CustomFieldGroup(Base):
    __tablename__ = "custom_field_groups"

    id = Column(String(32), primary_key=True, default=_new_id)
    team_id = Column(String(32), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    scope = Column(String(16), nullable=False)
    order = Column(Integer, default=0, nullable=False)
    collapsible = Column(Boolean, default=True, nullable=False)
    collapsed = Column(Boolean, default=False, nullable=False)

    fields = relationship("CustomFieldDefinition", back_populates="group", order_by="CustomFieldDefinition.order")


class CustomFieldDefinition(Base):
    __tablename__ = "custom_field_definitions"

    id = Column(String(32), primary_key=True, default=_new_id)
    team_id = Column(String(32), nullable=False, index=True)
    group_id = Column(String(32), ForeignKey("custom_field_groups.id", ondelete="SET NULL"), nullable=True)
    name = Column(String(128), nullable=False)
    label = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(16), nullable=False)
    scope = Column(String(16), nullable=False)
    required = Column(Boolean, default=False, nullable=False)
    unique = Column(Boolean, default=False, nullable=False)
    order = Column(Integer, default=0, nullable=False)
    default_value = Column(JSON, nullable=True)
    placeholder = Column(String(255), nullable=True)
    help_text = Column(Text, nullable=True)
    options = Column(JSON, nullable=True)        # [{"value": ..., "label": ...}]
    validation = Column(JSON, nullable=True)     # {"min_length": .., "pattern": ..}
    conditions = Column(JSON, nullable=True)     # [{"field_id", "operator", "value", "action"}]
    settings = Column(JSON, default=dict)
    formula = Column(Text, nullable=True)
    depends_on = Column(JSON, nullable=True)     # field names referenced by formula
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    group = relationship("CustomFieldGroup", back_populates="fields")

    __table_args__ = (
        UniqueConstraint("team_id", "scope", "name", name="uq_field_team_scope_name"),
    )


class CustomFieldValue(Base):
    __tablename__ = "custom_field_values"

    id = Column(String(32), primary_key=True, default=_new_id)
    field_id = Column(String(32), ForeignKey("custom_field_definitions.id", ondelete="CASCADE"), nullable=False)
    entity_id = Column(String(64), nullable=False, index=True)
    scope = Column(String(16), nullable=False)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    field = relationship("CustomFieldDefinition")

    __table_args__ = (
        UniqueConstraint("field_id", "entity_id", name="uq_field_value_entity"),
    )


class DynamicForm(Base):
    __tablename__ = "dynamic_forms"

    id = Column(String(32), primary_key=True, default=_new_id)
    team_id = Column(String(32), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    scope = Column(String(16), nullable=False)
    field_ids = Column(JSON, default=list)
    layout = Column(JSON, nullable=True)
    settings = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False)


# ---------------------------------------------------------------------------
# Payments & notifications
# ---------------------------------------------------------------------------

class ProposalPayment(Base):
    __tablename__ = "proposal_payments"

    id = Column(String(32), primary_key=True, default=_new_id)
    proposal_id = Column(String(32), ForeignKey("proposals.id", ondelete="RESTRICT"), nullable=False, index=True)
    type = Column(String(16), nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String(8), nullable=False)
    stripe_payment_intent_id = Column(String(64), nullable=True, unique=True)
    status = Column(String(16), nullable=False, default="pending")
    payer_email = Column(String(255), nullable=True)
    payer_name = Column(String(255), nullable=True)
    paid_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)
    meta = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(32), primary_key=True, default=_new_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(32), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=True)
    proposal_id = Column(String(32), nullable=True)
    meta = Column("metadata", JSON, default=dict)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


# ---------------------------------------------------------------------------
# Database initialization
# ---------------------------------------------------------------------------

def init_db(bind=None):
    """Create all tables if they don't exist."""
    Base.metadata.create_all(bind=bind or engine)


def get_db() -> Session:
    """Get a database session. Caller must close it."""
    return SessionLocal()


def ping_db() -> bool:
    """True when a trivial round-trip to the database succeeds."""
    db = get_db()
    try:
        db.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as exc:
        logger.warning("Database ping failed: %s", exc)
        return False
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def row_to_dict(row: Any, exclude: Iterable[str] = ()) -> Dict[str, Any]:
    """Column attributes of an ORM row as a JSON-friendly dict.

    ``meta`` attributes are exposed under their column name ``metadata``.
    """
    skip = set(exclude)
    out: Dict[str, Any] = {}
    for attr in inspect(row).mapper.column_attrs:
        key = attr.key
        if key in skip:
            continue
        value = getattr(row, key)
        if isinstance(value, datetime):
            value = value.isoformat()
        out["metadata" if key == "meta" else key] = value
    return out


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email.strip().lower()).first()

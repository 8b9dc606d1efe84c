"""SQLAlchemy models for Review Automations.

Tables:
- automations: tenant-scoped trigger/action rules and their counters
- reviews: the slice of the review store the engine reads and mutates
- tenant_members: users allowed to be assigned a tenant's reviews
- delivery_records: insert-only outcome ledger (at most one success per fingerprint)
- delivery_claims: in-flight idempotency claims with a lease
"""

from uuid import uuid4

from sqlalchemy import (
    Column,
    String,
    Text,
    Boolean,
    Integer,
    DateTime,
    ForeignKey,
    JSON,
    Index,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, relationship

from packages.core.src.types import utcnow


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Automation(Base):
    """User-defined rule pairing one trigger with one action.

    trigger_type / action_type are plain strings so a row with an unknown
    type can still be loaded and skipped instead of failing the whole query.
    """

    __tablename__ = "automations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False)

    name = Column(String(200), nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)

    # Rule definition (payload shape depends on the type)
    trigger_type = Column(String(50), nullable=False)
    trigger_conditions = Column(JSON, default=dict)
    action_type = Column(String(50), nullable=False)
    action_config = Column(JSON, default=dict)

    # Counters (engine-owned)
    last_triggered_at = Column(DateTime)
    trigger_count = Column(Integer, default=0, nullable=False)

    created_by = Column(UUID(as_uuid=True))
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    deliveries = relationship(
        "DeliveryRecord",
        back_populates="automation",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_automations_tenant_active", "tenant_id", "is_active"),
        Index("ix_automations_trigger_type", "trigger_type"),
    )

    def __repr__(self) -> str:
        return f"<Automation {self.name} ({self.trigger_type} -> {self.action_type})>"


class Review(Base):
    """Customer review as synced from a review platform."""

    __tablename__ = "reviews"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False)

    platform = Column(String(50))
    rating = Column(Integer)
    sentiment = Column(String(20))  # positive, neutral, negative
    body = Column(Text)
    author_name = Column(String(200))

    needs_action = Column(Boolean, default=False, nullable=False)
    replied_at = Column(DateTime)
    tags = Column(JSON, default=list)
    assigned_to = Column(UUID(as_uuid=True))

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_reviews_tenant_id", "tenant_id"),
        Index("ix_reviews_unreplied", "tenant_id", "needs_action", "replied_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Review {self.id} {self.platform} {self.rating}>"


class TenantMember(Base):
    """Membership of a user in a tenant."""

    __tablename__ = "tenant_members"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    role = Column(String(20), default="member")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("tenant_id", "user_id", name="uq_tenant_members"),)

    def __repr__(self) -> str:
        return f"<TenantMember {self.user_id} in {self.tenant_id}>"


class DeliveryRecord(Base):
    """Durable fact that an (automation, occurrence) was attempted.

    Rows are never updated. A retry produces a new row.
    """

    __tablename__ = "delivery_records"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    automation_id = Column(
        UUID(as_uuid=True),
        ForeignKey("automations.id", ondelete="CASCADE"),
        nullable=False,
    )
    tenant_id = Column(UUID(as_uuid=True), nullable=False)
    review_id = Column(UUID(as_uuid=True), nullable=False)

    # Occurrence identity (kept so a retry sweep can rebuild the event)
    event_id = Column(UUID(as_uuid=True), nullable=False)
    event_kind = Column(String(30), nullable=False)
    event_version = Column(String(64), nullable=False)
    fingerprint = Column(String(64), nullable=False)

    outcome = Column(String(20), nullable=False)  # success, failed, skipped
    error_detail = Column(Text)
    attempted_at = Column(DateTime, default=utcnow, nullable=False)

    automation = relationship("Automation", back_populates="deliveries")

    __table_args__ = (
        # At-most-once: one success per fingerprint, any number of failures
        Index(
            "uq_delivery_records_success_fingerprint",
            "fingerprint",
            unique=True,
            sqlite_where=text("outcome = 'success'"),
            postgresql_where=text("outcome = 'success'"),
        ),
        Index("ix_delivery_records_fingerprint", "fingerprint"),
        Index("ix_delivery_records_automation", "automation_id", "attempted_at"),
        Index("ix_delivery_records_outcome_time", "outcome", "attempted_at"),
    )

    def __repr__(self) -> str:
        return f"<DeliveryRecord {self.fingerprint[:12]} {self.outcome}>"


class DeliveryClaim(Base):
    """In-flight execution claim on a fingerprint.

    The primary key is the mutual exclusion across engine instances; the
    lease lets a claim left behind by a crashed worker be taken over.
    """

    __tablename__ = "delivery_claims"

    fingerprint = Column(String(64), primary_key=True)
    automation_id = Column(UUID(as_uuid=True), nullable=False)
    claimed_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<DeliveryClaim {self.fingerprint[:12]} until {self.expires_at}>"

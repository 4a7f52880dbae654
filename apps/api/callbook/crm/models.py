from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from callbook.core.database import Base
from callbook.crm.enums import LeadSource, LeadStatus
from callbook.users.models import User


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Lead(Base):
    __tablename__ = "lead"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    company: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=LeadSource.OTHER.value,
        server_default=LeadSource.OTHER.value,
    )
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=LeadStatus.NEW.value,
        server_default=LeadStatus.NEW.value,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("app_user.id", ondelete="RESTRICT"),
        nullable=False,
    )
    last_modified_by: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("app_user.id", ondelete="RESTRICT"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    creator: Mapped[User] = relationship("User", foreign_keys=[created_by], lazy="joined")
    modifier: Mapped[User] = relationship("User", foreign_keys=[last_modified_by], lazy="joined")
    calls: Mapped[list[Call]] = relationship(
        "Call",
        back_populates="lead",
        cascade="all, delete-orphan",
        order_by="Call.created_at.desc()",
    )

    __table_args__ = (
        Index("ix_lead_scope_filter", "created_by", "status", "source", "created_at"),
    )


class Call(Base):
    __tablename__ = "call"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("lead.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("app_user.id", ondelete="RESTRICT"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    connected_response: Mapped[str | None] = mapped_column(String(16), nullable=True)
    not_connected_reason: Mapped[str | None] = mapped_column(String(16), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    lead: Mapped[Lead] = relationship("Lead", back_populates="calls")
    user: Mapped[User] = relationship("User", lazy="joined")

    __table_args__ = (
        Index("ix_call_user_created_at", "user_id", "created_at"),
        Index("ix_call_lead_created_at", "lead_id", "created_at"),
    )

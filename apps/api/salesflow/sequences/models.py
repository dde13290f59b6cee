from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from salesflow.core.clock import utcnow
from salesflow.core.database import Base
from salesflow.crm.models import Lead


class Sequence(Base):
    __tablename__ = "seq_sequence"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    automation_mode: Mapped[str] = mapped_column(String(32), nullable=False, default="assisted")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    steps: Mapped[list[SequenceStep]] = relationship(
        "salesflow.sequences.models.SequenceStep",
        back_populates="sequence",
        cascade="all, delete-orphan",
        order_by="SequenceStep.step_number",
    )


class SequenceStep(Base):
    __tablename__ = "seq_step"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sequence_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("seq_sequence.id", ondelete="CASCADE"),
        nullable=False,
    )
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    step_type: Mapped[str] = mapped_column(String(32), nullable=False)
    subject: Mapped[str | None] = mapped_column(String(998), nullable=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    delay_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    delay_unit: Mapped[str | None] = mapped_column(String(16), nullable=True)
    conditions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    sequence: Mapped[Sequence] = relationship("salesflow.sequences.models.Sequence", back_populates="steps")

    __table_args__ = (UniqueConstraint("sequence_id", "step_number", name="uq_seq_step_sequence_number"),)


class SequenceEnrollment(Base):
    __tablename__ = "seq_enrollment"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sequence_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("seq_sequence.id", ondelete="CASCADE"),
        nullable=False,
    )
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_lead.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    emails_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    awaiting_step: Mapped[int | None] = mapped_column(Integer, nullable=True)
    step_entered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    stop_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    stopped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    sequence: Mapped[Sequence] = relationship("salesflow.sequences.models.Sequence")
    lead: Mapped[Lead] = relationship(Lead)


Index(
    "uq_seq_enrollment_active_sequence_lead",
    SequenceEnrollment.sequence_id,
    SequenceEnrollment.lead_id,
    unique=True,
    postgresql_where=SequenceEnrollment.status == "active",
    sqlite_where=SequenceEnrollment.status == "active",
)
Index("ix_seq_enrollment_status_created", SequenceEnrollment.status, SequenceEnrollment.created_at)
Index("ix_seq_enrollment_lead_status", SequenceEnrollment.lead_id, SequenceEnrollment.status)
Index("ix_seq_sequence_workspace", Sequence.workspace_id)

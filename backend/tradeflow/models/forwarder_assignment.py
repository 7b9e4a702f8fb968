"""ORM models for per-order forwarder assignments, their stage sub-assignments
and the append-only tracking log."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tradeflow.models.base import Base, TimestampMixin, utcnow


class Stage(str, enum.Enum):
    PICKUP = "pickup"
    TRANSIT = "transit"
    PORT_LOADING = "port_loading"
    ON_SHIP = "on_ship"
    DESTINATION = "destination"


class AssignmentStatus(str, enum.Enum):
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


STAGE_ORDER: list[Stage] = list(Stage)


def _enum_values(e):
    return [m.value for m in e]


class ForwarderAssignment(Base, TimestampMixin):
    __tablename__ = "forwarder_assignments"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("shipment_orders.id"), unique=True, nullable=False
    )
    current_stage: Mapped[Stage] = mapped_column(
        SAEnum(Stage, name="shipment_stage", values_callable=_enum_values),
        default=Stage.PICKUP,
        nullable=False,
    )
    status: Mapped[AssignmentStatus] = mapped_column(
        SAEnum(AssignmentStatus, name="assignment_status", values_callable=_enum_values),
        default=AssignmentStatus.ASSIGNED,
        index=True,
        nullable=False,
    )
    timeline: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    audit_trail: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    stages: Mapped[list["StageAssignment"]] = relationship(
        back_populates="assignment",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="StageAssignment.position",
    )
    tracking: Mapped[list["TrackingEntry"]] = relationship(
        back_populates="assignment",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TrackingEntry.id",
    )

    def stage_for(self, stage: Stage, forwarder_id: uuid.UUID | None = None) -> "StageAssignment | None":
        for sub in self.stages:
            if sub.stage == stage and (forwarder_id is None or sub.forwarder_id == forwarder_id):
                return sub
        return None

    def is_participant(self, user_id: uuid.UUID) -> bool:
        return any(sub.forwarder_id == user_id for sub in self.stages)

    @property
    def all_stages_completed(self) -> bool:
        return bool(self.stages) and all(
            sub.status == AssignmentStatus.COMPLETED for sub in self.stages
        )


class StageAssignment(Base):
    __tablename__ = "stage_assignments"
    __table_args__ = (UniqueConstraint("assignment_id", "stage", name="uq_stage_per_assignment"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    assignment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("forwarder_assignments.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    stage: Mapped[Stage] = mapped_column(
        SAEnum(Stage, name="shipment_stage", values_callable=_enum_values), nullable=False
    )
    forwarder_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), index=True, nullable=False
    )
    forwarder_name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[AssignmentStatus] = mapped_column(
        SAEnum(AssignmentStatus, name="assignment_status", values_callable=_enum_values),
        default=AssignmentStatus.ASSIGNED,
        nullable=False,
    )
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    estimated_completion: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(500), nullable=True)
    documents: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    assignment: Mapped[ForwarderAssignment] = relationship(back_populates="stages")


class TrackingEntry(Base):
    """Append-only; the integer key preserves insertion order."""

    __tablename__ = "assignment_tracking"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    assignment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("forwarder_assignments.id", ondelete="CASCADE"), index=True, nullable=False
    )
    stage: Mapped[Stage] = mapped_column(
        SAEnum(Stage, name="shipment_stage", values_callable=_enum_values), nullable=False
    )
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    location: Mapped[str | None] = mapped_column(String(500), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    documents: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    assignment: Mapped[ForwarderAssignment] = relationship(back_populates="tracking")

"""ORM model for exporter-authored shipment orders."""

import enum
import uuid

from sqlalchemy import Enum as SAEnum, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from tradeflow.models.base import Base, TimestampMixin


class OrderStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    READY_FOR_FORWARDER = "ready_for_forwarder"
    ASSIGNED_TO_FORWARDER = "assigned_to_forwarder"
    PROCESSING = "processing"
    IN_TRANSIT = "in_transit"


class ComplianceStatus(str, enum.Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class DocumentSlot(str, enum.Enum):
    """Where an attached document sits on the order."""

    COMMERCIAL_INVOICE = "commercial_invoice"
    PACKING_LIST = "packing_list"
    CERTIFICATE = "certificate"
    OTHER = "other"


class ShipmentOrder(Base, TimestampMixin):
    __tablename__ = "shipment_orders"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    exporter_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), index=True, nullable=False
    )
    client_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    assigned_forwarder_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), index=True, nullable=True
    )
    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(OrderStatus, name="order_status", values_callable=lambda e: [m.value for m in e]),
        default=OrderStatus.DRAFT,
        index=True,
        nullable=False,
    )
    compliance_status: Mapped[ComplianceStatus] = mapped_column(
        SAEnum(
            ComplianceStatus,
            name="order_compliance_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        default=ComplianceStatus.PENDING,
        nullable=False,
    )

    order_details: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    products: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # Document references (ids into the documents table)
    commercial_invoice_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    packing_list_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    certificate_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    other_document_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    compliance: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    financial: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    audit_trail: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Optimistic concurrency token
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    @property
    def has_documents(self) -> bool:
        return bool(
            self.commercial_invoice_id
            or self.packing_list_id
            or self.certificate_ids
            or self.other_document_ids
        )

    def calculate_totals(self) -> None:
        currency = (self.financial or {}).get("currency", "USD")
        self.financial = {
            "total_value": sum(float(p.get("value") or 0) for p in self.products or []),
            "total_weight": sum(float(p.get("weight") or 0) for p in self.products or []),
            "currency": currency,
        }

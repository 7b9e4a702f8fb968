"""Initial schema: users, shipment orders, forwarder assignments, documents

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import ENUM as PgENUM, UUID

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUM_TYPES = {
    "user_role": ("admin", "exporter", "ca", "forwarder", "importer"),
    "user_status": ("active", "inactive", "pending", "suspended"),
    "order_status": (
        "draft", "submitted", "under_review", "approved", "rejected",
        "ready_for_forwarder", "assigned_to_forwarder", "processing", "in_transit",
    ),
    "order_compliance_status": ("pending", "under_review", "approved", "rejected"),
    "shipment_stage": ("pickup", "transit", "port_loading", "on_ship", "destination"),
    "assignment_status": ("assigned", "in_progress", "completed", "cancelled"),
    "document_type": ("invoice", "boe", "packing_list", "certificate", "shipping_bill", "other"),
    "document_status": ("uploading", "processing", "completed", "error", "failed", "validated", "rejected"),
}


def _enum(name: str) -> PgENUM:
    # Reference-only: the types are created up front
    return PgENUM(*ENUM_TYPES[name], name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    for name, values in ENUM_TYPES.items():
        labels = ", ".join(f"'{v}'" for v in values)
        op.execute(f"CREATE TYPE {name} AS ENUM ({labels})")

    op.create_table(
        "users",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("company", sa.String(200), nullable=True),
        sa.Column("role", _enum("user_role"), nullable=False, server_default="exporter"),
        sa.Column("status", _enum("user_status"), nullable=False, server_default="active"),
        sa.Column("department", sa.String(200), nullable=True),
        sa.Column("designation", sa.String(200), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "shipment_orders",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("order_number", sa.String(32), nullable=False),
        sa.Column("exporter_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("client_id", UUID(as_uuid=True), nullable=True),
        sa.Column("assigned_forwarder_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("status", _enum("order_status"), nullable=False, server_default="draft"),
        sa.Column("compliance_status", _enum("order_compliance_status"), nullable=False, server_default="pending"),
        sa.Column("order_details", sa.JSON, nullable=False),
        sa.Column("products", sa.JSON, nullable=False),
        sa.Column("commercial_invoice_id", UUID(as_uuid=True), nullable=True),
        sa.Column("packing_list_id", UUID(as_uuid=True), nullable=True),
        sa.Column("certificate_ids", sa.JSON, nullable=False),
        sa.Column("other_document_ids", sa.JSON, nullable=False),
        sa.Column("compliance", sa.JSON, nullable=False),
        sa.Column("financial", sa.JSON, nullable=False),
        sa.Column("audit_trail", sa.JSON, nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_shipment_orders_order_number", "shipment_orders", ["order_number"], unique=True)
    op.create_index("ix_shipment_orders_exporter_id", "shipment_orders", ["exporter_id"])
    op.create_index("ix_shipment_orders_assigned_forwarder_id", "shipment_orders", ["assigned_forwarder_id"])
    op.create_index("ix_shipment_orders_status", "shipment_orders", ["status"])

    op.create_table(
        "forwarder_assignments",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("order_id", UUID(as_uuid=True), sa.ForeignKey("shipment_orders.id"), nullable=False, unique=True),
        sa.Column("current_stage", _enum("shipment_stage"), nullable=False, server_default="pickup"),
        sa.Column("status", _enum("assignment_status"), nullable=False, server_default="assigned"),
        sa.Column("timeline", sa.JSON, nullable=False),
        sa.Column("audit_trail", sa.JSON, nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_forwarder_assignments_status", "forwarder_assignments", ["status"])

    op.create_table(
        "stage_assignments",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "assignment_id",
            UUID(as_uuid=True),
            sa.ForeignKey("forwarder_assignments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
        sa.Column("stage", _enum("shipment_stage"), nullable=False),
        sa.Column("forwarder_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("forwarder_name", sa.String(200), nullable=False),
        sa.Column("status", _enum("assignment_status"), nullable=False, server_default="assigned"),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_completion", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("location", sa.String(500), nullable=True),
        sa.Column("documents", sa.JSON, nullable=False),
        sa.UniqueConstraint("assignment_id", "stage", name="uq_stage_per_assignment"),
    )
    op.create_index("ix_stage_assignments_forwarder_id", "stage_assignments", ["forwarder_id"])

    op.create_table(
        "assignment_tracking",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "assignment_id",
            UUID(as_uuid=True),
            sa.ForeignKey("forwarder_assignments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("stage", _enum("shipment_stage"), nullable=False),
        sa.Column("status", sa.String(50), nullable=False),
        sa.Column("location", sa.String(500), nullable=True),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("updated_by", UUID(as_uuid=True), nullable=True),
        sa.Column("documents", sa.JSON, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_assignment_tracking_assignment_id", "assignment_tracking", ["assignment_id"])

    op.create_table(
        "documents",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("filename", sa.String(512), nullable=False),
        sa.Column("original_filename", sa.String(512), nullable=False),
        sa.Column("file_path", sa.String(1024), nullable=False),
        sa.Column("file_type", sa.String(50), nullable=False),
        sa.Column("mime_type", sa.String(100), nullable=False),
        sa.Column("file_size", sa.BigInteger, nullable=False),
        sa.Column("document_type", _enum("document_type"), nullable=False),
        sa.Column("status", _enum("document_status"), nullable=False, server_default="uploading"),
        sa.Column("uploaded_by_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("client_id", UUID(as_uuid=True), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("page_count", sa.Integer, nullable=True),
        sa.Column("extracted_text", sa.Text, nullable=True),
        sa.Column("entities", sa.JSON, nullable=False),
        sa.Column("confidence", sa.Float, nullable=True),
        sa.Column("structured_data", sa.JSON, nullable=True),
        sa.Column("ocr_metadata", sa.JSON, nullable=True),
        sa.Column("compliance_analysis", sa.JSON, nullable=True),
        sa.Column("compliance_errors", sa.JSON, nullable=False),
        sa.Column("compliance_corrections", sa.JSON, nullable=False),
        sa.Column("compliance_summary", sa.JSON, nullable=True),
        sa.Column("compliance_recommendations", sa.JSON, nullable=False),
        sa.Column("compliance_metadata", sa.JSON, nullable=True),
        sa.Column("ai_processing_results", sa.JSON, nullable=True),
        sa.Column("processing_time_ms", sa.Integer, nullable=True),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_error", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_documents_uploaded_by_id", "documents", ["uploaded_by_id"])

    op.create_table(
        "notifications",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.String(100), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("data", sa.JSON, nullable=True),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("documents")
    op.drop_table("assignment_tracking")
    op.drop_table("stage_assignments")
    op.drop_table("forwarder_assignments")
    op.drop_table("shipment_orders")
    op.drop_table("users")
    for name in reversed(list(ENUM_TYPES)):
        op.execute(f"DROP TYPE IF EXISTS {name}")

import enum
import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Enum as SAEnum, Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from tradeflow.models.base import Base, TimestampMixin


class DocumentStatus(str, enum.Enum):
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    FAILED = "failed"
    VALIDATED = "validated"
    REJECTED = "rejected"


class DocumentType(str, enum.Enum):
    INVOICE = "invoice"
    BOE = "boe"
    PACKING_LIST = "packing_list"
    CERTIFICATE = "certificate"
    SHIPPING_BILL = "shipping_bill"
    OTHER = "other"


class Document(Base, TimestampMixin):
    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    filename: Mapped[str] = mapped_column(String(512), nullable=False)
    original_filename: Mapped[str] = mapped_column(String(512), nullable=False)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_type: Mapped[str] = mapped_column(String(50), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    document_type: Mapped[DocumentType] = mapped_column(
        SAEnum(
            DocumentType,
            name="document_type",
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
    )
    status: Mapped[DocumentStatus] = mapped_column(
        SAEnum(
            DocumentStatus,
            name="document_status",
            values_callable=lambda e: [member.value for member in e],
        ),
        default=DocumentStatus.UPLOADING,
        nullable=False,
    )
    uploaded_by_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), index=True, nullable=False
    )
    client_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    page_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Step 1: OCR / extraction
    extracted_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    entities: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    structured_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    ocr_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Step 2: compliance analysis
    compliance_analysis: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    compliance_errors: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    compliance_corrections: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    compliance_summary: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    compliance_recommendations: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    compliance_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Pipeline bookkeeping
    ai_processing_results: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    processing_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def reset_processing(self) -> None:
        """Clear every field derived by the AI pipeline."""
        self.status = DocumentStatus.UPLOADING
        self.extracted_text = None
        self.page_count = None
        self.entities = []
        self.confidence = None
        self.structured_data = None
        self.ocr_metadata = None
        self.compliance_analysis = None
        self.compliance_errors = []
        self.compliance_corrections = []
        self.compliance_summary = None
        self.compliance_recommendations = []
        self.compliance_metadata = None
        self.ai_processing_results = None
        self.processing_time_ms = None
        self.processing_started_at = None
        self.processing_ended_at = None
        self.processing_error = None

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tradeflow.models.document import DocumentStatus, DocumentType


class DocumentUploadResponse(BaseModel):
    success: bool = True
    message: str
    id: uuid.UUID
    filename: str
    original_filename: str
    file_type: str
    file_size: int
    document_type: DocumentType
    status: DocumentStatus
    uploaded_at: datetime


class DocumentDetail(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    filename: str
    original_filename: str
    file_type: str
    mime_type: str
    file_size: int
    page_count: int | None = None
    document_type: DocumentType
    status: DocumentStatus
    uploaded_by_id: uuid.UUID
    client_id: uuid.UUID | None = None
    description: str | None = None
    extracted_text: str | None = None
    entities: list[dict[str, Any]] = Field(default_factory=list)
    confidence: float | None = None
    structured_data: dict[str, Any] | None = None
    compliance_analysis: dict[str, Any] | None = None
    compliance_errors: list[dict[str, Any]] = Field(default_factory=list)
    compliance_corrections: list[dict[str, Any]] = Field(default_factory=list)
    compliance_summary: dict[str, Any] | None = None
    compliance_recommendations: list[dict[str, Any]] = Field(default_factory=list)
    ai_processing_results: dict[str, Any] | None = None
    processing_time_ms: int | None = None
    processing_error: str | None = None
    created_at: datetime
    updated_at: datetime


class DocumentEnvelope(BaseModel):
    success: bool = True
    message: str
    document: DocumentDetail


class DocumentListResponse(BaseModel):
    success: bool = True
    message: str
    documents: list[DocumentDetail]
    total: int
    page: int
    per_page: int


class BatchProcessRequest(BaseModel):
    document_ids: list[uuid.UUID] = Field(..., min_length=1)


class BatchProcessResponse(BaseModel):
    success: bool = True
    message: str
    total: int
    successful: int
    failed: int
    results: list[dict[str, Any]]


class ProcessingStatusResponse(BaseModel):
    success: bool = True
    message: str
    processing: dict[str, Any]

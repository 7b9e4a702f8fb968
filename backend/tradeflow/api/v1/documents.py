import uuid

from fastapi import APIRouter, Depends, Form, HTTPException, UploadFile
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tradeflow.ai.processor import DocumentProcessor
from tradeflow.ai.worker import DocumentProcessingQueue
from tradeflow.config import settings
from tradeflow.dependencies import (
    get_current_user,
    get_db,
    get_document_processor,
    get_processing_queue,
)
from tradeflow.models.document import Document, DocumentStatus, DocumentType
from tradeflow.models.user import User, UserRole
from tradeflow.schemas.common import MessageResponse
from tradeflow.schemas.document import (
    BatchProcessRequest,
    BatchProcessResponse,
    DocumentDetail,
    DocumentEnvelope,
    DocumentListResponse,
    DocumentUploadResponse,
    ProcessingStatusResponse,
)
from tradeflow.services.document_service import get_file_extension, get_mime_type, save_upload
from tradeflow.workflow.capabilities import Capability, require_capability
from tradeflow.workflow.errors import NotFoundError

router = APIRouter()


async def _load_document(db: AsyncSession, document_id: uuid.UUID, user: User) -> Document:
    document = await db.get(Document, document_id)
    if document is None:
        raise NotFoundError("Document", document_id)
    require_capability(user, document, Capability.MANAGE_DOCUMENT)
    return document


@router.post("/upload", response_model=DocumentUploadResponse, status_code=201)
async def upload_document(
    file: UploadFile,
    document_type: DocumentType = Form(DocumentType.OTHER),
    description: str | None = Form(None),
    client_id: uuid.UUID | None = Form(None),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    queue: DocumentProcessingQueue = Depends(get_processing_queue),
) -> DocumentUploadResponse:
    if not file.filename:
        raise HTTPException(status_code=400, detail="No filename provided")

    file_ext = get_file_extension(file.filename)
    if file_ext not in settings.allowed_file_types:
        raise HTTPException(
            status_code=400,
            detail=f"File type '{file_ext}' not allowed. Allowed: {', '.join(sorted(settings.allowed_file_types))}",
        )

    content = await file.read()
    file_size = len(content)
    if file_size == 0:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if file_size > settings.max_upload_size_mb * 1024 * 1024:
        raise HTTPException(
            status_code=400,
            detail=f"File too large. Maximum size: {settings.max_upload_size_mb}MB",
        )

    stored_filename, file_path = await save_upload(content, file.filename, settings)

    document = Document(
        id=uuid.uuid4(),
        filename=stored_filename,
        original_filename=file.filename,
        file_path=file_path,
        file_type=file_ext,
        mime_type=get_mime_type(file.filename),
        file_size=file_size,
        document_type=document_type,
        status=DocumentStatus.UPLOADING,
        uploaded_by_id=user.id,
        client_id=client_id,
        description=description,
        entities=[],
        compliance_errors=[],
        compliance_corrections=[],
        compliance_recommendations=[],
    )
    db.add(document)
    # Commit before enqueueing; the worker reads through its own session
    await db.commit()
    queue.enqueue(document.id)

    return DocumentUploadResponse(
        message="Document uploaded; AI processing started",
        id=document.id,
        filename=stored_filename,
        original_filename=document.original_filename,
        file_type=document.file_type,
        file_size=document.file_size,
        document_type=document.document_type,
        status=document.status,
        uploaded_at=document.created_at,
    )


@router.get("", response_model=DocumentListResponse)
async def list_documents(
    page: int = 1,
    per_page: int = 20,
    status: DocumentStatus | None = None,
    document_type: DocumentType | None = None,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> DocumentListResponse:
    page = max(page, 1)
    per_page = min(max(per_page, 1), 100)

    query = select(Document)
    if user.role != UserRole.ADMIN:
        query = query.where(Document.uploaded_by_id == user.id)
    if status is not None:
        query = query.where(Document.status == status)
    if document_type is not None:
        query = query.where(Document.document_type == document_type)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    result = await db.execute(
        query.order_by(Document.created_at.desc()).offset((page - 1) * per_page).limit(per_page)
    )

    return DocumentListResponse(
        message="Documents retrieved",
        documents=[DocumentDetail.model_validate(doc) for doc in result.scalars().all()],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/batch-process", response_model=BatchProcessResponse)
async def batch_process(
    body: BatchProcessRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    processor: DocumentProcessor = Depends(get_document_processor),
) -> BatchProcessResponse:
    for document_id in body.document_ids:
        document = await db.get(Document, document_id)
        if document is not None:
            require_capability(user, document, Capability.MANAGE_DOCUMENT)

    tally = await processor.batch_process_documents(db, body.document_ids)
    return BatchProcessResponse(
        message=f"Processed {tally['successful']} of {tally['total']} documents",
        **tally,
    )


@router.get("/{document_id}", response_model=DocumentEnvelope)
async def get_document(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> DocumentEnvelope:
    document = await _load_document(db, document_id, user)
    return DocumentEnvelope(message="Document retrieved", document=DocumentDetail.model_validate(document))


@router.post("/{document_id}/reprocess", response_model=MessageResponse, status_code=202)
async def reprocess_document(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    queue: DocumentProcessingQueue = Depends(get_processing_queue),
) -> MessageResponse:
    document = await _load_document(db, document_id, user)
    if document.status == DocumentStatus.PROCESSING:
        raise HTTPException(status_code=400, detail="Document is already being processed")
    queue.enqueue(document.id, reprocess=True)
    return MessageResponse(message="Document queued for reprocessing")


@router.get("/{document_id}/processing-status", response_model=ProcessingStatusResponse)
async def processing_status(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    processor: DocumentProcessor = Depends(get_document_processor),
) -> ProcessingStatusResponse:
    await _load_document(db, document_id, user)
    return ProcessingStatusResponse(
        message="Processing status retrieved",
        processing=await processor.get_processing_status(db, document_id),
    )

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tradeflow.dependencies import get_current_user, get_db, get_forwarder_assignment_service
from tradeflow.models.user import User
from tradeflow.schemas.forwarder_assignment import (
    CompleteStageRequest,
    ForwarderAssignmentEnvelope,
    ForwarderAssignmentListResponse,
    ForwarderAssignmentResponse,
    StartStageRequest,
    TrackingEntryResponse,
    TrackingResponse,
    UpdateStageStatusRequest,
)
from tradeflow.workflow.forwarder_assignments import ForwarderAssignmentService

router = APIRouter()


def _envelope(assignment, message: str) -> ForwarderAssignmentEnvelope:
    return ForwarderAssignmentEnvelope(
        message=message, assignment=ForwarderAssignmentResponse.model_validate(assignment)
    )


@router.get("", response_model=ForwarderAssignmentListResponse)
async def list_assignments(
    stage: str | None = None,
    status: str | None = None,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    service: ForwarderAssignmentService = Depends(get_forwarder_assignment_service),
) -> ForwarderAssignmentListResponse:
    assignments = await service.list_assignments(db, user, stage=stage, status=status)
    return ForwarderAssignmentListResponse(
        message="Assignments retrieved",
        assignments=[ForwarderAssignmentResponse.model_validate(a) for a in assignments],
        total=len(assignments),
    )


@router.get("/{assignment_id}", response_model=ForwarderAssignmentEnvelope)
async def get_assignment(
    assignment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    service: ForwarderAssignmentService = Depends(get_forwarder_assignment_service),
) -> ForwarderAssignmentEnvelope:
    assignment = await service.get_assignment(db, assignment_id, user)
    return _envelope(assignment, "Assignment retrieved")


@router.get("/{assignment_id}/tracking", response_model=TrackingResponse)
async def get_tracking(
    assignment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    service: ForwarderAssignmentService = Depends(get_forwarder_assignment_service),
) -> TrackingResponse:
    entries = await service.get_tracking(db, assignment_id, user)
    return TrackingResponse(
        message="Tracking history retrieved",
        assignment_id=assignment_id,
        tracking=[TrackingEntryResponse.model_validate(e) for e in entries],
    )


@router.put("/{assignment_id}/start", response_model=ForwarderAssignmentEnvelope)
async def start_stage(
    assignment_id: uuid.UUID,
    body: StartStageRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    service: ForwarderAssignmentService = Depends(get_forwarder_assignment_service),
) -> ForwarderAssignmentEnvelope:
    assignment = await service.start(
        db, assignment_id, body.stage, user, location=body.location, notes=body.notes
    )
    return _envelope(assignment, f"Stage {body.stage} started")


@router.put("/{assignment_id}/update-status", response_model=ForwarderAssignmentEnvelope)
async def update_stage_status(
    assignment_id: uuid.UUID,
    body: UpdateStageStatusRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    service: ForwarderAssignmentService = Depends(get_forwarder_assignment_service),
) -> ForwarderAssignmentEnvelope:
    assignment = await service.update_status(
        db,
        assignment_id,
        body.stage,
        user,
        status=body.status,
        location=body.location,
        notes=body.notes,
        documents=body.documents,
        coordinates=body.coordinates,
    )
    return _envelope(assignment, f"Stage {body.stage} updated to {body.status}")


@router.put("/{assignment_id}/complete", response_model=ForwarderAssignmentEnvelope)
async def complete_stage(
    assignment_id: uuid.UUID,
    body: CompleteStageRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    service: ForwarderAssignmentService = Depends(get_forwarder_assignment_service),
) -> ForwarderAssignmentEnvelope:
    assignment = await service.complete(
        db, assignment_id, body.stage, user, notes=body.notes, documents=body.documents
    )
    return _envelope(assignment, f"Stage {body.stage} completed")

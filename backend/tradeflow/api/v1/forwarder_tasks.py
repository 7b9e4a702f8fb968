"""Read-only projections of a forwarder's stage work across orders."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tradeflow.dependencies import get_current_user, get_db, get_forwarder_assignment_service
from tradeflow.models.user import User
from tradeflow.schemas.forwarder_assignment import (
    TaskEnvelope,
    TaskListResponse,
    TaskResponse,
    WorkflowStatusResponse,
)
from tradeflow.workflow.forwarder_assignments import ForwarderAssignmentService

router = APIRouter()


@router.get("/my-tasks", response_model=TaskListResponse)
async def my_tasks(
    status: str | None = None,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    service: ForwarderAssignmentService = Depends(get_forwarder_assignment_service),
) -> TaskListResponse:
    tasks = await service.my_tasks(db, user, status=status)
    return TaskListResponse(
        message="Tasks retrieved",
        tasks=[TaskResponse(**t) for t in tasks],
        total=len(tasks),
    )


@router.get("/workflow-status", response_model=WorkflowStatusResponse)
async def workflow_status(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    service: ForwarderAssignmentService = Depends(get_forwarder_assignment_service),
) -> WorkflowStatusResponse:
    return WorkflowStatusResponse(
        message="Workflow status retrieved", orders=await service.workflow_status(db, user)
    )


@router.get("/tasks/{task_id}", response_model=TaskEnvelope)
async def get_task(
    task_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    service: ForwarderAssignmentService = Depends(get_forwarder_assignment_service),
) -> TaskEnvelope:
    task = await service.get_task(db, task_id, user)
    return TaskEnvelope(message="Task retrieved", task=TaskResponse(**task))

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tradeflow.models.forwarder_assignment import AssignmentStatus, Stage


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StartStageRequest(_Request):
    stage: str
    location: str | None = None
    notes: str | None = None


class UpdateStageStatusRequest(_Request):
    stage: str
    status: str
    location: str | None = None
    notes: str | None = None
    documents: list[Any] | None = None
    coordinates: dict[str, float] | None = None


class CompleteStageRequest(_Request):
    stage: str
    notes: str | None = None
    documents: list[Any] | None = None


class StageAssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    stage: Stage
    forwarder_id: uuid.UUID
    forwarder_name: str
    status: AssignmentStatus
    assigned_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    estimated_completion: datetime | None = None
    notes: str | None = None
    location: str | None = None
    documents: list[Any] = Field(default_factory=list)


class TrackingEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    stage: Stage
    status: str
    location: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    notes: str | None = None
    updated_by: uuid.UUID | None = None
    documents: list[Any] = Field(default_factory=list)
    timestamp: datetime


class ForwarderAssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    current_stage: Stage
    status: AssignmentStatus
    stages: list[StageAssignmentResponse]
    timeline: dict[str, Any]
    audit_trail: list[dict[str, Any]]
    created_at: datetime
    updated_at: datetime


class ForwarderAssignmentEnvelope(BaseModel):
    success: bool = True
    message: str
    assignment: ForwarderAssignmentResponse


class ForwarderAssignmentListResponse(BaseModel):
    success: bool = True
    message: str
    assignments: list[ForwarderAssignmentResponse]
    total: int


class TrackingResponse(BaseModel):
    success: bool = True
    message: str
    assignment_id: uuid.UUID
    tracking: list[TrackingEntryResponse]


class TaskResponse(BaseModel):
    task_id: uuid.UUID
    assignment_id: uuid.UUID
    order_id: uuid.UUID
    order_number: str
    stage: str
    status: str
    assigned_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    estimated_completion: datetime | None = None
    location: str | None = None
    notes: str | None = None
    documents: list[Any] = Field(default_factory=list)
    assignment_status: str
    current_stage: str
    destination: dict | None = None
    transport_mode: str | None = None


class TaskListResponse(BaseModel):
    success: bool = True
    message: str
    tasks: list[TaskResponse]
    total: int


class TaskEnvelope(BaseModel):
    success: bool = True
    message: str
    task: TaskResponse


class StageProgress(BaseModel):
    status: str
    forwarder_id: uuid.UUID | None = None
    forwarder_name: str | None = None
    is_mine: bool = False


class OrderWorkflowStatus(BaseModel):
    order_id: uuid.UUID
    order_number: str
    order_status: str
    assignment_id: uuid.UUID
    assignment_status: str
    current_stage: str
    stages: dict[str, StageProgress]
    completed_stages: int
    total_stages: int


class WorkflowStatusResponse(BaseModel):
    success: bool = True
    message: str
    orders: list[OrderWorkflowStatus]

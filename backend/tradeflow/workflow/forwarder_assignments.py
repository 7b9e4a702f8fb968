"""ForwarderAssignmentService: per-order stage assignment and stage lifecycle.

Each order has at most one assignment. The admin forwarder the order was
routed to splits it into stages; each stage is worked by one
sub-forwarder through assigned → in_progress → completed (or cancelled).
After every stage transition the parent order status is reconciled.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tradeflow.config import Settings
from tradeflow.models.base import utcnow
from tradeflow.models.forwarder_assignment import (
    STAGE_ORDER,
    AssignmentStatus,
    ForwarderAssignment,
    Stage,
    StageAssignment,
    TrackingEntry,
)
from tradeflow.models.shipment_order import ShipmentOrder
from tradeflow.models.user import User, UserRole
from tradeflow.services.notification_service import NotificationService
from tradeflow.workflow.capabilities import Capability, is_admin_forwarder, require_capability
from tradeflow.workflow.errors import (
    AuthorizationError,
    NotFoundError,
    StateError,
    WorkflowValidationError,
)
from tradeflow.workflow.reconciliation import reconcile_order_status
from tradeflow.workflow.shipment_orders import audit_entry

logger = logging.getLogger("tradeflow.assignments")

TERMINAL_STATUSES = {AssignmentStatus.COMPLETED, AssignmentStatus.CANCELLED}


def _parse_stage(value: Any) -> Stage:
    try:
        return Stage(value)
    except ValueError:
        raise WorkflowValidationError(
            f"Invalid stage: {value}", {"allowed": [s.value for s in Stage]}
        )


def _parse_status(value: Any) -> AssignmentStatus:
    try:
        return AssignmentStatus(value)
    except ValueError:
        raise WorkflowValidationError(
            f"Invalid status: {value}", {"allowed": [s.value for s in AssignmentStatus]}
        )


def _parse_uuid(value: Any, field: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise WorkflowValidationError(f"Invalid {field}: {value}")


def _parse_estimate(value: Any) -> datetime | None:
    """Estimated completion as an aware UTC datetime; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise WorkflowValidationError(f"Invalid estimated completion: {value}")
    if not isinstance(value, datetime):
        raise WorkflowValidationError(f"Invalid estimated completion: {value}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _merge_documents(existing: list, incoming: list | None) -> list:
    merged = list(existing or [])
    for doc in incoming or []:
        if doc not in merged:
            merged.append(doc)
    return merged


def _coordinates(coordinates: dict | None) -> tuple[float | None, float | None]:
    if not coordinates:
        return None, None
    lat = coordinates.get("latitude", coordinates.get("lat"))
    lng = coordinates.get("longitude", coordinates.get("lng"))
    return (float(lat) if lat is not None else None, float(lng) if lng is not None else None)


def stage_progress(status: AssignmentStatus | None) -> str:
    if status == AssignmentStatus.COMPLETED:
        return "completed"
    if status == AssignmentStatus.IN_PROGRESS:
        return "in_progress"
    return "not_started"


class ForwarderAssignmentService:
    def __init__(self, settings: Settings, notifier: NotificationService | None = None):
        self.admin_forwarder_email = settings.admin_forwarder_email
        self.notifier = notifier

    # ── Loading helpers ──

    async def _load(self, db: AsyncSession, assignment_id: uuid.UUID) -> ForwarderAssignment:
        assignment = await db.get(ForwarderAssignment, assignment_id)
        if assignment is None:
            raise NotFoundError("Forwarder assignment", assignment_id)
        return assignment

    async def _load_for_order(self, db: AsyncSession, order_id: uuid.UUID) -> ForwarderAssignment | None:
        result = await db.execute(
            select(ForwarderAssignment).where(ForwarderAssignment.order_id == order_id)
        )
        return result.scalar_one_or_none()

    # ── Stage assignment ──

    def _validate_entries(self, stage_assignments: list[dict]) -> list[dict]:
        if not stage_assignments:
            raise WorkflowValidationError("At least one stage assignment is required")

        entries = []
        seen: set[Stage] = set()
        for index, raw in enumerate(stage_assignments):
            stage_value = raw.get("stage")
            forwarder_value = raw.get("forwarder_id")
            if not stage_value or not forwarder_value:
                raise WorkflowValidationError(
                    "Each stage assignment needs a stage and a forwarder id",
                    {"index": index},
                )
            stage = _parse_stage(stage_value)
            if stage in seen:
                raise WorkflowValidationError(f"Stage {stage.value} is assigned more than once")
            seen.add(stage)
            entries.append(
                {
                    "stage": stage,
                    "forwarder_id": _parse_uuid(forwarder_value, "forwarder id"),
                    "estimated_completion": _parse_estimate(raw.get("estimated_completion")),
                    "notes": raw.get("notes"),
                }
            )
        return entries

    async def _resolve_forwarders(self, db: AsyncSession, forwarder_ids: set[uuid.UUID]) -> dict[uuid.UUID, User]:
        result = await db.execute(select(User).where(User.id.in_(forwarder_ids)))
        users = {u.id: u for u in result.scalars().all()}

        invalid = [
            str(fid)
            for fid in forwarder_ids
            if fid not in users
            or users[fid].role != UserRole.FORWARDER
            or is_admin_forwarder(users[fid], self.admin_forwarder_email)
        ]
        if invalid:
            raise WorkflowValidationError(
                "Stages can only be assigned to existing non-admin forwarders",
                {"invalid_forwarder_ids": sorted(invalid)},
            )
        return users

    async def assign_stages(
        self,
        db: AsyncSession,
        order_id: uuid.UUID,
        actor: User,
        stage_assignments: list[dict],
    ) -> ForwarderAssignment:
        """Replace the order's stage assignments with ``stage_assignments``.

        All validation happens before any write. Stages missing from the new
        list are dropped, not kept.
        """
        entries = self._validate_entries(stage_assignments)

        if not is_admin_forwarder(actor, self.admin_forwarder_email):
            raise AuthorizationError("Only the admin forwarder can assign stages")

        order = await db.get(ShipmentOrder, order_id)
        if order is None:
            raise NotFoundError("Shipment order", order_id)
        require_capability(actor, order, Capability.ASSIGN_STAGES, admin_email=self.admin_forwarder_email)

        forwarders = await self._resolve_forwarders(db, {e["forwarder_id"] for e in entries})

        now = utcnow()
        assignment = await self._load_for_order(db, order_id)
        if assignment is None:
            assignment = ForwarderAssignment(
                id=uuid.uuid4(),
                order_id=order_id,
                timeline={"milestones": []},
                audit_trail=[],
                stages=[],
                tracking=[],
            )
            db.add(assignment)
        elif assignment.stages:
            # Old rows must be gone before the new ones hit the unique (assignment, stage) key
            assignment.stages.clear()
            await db.flush()

        for position, entry in enumerate(entries):
            forwarder = forwarders[entry["forwarder_id"]]
            assignment.stages.append(
                StageAssignment(
                    position=position,
                    stage=entry["stage"],
                    forwarder_id=forwarder.id,
                    forwarder_name=forwarder.name,
                    status=AssignmentStatus.ASSIGNED,
                    assigned_at=now,
                    estimated_completion=entry["estimated_completion"],
                    notes=entry["notes"],
                    documents=[],
                )
            )

        estimates = [e["estimated_completion"] for e in entries if e["estimated_completion"]]
        assignment.status = AssignmentStatus.ASSIGNED
        assignment.current_stage = min((e["stage"] for e in entries), key=STAGE_ORDER.index)
        assignment.timeline = {
            **(assignment.timeline or {}),
            "assigned_at": now.isoformat(),
            "started_at": None,
            "actual_completion": None,
            "estimated_completion": max(estimates).isoformat() if estimates else None,
            "milestones": [
                *(assignment.timeline or {}).get("milestones", []),
                {"event": "stages_assigned", "at": now.isoformat(), "stages": len(entries)},
            ],
        }
        summary = ", ".join(f"{e['stage'].value} → {forwarders[e['forwarder_id']].name}" for e in entries)
        assignment.audit_trail = [
            *(assignment.audit_trail or []),
            audit_entry("Stages Assigned", actor, details=summary),
        ]
        await db.flush()

        logger.info(
            "Order %s: %d stages assigned by %s", order.order_number, len(entries), actor.id
        )

        if self.notifier is not None:
            for entry in entries:
                self.notifier.schedule(
                    entry["forwarder_id"],
                    "stage_assigned",
                    f"You have been assigned the {entry['stage'].value} stage of order {order.order_number}",
                    {"order_id": str(order.id), "assignment_id": str(assignment.id), "stage": entry["stage"].value},
                )
        return assignment

    # ── Stage lifecycle ──

    async def _load_owned_stage(
        self, db: AsyncSession, assignment_id: uuid.UUID, stage_value: Any, actor: User
    ) -> tuple[ForwarderAssignment, StageAssignment]:
        stage = _parse_stage(stage_value)
        assignment = await self._load(db, assignment_id)
        require_capability(actor, assignment, Capability.OPERATE_STAGE, stage=stage)
        return assignment, assignment.stage_for(stage, actor.id)

    @staticmethod
    def _promote_to_in_progress(assignment: ForwarderAssignment, now: datetime) -> None:
        if assignment.status == AssignmentStatus.ASSIGNED:
            assignment.status = AssignmentStatus.IN_PROGRESS
            timeline = dict(assignment.timeline or {})
            if not timeline.get("started_at"):
                timeline["started_at"] = now.isoformat()
            assignment.timeline = timeline

    @staticmethod
    def _roll_up_completion(assignment: ForwarderAssignment, now: datetime) -> None:
        # Point current_stage at the earliest assigned stage still open
        for stage in STAGE_ORDER:
            other = assignment.stage_for(stage)
            if other is not None and other.status != AssignmentStatus.COMPLETED:
                assignment.current_stage = stage
                break
        if assignment.all_stages_completed:
            assignment.status = AssignmentStatus.COMPLETED
            timeline = dict(assignment.timeline or {})
            timeline["actual_completion"] = now.isoformat()
            timeline["milestones"] = [
                *timeline.get("milestones", []),
                {"event": "all_stages_completed", "at": now.isoformat()},
            ]
            assignment.timeline = timeline

    def _track(
        self,
        assignment: ForwarderAssignment,
        sub: StageAssignment,
        status: str,
        actor: User,
        now: datetime,
        *,
        location: str | None = None,
        notes: str | None = None,
        documents: list | None = None,
        coordinates: dict | None = None,
    ) -> None:
        latitude, longitude = _coordinates(coordinates)
        assignment.tracking.append(
            TrackingEntry(
                stage=sub.stage,
                status=status,
                location=location,
                latitude=latitude,
                longitude=longitude,
                notes=notes,
                updated_by=actor.id,
                documents=list(documents or []),
                timestamp=now,
            )
        )

    async def _finish(self, db: AsyncSession, assignment: ForwarderAssignment) -> ForwarderAssignment:
        await db.flush()
        await reconcile_order_status(db, assignment.order_id, [s.status for s in assignment.stages])
        return assignment

    async def start(
        self,
        db: AsyncSession,
        assignment_id: uuid.UUID,
        stage: Any,
        actor: User,
        *,
        location: str | None = None,
        notes: str | None = None,
    ) -> ForwarderAssignment:
        assignment, sub = await self._load_owned_stage(db, assignment_id, stage, actor)
        if sub.status != AssignmentStatus.ASSIGNED:
            raise StateError(
                f"Stage {sub.stage.value} can only be started from assigned", sub.status.value
            )

        now = utcnow()
        sub.status = AssignmentStatus.IN_PROGRESS
        sub.started_at = now
        if location:
            sub.location = location
        if notes:
            sub.notes = notes
        self._promote_to_in_progress(assignment, now)
        assignment.current_stage = sub.stage

        self._track(assignment, sub, "started", actor, now, location=location, notes=notes)
        assignment.audit_trail = [
            *assignment.audit_trail,
            audit_entry(
                "Stage Started",
                actor,
                details=sub.stage.value,
                previous_status=AssignmentStatus.ASSIGNED.value,
                new_status=AssignmentStatus.IN_PROGRESS.value,
            ),
        ]
        logger.info("Assignment %s: stage %s started by %s", assignment.id, sub.stage.value, actor.id)
        return await self._finish(db, assignment)

    async def update_status(
        self,
        db: AsyncSession,
        assignment_id: uuid.UUID,
        stage: Any,
        actor: User,
        *,
        status: Any,
        location: str | None = None,
        notes: str | None = None,
        documents: list | None = None,
        coordinates: dict | None = None,
    ) -> ForwarderAssignment:
        new_status = _parse_status(status)
        assignment, sub = await self._load_owned_stage(db, assignment_id, stage, actor)
        previous = sub.status
        if previous in TERMINAL_STATUSES and new_status != previous:
            raise StateError(
                f"Stage {sub.stage.value} is {previous.value} and cannot change", previous.value
            )

        now = utcnow()
        sub.status = new_status
        sub.documents = _merge_documents(sub.documents, documents)
        if location:
            sub.location = location
        if notes:
            sub.notes = notes

        if new_status == AssignmentStatus.IN_PROGRESS:
            if sub.started_at is None:
                sub.started_at = now
            self._promote_to_in_progress(assignment, now)
        elif new_status == AssignmentStatus.COMPLETED and previous != AssignmentStatus.COMPLETED:
            sub.completed_at = now
            self._roll_up_completion(assignment, now)
        if new_status != AssignmentStatus.COMPLETED:
            assignment.current_stage = sub.stage

        self._track(
            assignment, sub, new_status.value, actor, now,
            location=location, notes=notes, documents=documents, coordinates=coordinates,
        )
        assignment.audit_trail = [
            *assignment.audit_trail,
            audit_entry(
                "Stage Status Updated",
                actor,
                details=sub.stage.value,
                previous_status=previous.value,
                new_status=new_status.value,
            ),
        ]
        logger.info(
            "Assignment %s: stage %s %s → %s by %s",
            assignment.id, sub.stage.value, previous.value, new_status.value, actor.id,
        )
        return await self._finish(db, assignment)

    async def complete(
        self,
        db: AsyncSession,
        assignment_id: uuid.UUID,
        stage: Any,
        actor: User,
        *,
        notes: str | None = None,
        documents: list | None = None,
    ) -> ForwarderAssignment:
        assignment, sub = await self._load_owned_stage(db, assignment_id, stage, actor)
        if sub.status != AssignmentStatus.IN_PROGRESS:
            raise StateError(
                f"Stage {sub.stage.value} can only be completed while in progress", sub.status.value
            )

        now = utcnow()
        sub.status = AssignmentStatus.COMPLETED
        sub.completed_at = now
        sub.documents = _merge_documents(sub.documents, documents)
        if notes:
            sub.notes = notes
        self._roll_up_completion(assignment, now)

        self._track(assignment, sub, "completed", actor, now, notes=notes, documents=documents)
        assignment.audit_trail = [
            *assignment.audit_trail,
            audit_entry(
                "Stage Completed",
                actor,
                details=sub.stage.value,
                previous_status=AssignmentStatus.IN_PROGRESS.value,
                new_status=AssignmentStatus.COMPLETED.value,
            ),
        ]
        logger.info("Assignment %s: stage %s completed by %s", assignment.id, sub.stage.value, actor.id)
        return await self._finish(db, assignment)

    # ── Read projections ──

    async def get_assignment(self, db: AsyncSession, assignment_id: uuid.UUID, actor: User) -> ForwarderAssignment:
        assignment = await self._load(db, assignment_id)
        order = await db.get(ShipmentOrder, assignment.order_id)
        require_capability(actor, assignment, Capability.VIEW_ASSIGNMENT, order=order)
        return assignment

    async def get_tracking(self, db: AsyncSession, assignment_id: uuid.UUID, actor: User) -> list[TrackingEntry]:
        assignment = await self.get_assignment(db, assignment_id, actor)
        return list(assignment.tracking)

    async def list_assignments(
        self,
        db: AsyncSession,
        actor: User,
        *,
        stage: Any = None,
        status: Any = None,
    ) -> list[ForwarderAssignment]:
        query = select(ForwarderAssignment).join(
            ShipmentOrder, ShipmentOrder.id == ForwarderAssignment.order_id
        )
        stage_filter = _parse_stage(stage) if stage else None

        if actor.role == UserRole.FORWARDER:
            mine = select(StageAssignment.assignment_id).where(StageAssignment.forwarder_id == actor.id)
            if stage_filter is not None:
                mine = mine.where(StageAssignment.stage == stage_filter)
                query = query.where(ForwarderAssignment.id.in_(mine))
            else:
                query = query.where(
                    or_(
                        ForwarderAssignment.id.in_(mine),
                        ShipmentOrder.assigned_forwarder_id == actor.id,
                    )
                )
        elif actor.role == UserRole.ADMIN:
            if stage_filter is not None:
                query = query.where(
                    ForwarderAssignment.id.in_(
                        select(StageAssignment.assignment_id).where(StageAssignment.stage == stage_filter)
                    )
                )
        else:
            raise AuthorizationError("Only forwarders can list assignments")

        if status:
            query = query.where(ForwarderAssignment.status == _parse_status(status))

        result = await db.execute(query.order_by(ForwarderAssignment.created_at.desc()))
        return list(result.scalars().unique().all())

    @staticmethod
    def _task_view(sub: StageAssignment, assignment: ForwarderAssignment, order: ShipmentOrder) -> dict:
        details = order.order_details or {}
        return {
            "task_id": sub.id,
            "assignment_id": assignment.id,
            "order_id": order.id,
            "order_number": order.order_number,
            "stage": sub.stage.value,
            "status": sub.status.value,
            "assigned_at": sub.assigned_at,
            "started_at": sub.started_at,
            "completed_at": sub.completed_at,
            "estimated_completion": sub.estimated_completion,
            "location": sub.location,
            "notes": sub.notes,
            "documents": list(sub.documents or []),
            "assignment_status": assignment.status.value,
            "current_stage": assignment.current_stage.value,
            "destination": details.get("destination"),
            "transport_mode": details.get("transport_mode"),
        }

    async def my_tasks(self, db: AsyncSession, actor: User, *, status: Any = None) -> list[dict]:
        if actor.role != UserRole.FORWARDER:
            raise AuthorizationError("Only forwarders have tasks")

        query = (
            select(StageAssignment, ForwarderAssignment, ShipmentOrder)
            .join(ForwarderAssignment, StageAssignment.assignment_id == ForwarderAssignment.id)
            .join(ShipmentOrder, ShipmentOrder.id == ForwarderAssignment.order_id)
            .where(StageAssignment.forwarder_id == actor.id)
        )
        if status:
            query = query.where(StageAssignment.status == _parse_status(status))
        result = await db.execute(query.order_by(StageAssignment.assigned_at.desc()))
        return [self._task_view(sub, assignment, order) for sub, assignment, order in result.all()]

    async def get_task(self, db: AsyncSession, task_id: uuid.UUID, actor: User) -> dict:
        sub = await db.get(StageAssignment, task_id)
        if sub is None:
            raise NotFoundError("Task", task_id)
        if actor.role != UserRole.ADMIN and sub.forwarder_id != actor.id:
            raise AuthorizationError("This task is not assigned to you")
        assignment = await self._load(db, sub.assignment_id)
        order = await db.get(ShipmentOrder, assignment.order_id)
        return self._task_view(sub, assignment, order)

    async def workflow_status(self, db: AsyncSession, actor: User) -> list[dict]:
        """Per order the actor takes part in: where each stage stands."""
        assignments = await self.list_assignments(db, actor)
        views = []
        for assignment in assignments:
            order = await db.get(ShipmentOrder, assignment.order_id)
            stages = {}
            for stage in STAGE_ORDER:
                sub = assignment.stage_for(stage)
                stages[stage.value] = {
                    "status": stage_progress(sub.status if sub else None),
                    "forwarder_id": sub.forwarder_id if sub else None,
                    "forwarder_name": sub.forwarder_name if sub else None,
                    "is_mine": bool(sub and sub.forwarder_id == actor.id),
                }
            completed = sum(1 for s in assignment.stages if s.status == AssignmentStatus.COMPLETED)
            views.append(
                {
                    "order_id": order.id,
                    "order_number": order.order_number,
                    "order_status": order.status.value,
                    "assignment_id": assignment.id,
                    "assignment_status": assignment.status.value,
                    "current_stage": assignment.current_stage.value,
                    "stages": stages,
                    "completed_stages": completed,
                    "total_stages": len(assignment.stages),
                }
            )
        return views

"""Tests for ForwarderAssignmentService: stage assignment, the stage lifecycle
and how stage progress rolls up into the order."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from tradeflow.models.forwarder_assignment import AssignmentStatus, Stage, StageAssignment
from tradeflow.models.shipment_order import ComplianceStatus, OrderStatus, ShipmentOrder
from tradeflow.workflow.errors import AuthorizationError, NotFoundError, StateError, WorkflowValidationError
from tradeflow.workflow.forwarder_assignments import ForwarderAssignmentService

ALL_STAGES = ["pickup", "transit", "port_loading", "on_ship", "destination"]


@pytest.fixture
def service(test_settings, notifier) -> ForwarderAssignmentService:
    return ForwarderAssignmentService(test_settings, notifier)


@pytest.fixture
async def approved_order(db_session, exporter, admin_forwarder) -> ShipmentOrder:
    order = ShipmentOrder(
        id=uuid.uuid4(),
        order_number="SO0001123456",
        exporter_id=exporter.id,
        assigned_forwarder_id=admin_forwarder.id,
        status=OrderStatus.APPROVED,
        compliance_status=ComplianceStatus.APPROVED,
        order_details={"transport_mode": "sea", "destination": {"country": "UAE"}},
        products=[{"name": "Basmati Rice", "value": 100.0}],
        certificate_ids=[],
        other_document_ids=[],
        compliance={"status": "approved"},
        financial={"total_value": 100.0, "currency": "USD"},
        audit_trail=[],
    )
    db_session.add(order)
    await db_session.commit()
    return order


def entries(*pairs):
    return [{"stage": stage, "forwarder_id": str(forwarder.id)} for stage, forwarder in pairs]


class TestAssignStages:
    async def test_creates_assignment(self, db_session, service, approved_order, admin_forwarder, sub_forwarders, scheduler):
        a, b, _ = sub_forwarders
        assignment = await service.assign_stages(
            db_session, approved_order.id, admin_forwarder,
            entries(("transit", b), ("pickup", a)),
        )

        assert assignment.order_id == approved_order.id
        assert assignment.status == AssignmentStatus.ASSIGNED
        assert [s.stage for s in assignment.stages] == [Stage.TRANSIT, Stage.PICKUP]
        assert all(s.status == AssignmentStatus.ASSIGNED for s in assignment.stages)
        assert assignment.current_stage == Stage.PICKUP
        assert assignment.audit_trail[-1]["action"] == "Stages Assigned"
        assert {user for user, kind in scheduler.notifications if kind == "stage_assigned"} == {a.id, b.id}
        # Assigning stages does not move the order
        assert approved_order.status == OrderStatus.APPROVED

    async def test_reassignment_replaces_not_merges(self, db_session, service, approved_order, admin_forwarder, sub_forwarders):
        a, b, c = sub_forwarders
        first = await service.assign_stages(
            db_session, approved_order.id, admin_forwarder,
            entries(("pickup", a), ("transit", b)),
        )
        second = await service.assign_stages(
            db_session, approved_order.id, admin_forwarder,
            entries(("port_loading", c)),
        )

        assert second.id == first.id
        assert [(s.stage, s.forwarder_id) for s in second.stages] == [(Stage.PORT_LOADING, c.id)]
        assert second.current_stage == Stage.PORT_LOADING
        assert second.status == AssignmentStatus.ASSIGNED

    async def test_same_stage_can_be_reassigned(self, db_session, service, approved_order, admin_forwarder, sub_forwarders):
        a, b, _ = sub_forwarders
        await service.assign_stages(db_session, approved_order.id, admin_forwarder, entries(("pickup", a)))
        assignment = await service.assign_stages(db_session, approved_order.id, admin_forwarder, entries(("pickup", b)))
        assert [s.forwarder_id for s in assignment.stages] == [b.id]

    async def test_records_estimated_completion(self, db_session, service, approved_order, admin_forwarder, sub_forwarders):
        eta = datetime(2030, 1, 15, tzinfo=timezone.utc)
        assignment = await service.assign_stages(
            db_session, approved_order.id, admin_forwarder,
            [
                {"stage": "pickup", "forwarder_id": str(sub_forwarders[0].id), "estimated_completion": eta - timedelta(days=5)},
                {"stage": "transit", "forwarder_id": str(sub_forwarders[1].id), "estimated_completion": eta},
            ],
        )
        assert assignment.timeline["estimated_completion"] == eta.isoformat()

    async def test_mixed_timezone_estimates(self, db_session, service, approved_order, admin_forwarder, sub_forwarders):
        a, b, c = sub_forwarders
        assignment = await service.assign_stages(
            db_session, approved_order.id, admin_forwarder,
            [
                {"stage": "pickup", "forwarder_id": str(a.id), "estimated_completion": datetime(2030, 1, 10, 8, 0)},
                {
                    "stage": "transit", "forwarder_id": str(b.id),
                    "estimated_completion": datetime(2030, 1, 12, 9, 30, tzinfo=timezone(timedelta(hours=5, minutes=30))),
                },
                {"stage": "port_loading", "forwarder_id": str(c.id), "estimated_completion": "2030-01-11T00:00:00Z"},
            ],
        )
        assert assignment.timeline["estimated_completion"] == "2030-01-12T04:00:00+00:00"

    async def test_unparseable_estimate_rejected(self, db_session, service, approved_order, admin_forwarder, sub_forwarders):
        with pytest.raises(WorkflowValidationError):
            await service.assign_stages(
                db_session, approved_order.id, admin_forwarder,
                [{"stage": "pickup", "forwarder_id": str(sub_forwarders[0].id), "estimated_completion": "next week"}],
            )

    async def test_empty_list_rejected(self, db_session, service, approved_order, admin_forwarder):
        with pytest.raises(WorkflowValidationError):
            await service.assign_stages(db_session, approved_order.id, admin_forwarder, [])

    async def test_unknown_stage_rejected(self, db_session, service, approved_order, admin_forwarder, sub_forwarders):
        with pytest.raises(WorkflowValidationError):
            await service.assign_stages(
                db_session, approved_order.id, admin_forwarder,
                [{"stage": "customs", "forwarder_id": str(sub_forwarders[0].id)}],
            )

    async def test_duplicate_stage_rejected(self, db_session, service, approved_order, admin_forwarder, sub_forwarders):
        a, b, _ = sub_forwarders
        with pytest.raises(WorkflowValidationError):
            await service.assign_stages(
                db_session, approved_order.id, admin_forwarder, entries(("pickup", a), ("pickup", b))
            )

    async def test_cannot_assign_to_admin_or_non_forwarder(
        self, db_session, service, approved_order, admin_forwarder, exporter
    ):
        for target in (admin_forwarder, exporter):
            with pytest.raises(WorkflowValidationError):
                await service.assign_stages(db_session, approved_order.id, admin_forwarder, entries(("pickup", target)))

    async def test_unknown_forwarder_rejected(self, db_session, service, approved_order, admin_forwarder):
        with pytest.raises(WorkflowValidationError):
            await service.assign_stages(
                db_session, approved_order.id, admin_forwarder,
                [{"stage": "pickup", "forwarder_id": str(uuid.uuid4())}],
            )

    async def test_only_admin_forwarder_assigns(self, db_session, service, approved_order, sub_forwarders):
        a, b, _ = sub_forwarders
        with pytest.raises(AuthorizationError):
            await service.assign_stages(db_session, approved_order.id, a, entries(("pickup", b)))

    async def test_unknown_order(self, db_session, service, admin_forwarder, sub_forwarders):
        with pytest.raises(NotFoundError):
            await service.assign_stages(db_session, uuid.uuid4(), admin_forwarder, entries(("pickup", sub_forwarders[0])))


class TestStageLifecycle:
    @pytest.fixture
    async def assignment(self, db_session, service, approved_order, admin_forwarder, sub_forwarders):
        a, b, _ = sub_forwarders
        return await service.assign_stages(
            db_session, approved_order.id, admin_forwarder, entries(("pickup", a), ("transit", b))
        )

    async def test_start_moves_stage_and_order(self, db_session, service, assignment, approved_order, sub_forwarders):
        a = sub_forwarders[0]
        result = await service.start(db_session, assignment.id, "pickup", a, location="Nhava Sheva")

        pickup = result.stage_for(Stage.PICKUP)
        assert pickup.status == AssignmentStatus.IN_PROGRESS
        assert pickup.started_at is not None
        assert pickup.location == "Nhava Sheva"
        assert result.status == AssignmentStatus.IN_PROGRESS
        assert result.timeline["started_at"] is not None
        assert result.tracking[-1].status == "started"
        assert result.audit_trail[-1]["action"] == "Stage Started"
        assert approved_order.status == OrderStatus.PROCESSING

    async def test_roll_up_failure_keeps_stage_transition(
        self, db_session, session_factory, service, assignment, approved_order, sub_forwarders, monkeypatch
    ):
        def broken(current, derived):
            raise RuntimeError("status table locked")

        monkeypatch.setattr("tradeflow.workflow.reconciliation.next_order_status", broken)
        await service.start(db_session, assignment.id, "pickup", sub_forwarders[0])
        await db_session.commit()

        async with session_factory() as fresh:
            stage_status = (await fresh.execute(
                select(StageAssignment.status).where(
                    StageAssignment.assignment_id == assignment.id, StageAssignment.stage == Stage.PICKUP
                )
            )).scalar_one()
            order_status = (await fresh.execute(
                select(ShipmentOrder.status).where(ShipmentOrder.id == approved_order.id)
            )).scalar_one()
        assert stage_status == AssignmentStatus.IN_PROGRESS
        assert order_status == OrderStatus.APPROVED

    async def test_start_requires_assigned(self, db_session, service, assignment, sub_forwarders):
        a = sub_forwarders[0]
        await service.start(db_session, assignment.id, "pickup", a)
        with pytest.raises(StateError):
            await service.start(db_session, assignment.id, "pickup", a)

    async def test_complete_requires_in_progress(self, db_session, service, assignment, sub_forwarders):
        with pytest.raises(StateError):
            await service.complete(db_session, assignment.id, "pickup", sub_forwarders[0])

    async def test_other_forwarder_cannot_start(self, db_session, service, assignment, sub_forwarders):
        a, b, _ = sub_forwarders
        with pytest.raises(AuthorizationError):
            await service.start(db_session, assignment.id, "pickup", b)
        assert assignment.stage_for(Stage.PICKUP).status == AssignmentStatus.ASSIGNED
        assert assignment.tracking == []

    async def test_unassigned_stage_cannot_be_started(self, db_session, service, assignment, sub_forwarders):
        with pytest.raises(AuthorizationError):
            await service.start(db_session, assignment.id, "on_ship", sub_forwarders[0])

    async def test_complete_one_of_two(self, db_session, service, assignment, approved_order, sub_forwarders):
        a = sub_forwarders[0]
        await service.start(db_session, assignment.id, "pickup", a)
        result = await service.complete(db_session, assignment.id, "pickup", a, notes="Loaded", documents=["pod.pdf"])

        pickup = result.stage_for(Stage.PICKUP)
        assert pickup.status == AssignmentStatus.COMPLETED
        assert pickup.completed_at is not None
        assert pickup.documents == ["pod.pdf"]
        assert result.status == AssignmentStatus.IN_PROGRESS
        assert result.current_stage == Stage.TRANSIT
        assert approved_order.status == OrderStatus.PROCESSING

    async def test_update_status_merges_documents_and_tracks(self, db_session, service, assignment, sub_forwarders):
        a = sub_forwarders[0]
        await service.update_status(
            db_session, assignment.id, "pickup", a,
            status="in_progress", documents=["a.pdf"], coordinates={"lat": 18.95, "lng": 72.95},
        )
        result = await service.update_status(
            db_session, assignment.id, "pickup", a, status="in_progress", documents=["a.pdf", "b.pdf"]
        )
        assert result.stage_for(Stage.PICKUP).documents == ["a.pdf", "b.pdf"]
        assert len(result.tracking) == 2
        assert result.tracking[0].latitude == pytest.approx(18.95)

    async def test_update_status_rejects_unknown_status(self, db_session, service, assignment, sub_forwarders):
        with pytest.raises(WorkflowValidationError):
            await service.update_status(db_session, assignment.id, "pickup", sub_forwarders[0], status="lost")

    async def test_completed_stage_cannot_go_back(self, db_session, service, assignment, sub_forwarders):
        a = sub_forwarders[0]
        await service.update_status(db_session, assignment.id, "pickup", a, status="completed")
        with pytest.raises(StateError):
            await service.update_status(db_session, assignment.id, "pickup", a, status="in_progress")

    async def test_cancelled_stage_is_locked_but_others_continue(self, db_session, service, assignment, sub_forwarders):
        a, b, _ = sub_forwarders
        await service.update_status(db_session, assignment.id, "pickup", a, status="cancelled")

        with pytest.raises(StateError):
            await service.start(db_session, assignment.id, "pickup", a)
        with pytest.raises(StateError):
            await service.update_status(db_session, assignment.id, "pickup", a, status="in_progress")
        assert assignment.stage_for(Stage.PICKUP).status == AssignmentStatus.CANCELLED

        result = await service.start(db_session, assignment.id, "transit", b)
        assert result.stage_for(Stage.TRANSIT).status == AssignmentStatus.IN_PROGRESS

    async def test_order_never_moves_backwards(self, db_session, service, assignment, approved_order, sub_forwarders):
        a, b, _ = sub_forwarders
        await service.start(db_session, assignment.id, "pickup", a)
        assert approved_order.status == OrderStatus.PROCESSING
        # A cancelled sibling leaves nothing in progress; the order keeps its status
        await service.complete(db_session, assignment.id, "pickup", a)
        await service.update_status(db_session, assignment.id, "transit", b, status="cancelled")
        assert approved_order.status == OrderStatus.PROCESSING

    async def test_assignment_completed_only_when_all_stages_done(
        self, db_session, service, assignment, approved_order, sub_forwarders
    ):
        a, b, _ = sub_forwarders
        await service.start(db_session, assignment.id, "pickup", a)
        await service.complete(db_session, assignment.id, "pickup", a)
        assert assignment.status != AssignmentStatus.COMPLETED

        await service.start(db_session, assignment.id, "transit", b)
        result = await service.complete(db_session, assignment.id, "transit", b)
        assert result.status == AssignmentStatus.COMPLETED
        assert result.timeline["actual_completion"] is not None
        assert approved_order.status == OrderStatus.IN_TRANSIT


class TestHappyPath:
    async def test_five_stages_end_in_transit(self, db_session, service, approved_order, admin_forwarder, sub_forwarders):
        a, b, c = sub_forwarders
        owners = dict(zip(ALL_STAGES, [a, b, c, a, b]))
        assignment = await service.assign_stages(
            db_session, approved_order.id, admin_forwarder, entries(*owners.items())
        )
        assert len(assignment.stages) == 5

        for stage, forwarder in owners.items():
            await service.start(db_session, assignment.id, stage, forwarder)
            await service.complete(db_session, assignment.id, stage, forwarder)

        assert all(s.status == AssignmentStatus.COMPLETED for s in assignment.stages)
        assert assignment.status == AssignmentStatus.COMPLETED
        assert approved_order.status == OrderStatus.IN_TRANSIT
        assert len(assignment.tracking) == 10

    async def test_my_tasks_and_workflow_status(self, db_session, service, approved_order, admin_forwarder, sub_forwarders):
        a, b, _ = sub_forwarders
        assignment = await service.assign_stages(
            db_session, approved_order.id, admin_forwarder, entries(("pickup", a), ("on_ship", a), ("transit", b))
        )
        await service.start(db_session, assignment.id, "pickup", a)

        tasks = await service.my_tasks(db_session, a)
        assert sorted(t["stage"] for t in tasks) == ["on_ship", "pickup"]
        assert all(t["order_number"] == approved_order.order_number for t in tasks)

        task = await service.get_task(db_session, tasks[0]["task_id"], a)
        assert task["assignment_id"] == assignment.id
        with pytest.raises(AuthorizationError):
            await service.get_task(db_session, tasks[0]["task_id"], b)

        [view] = await service.workflow_status(db_session, a)
        assert view["stages"]["pickup"]["status"] == "in_progress"
        assert view["stages"]["pickup"]["is_mine"] is True
        assert view["stages"]["transit"]["is_mine"] is False
        assert view["stages"]["destination"]["status"] == "not_started"
        assert view["total_stages"] == 3

    async def test_visibility(self, db_session, service, approved_order, admin_forwarder, sub_forwarders, exporter):
        a, _, c = sub_forwarders
        assignment = await service.assign_stages(db_session, approved_order.id, admin_forwarder, entries(("pickup", a)))

        assert (await service.get_assignment(db_session, assignment.id, a)).id == assignment.id
        assert (await service.get_assignment(db_session, assignment.id, admin_forwarder)).id == assignment.id
        with pytest.raises(AuthorizationError):
            await service.get_assignment(db_session, assignment.id, c)
        assert await service.list_assignments(db_session, c) == []
        assert len(await service.list_assignments(db_session, admin_forwarder)) == 1
        with pytest.raises(AuthorizationError):
            await service.list_assignments(db_session, exporter)

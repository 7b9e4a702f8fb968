import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tradeflow.dependencies import (
    get_current_user,
    get_db,
    get_forwarder_assignment_service,
    get_shipment_order_service,
)
from tradeflow.models.shipment_order import OrderStatus
from tradeflow.models.user import User
from tradeflow.schemas.forwarder_assignment import (
    ForwarderAssignmentEnvelope,
    ForwarderAssignmentResponse,
)
from tradeflow.schemas.shipment_order import (
    AssignStagesRequest,
    AttachDocumentRequest,
    ShipmentOrderCreate,
    ShipmentOrderEnvelope,
    ShipmentOrderListResponse,
    ShipmentOrderResponse,
    ShipmentOrderUpdate,
)
from tradeflow.workflow.forwarder_assignments import ForwarderAssignmentService
from tradeflow.workflow.shipment_orders import ShipmentOrderService

router = APIRouter()


def _envelope(order, message: str) -> ShipmentOrderEnvelope:
    return ShipmentOrderEnvelope(message=message, order=ShipmentOrderResponse.model_validate(order))


@router.post("", response_model=ShipmentOrderEnvelope, status_code=201)
async def create_order(
    body: ShipmentOrderCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    service: ShipmentOrderService = Depends(get_shipment_order_service),
) -> ShipmentOrderEnvelope:
    order = await service.create_order(
        db,
        user,
        order_details=body.order_details.model_dump(mode="json"),
        products=[p.model_dump(mode="json") for p in body.products],
        client_id=body.client_id,
        notes=body.notes,
    )
    return _envelope(order, "Shipment order created")


@router.get("", response_model=ShipmentOrderListResponse)
async def list_orders(
    status: OrderStatus | None = None,
    page: int = 1,
    per_page: int = 20,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    service: ShipmentOrderService = Depends(get_shipment_order_service),
) -> ShipmentOrderListResponse:
    page = max(page, 1)
    per_page = min(max(per_page, 1), 100)
    orders, total = await service.list_orders(db, user, status=status, page=page, per_page=per_page)
    return ShipmentOrderListResponse(
        message="Orders retrieved",
        orders=[ShipmentOrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/{order_id}", response_model=ShipmentOrderEnvelope)
async def get_order(
    order_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    service: ShipmentOrderService = Depends(get_shipment_order_service),
) -> ShipmentOrderEnvelope:
    order = await service.get_order(db, order_id, user)
    return _envelope(order, "Shipment order retrieved")


@router.put("/{order_id}", response_model=ShipmentOrderEnvelope)
async def update_order(
    order_id: uuid.UUID,
    body: ShipmentOrderUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    service: ShipmentOrderService = Depends(get_shipment_order_service),
) -> ShipmentOrderEnvelope:
    changes = body.model_dump(mode="json", exclude_unset=True)
    if body.client_id is not None:
        changes["client_id"] = body.client_id
    order = await service.update_order(db, order_id, user, changes)
    return _envelope(order, "Shipment order updated")


@router.post("/{order_id}/submit", response_model=ShipmentOrderEnvelope)
async def submit_order(
    order_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    service: ShipmentOrderService = Depends(get_shipment_order_service),
) -> ShipmentOrderEnvelope:
    order = await service.submit(db, order_id, user)
    return _envelope(order, "Shipment order submitted and approved")


@router.post("/{order_id}/documents", response_model=ShipmentOrderEnvelope)
async def attach_document(
    order_id: uuid.UUID,
    body: AttachDocumentRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    service: ShipmentOrderService = Depends(get_shipment_order_service),
) -> ShipmentOrderEnvelope:
    order = await service.attach_document(db, order_id, user, body.document_id, body.slot)
    return _envelope(order, "Document attached")


@router.delete("/{order_id}/documents/{document_id}", response_model=ShipmentOrderEnvelope)
async def remove_document(
    order_id: uuid.UUID,
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    service: ShipmentOrderService = Depends(get_shipment_order_service),
) -> ShipmentOrderEnvelope:
    order = await service.remove_document(db, order_id, user, document_id)
    return _envelope(order, "Document removed")


@router.post("/{order_id}/assign-stages", response_model=ForwarderAssignmentEnvelope)
async def assign_stages(
    order_id: uuid.UUID,
    body: AssignStagesRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    service: ForwarderAssignmentService = Depends(get_forwarder_assignment_service),
) -> ForwarderAssignmentEnvelope:
    assignment = await service.assign_stages(
        db, order_id, user, [entry.model_dump() for entry in body.stage_assignments]
    )
    return ForwarderAssignmentEnvelope(
        message=f"{len(assignment.stages)} stages assigned",
        assignment=ForwarderAssignmentResponse.model_validate(assignment),
    )

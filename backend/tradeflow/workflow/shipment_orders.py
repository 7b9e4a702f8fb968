"""ShipmentOrderService: exporter-authored orders and the submission gate.

Lifecycle: create (draft) → edit while draft → submit (draft → approved,
forwarder auto-assigned). The nominal ``submitted``/``under_review``
states are never entered by submission.
"""

import logging
import time
import uuid
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tradeflow.config import Settings
from tradeflow.models.base import utcnow
from tradeflow.models.document import Document
from tradeflow.models.forwarder_assignment import ForwarderAssignment, StageAssignment
from tradeflow.models.shipment_order import ComplianceStatus, DocumentSlot, OrderStatus, ShipmentOrder
from tradeflow.models.user import User, UserRole, UserStatus
from tradeflow.services.notification_service import NotificationService
from tradeflow.workflow.capabilities import Capability, is_admin_forwarder, require_capability
from tradeflow.workflow.errors import (
    AuthorizationError,
    BusinessRuleError,
    NotFoundError,
    StateError,
    WorkflowValidationError,
)

logger = logging.getLogger("tradeflow.orders")

EDITABLE_FIELDS = ("order_details", "products", "client_id", "notes")


def audit_entry(
    action: str,
    actor: User,
    details: str | None = None,
    previous_status: str | None = None,
    new_status: str | None = None,
) -> dict[str, Any]:
    return {
        "action": action,
        "performed_by": str(actor.id),
        "performed_by_name": actor.name,
        "performed_at": utcnow().isoformat(),
        "details": details,
        "previous_status": previous_status,
        "new_status": new_status,
    }


def _status_value(status) -> str:
    return status.value if hasattr(status, "value") else str(status)


class ShipmentOrderService:
    def __init__(self, settings: Settings, notifier: NotificationService | None = None):
        self.admin_forwarder_email = settings.admin_forwarder_email
        self.notifier = notifier

    async def _load(self, db: AsyncSession, order_id: uuid.UUID) -> ShipmentOrder:
        order = await db.get(ShipmentOrder, order_id)
        if order is None:
            raise NotFoundError("Shipment order", order_id)
        return order

    async def _generate_order_number(self, db: AsyncSession) -> str:
        count = (await db.execute(select(func.count()).select_from(ShipmentOrder))).scalar() or 0
        suffix = str(int(time.time() * 1000))[-6:]
        return f"SO{count + 1:04d}{suffix}"

    @staticmethod
    def _validate_products(products: list[dict]) -> None:
        if not products:
            raise WorkflowValidationError("At least one product is required")
        for index, product in enumerate(products):
            if not product.get("name"):
                raise WorkflowValidationError(
                    "Each product needs a name", {"product_index": index}
                )

    async def create_order(
        self,
        db: AsyncSession,
        actor: User,
        *,
        order_details: dict,
        products: list[dict],
        client_id: uuid.UUID | None = None,
        notes: str | None = None,
    ) -> ShipmentOrder:
        require_capability(actor, None, Capability.CREATE_ORDER)
        self._validate_products(products)

        order = ShipmentOrder(
            id=uuid.uuid4(),
            order_number=await self._generate_order_number(db),
            exporter_id=actor.id,
            client_id=client_id,
            status=OrderStatus.DRAFT,
            compliance_status=ComplianceStatus.PENDING,
            order_details=order_details,
            products=products,
            compliance={"status": ComplianceStatus.PENDING.value, "score": None, "issues": []},
            financial={"currency": "USD"},
            certificate_ids=[],
            other_document_ids=[],
            notes=notes,
            audit_trail=[
                audit_entry("Order created", actor, new_status=OrderStatus.DRAFT.value)
            ],
        )
        order.calculate_totals()
        db.add(order)
        await db.flush()

        logger.info("Order %s created by %s", order.order_number, actor.id)
        return order

    async def update_order(
        self, db: AsyncSession, order_id: uuid.UUID, actor: User, changes: dict[str, Any]
    ) -> ShipmentOrder:
        order = await self._load(db, order_id)
        require_capability(actor, order, Capability.EDIT_ORDER)
        if order.status != OrderStatus.DRAFT:
            raise StateError("Only draft orders can be updated", _status_value(order.status))

        updates = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS and v is not None}
        if "products" in updates:
            self._validate_products(updates["products"])

        for field, value in updates.items():
            setattr(order, field, value)
        order.calculate_totals()
        order.audit_trail = [
            *order.audit_trail,
            audit_entry("Order updated", actor, details=", ".join(sorted(updates)) or None),
        ]
        await db.flush()
        return order

    async def attach_document(
        self,
        db: AsyncSession,
        order_id: uuid.UUID,
        actor: User,
        document_id: uuid.UUID,
        slot: DocumentSlot,
    ) -> ShipmentOrder:
        order = await self._load(db, order_id)
        require_capability(actor, order, Capability.EDIT_ORDER)
        if order.status != OrderStatus.DRAFT:
            raise StateError("Documents can only be attached to draft orders", _status_value(order.status))

        document = await db.get(Document, document_id)
        if document is None:
            raise NotFoundError("Document", document_id)
        require_capability(actor, document, Capability.MANAGE_DOCUMENT)

        doc_ref = str(document_id)
        if slot == DocumentSlot.COMMERCIAL_INVOICE:
            order.commercial_invoice_id = document_id
        elif slot == DocumentSlot.PACKING_LIST:
            order.packing_list_id = document_id
        elif slot == DocumentSlot.CERTIFICATE:
            if doc_ref not in order.certificate_ids:
                order.certificate_ids = [*order.certificate_ids, doc_ref]
        else:
            if doc_ref not in order.other_document_ids:
                order.other_document_ids = [*order.other_document_ids, doc_ref]

        order.audit_trail = [
            *order.audit_trail,
            audit_entry("Document attached", actor, details=f"{slot.value}: {document.original_filename}"),
        ]
        await db.flush()
        return order

    async def remove_document(
        self, db: AsyncSession, order_id: uuid.UUID, actor: User, document_id: uuid.UUID
    ) -> ShipmentOrder:
        order = await self._load(db, order_id)
        require_capability(actor, order, Capability.EDIT_ORDER)
        if order.status != OrderStatus.DRAFT:
            raise StateError("Documents can only be removed from draft orders", _status_value(order.status))

        doc_ref = str(document_id)
        removed = False
        if order.commercial_invoice_id == document_id:
            order.commercial_invoice_id = None
            removed = True
        if order.packing_list_id == document_id:
            order.packing_list_id = None
            removed = True
        if doc_ref in order.certificate_ids:
            order.certificate_ids = [d for d in order.certificate_ids if d != doc_ref]
            removed = True
        if doc_ref in order.other_document_ids:
            order.other_document_ids = [d for d in order.other_document_ids if d != doc_ref]
            removed = True
        if not removed:
            raise NotFoundError("Attached document", document_id)

        order.audit_trail = [
            *order.audit_trail,
            audit_entry("Document removed", actor, details=doc_ref),
        ]
        await db.flush()
        return order

    async def _is_stage_participant(self, db: AsyncSession, order_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        stmt = (
            select(func.count())
            .select_from(StageAssignment)
            .join(ForwarderAssignment, StageAssignment.assignment_id == ForwarderAssignment.id)
            .where(ForwarderAssignment.order_id == order_id, StageAssignment.forwarder_id == user_id)
        )
        return bool((await db.execute(stmt)).scalar())

    async def get_order(self, db: AsyncSession, order_id: uuid.UUID, actor: User) -> ShipmentOrder:
        order = await self._load(db, order_id)
        participant = False
        if actor.role == UserRole.FORWARDER and order.assigned_forwarder_id != actor.id:
            participant = await self._is_stage_participant(db, order.id, actor.id)
        require_capability(actor, order, Capability.VIEW_ORDER, participant=participant)
        return order

    async def list_orders(
        self,
        db: AsyncSession,
        actor: User,
        *,
        status: OrderStatus | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> tuple[list[ShipmentOrder], int]:
        query = select(ShipmentOrder)
        if actor.role == UserRole.EXPORTER:
            query = query.where(ShipmentOrder.exporter_id == actor.id)
        elif actor.role == UserRole.FORWARDER:
            participating = (
                select(ForwarderAssignment.order_id)
                .join(StageAssignment, StageAssignment.assignment_id == ForwarderAssignment.id)
                .where(StageAssignment.forwarder_id == actor.id)
            )
            query = query.where(
                or_(
                    ShipmentOrder.assigned_forwarder_id == actor.id,
                    ShipmentOrder.id.in_(participating),
                )
            )
        elif actor.role != UserRole.ADMIN:
            raise AuthorizationError("You do not have access to shipment orders")

        if status is not None:
            query = query.where(ShipmentOrder.status == status)

        total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        result = await db.execute(
            query.order_by(ShipmentOrder.created_at.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return list(result.scalars().all()), total

    async def select_forwarder(self, db: AsyncSession) -> User | None:
        """Pick the forwarder that receives newly submitted orders.

        Preference: an active admin forwarder, any active forwarder, a
        suspended or pending admin forwarder, any other non-inactive
        forwarder, then any forwarder at all. Ties go to the oldest account.
        """
        result = await db.execute(
            select(User)
            .where(User.role == UserRole.FORWARDER)
            .order_by(User.created_at, User.email)
        )
        forwarders = list(result.scalars().all())

        def rank(forwarder: User) -> int:
            admin = is_admin_forwarder(forwarder, self.admin_forwarder_email)
            if forwarder.status == UserStatus.ACTIVE:
                return 0 if admin else 1
            if forwarder.status != UserStatus.INACTIVE:
                return 2 if admin else 3
            return 4

        return min(forwarders, key=rank, default=None)

    async def submit(self, db: AsyncSession, order_id: uuid.UUID, actor: User) -> ShipmentOrder:
        """Submit a draft order: auto-approve and route it to a forwarder.

        Every check runs before the first write; a failure leaves the order
        untouched. The forwarder notification is best-effort.
        """
        order = await self._load(db, order_id)
        require_capability(actor, order, Capability.SUBMIT_ORDER)

        if order.status != OrderStatus.DRAFT:
            raise StateError("Only draft orders can be submitted", _status_value(order.status))
        if not order.has_documents:
            raise WorkflowValidationError("At least one document must be attached before submission")
        if not order.products:
            raise WorkflowValidationError("At least one product is required before submission")

        forwarder = await self.select_forwarder(db)
        if forwarder is None:
            raise BusinessRuleError("No forwarder is available to handle this order")

        previous_status = _status_value(order.status)
        now = utcnow().isoformat()
        order.assigned_forwarder_id = forwarder.id
        order.status = OrderStatus.APPROVED
        order.compliance_status = ComplianceStatus.APPROVED
        order.compliance = {
            **(order.compliance or {}),
            "status": ComplianceStatus.APPROVED.value,
            "reviewed_at": now,
        }
        order.audit_trail = [
            *order.audit_trail,
            audit_entry(
                "Order submitted and approved",
                actor,
                details=f"Assigned to forwarder {forwarder.name}",
                previous_status=previous_status,
                new_status=OrderStatus.APPROVED.value,
            ),
        ]
        await db.flush()

        logger.info(
            "Order %s submitted by %s, routed to forwarder %s",
            order.order_number, actor.id, forwarder.id,
        )

        if self.notifier is not None:
            self.notifier.schedule(
                forwarder.id,
                "order_assigned",
                f"Shipment order {order.order_number} has been assigned to you",
                {"order_id": str(order.id), "order_number": order.order_number},
            )
        return order

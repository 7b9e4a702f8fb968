"""Roll stage progress up into the parent shipment order's status.

The write is a compare-and-swap on ``ShipmentOrder.version`` so a
concurrent writer is never overwritten blindly. The order status only
moves forward: approved → processing → in_transit. Each attempt runs in
a savepoint so a failure never discards the caller's own pending writes.
"""

import logging
import uuid
from collections.abc import Iterable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tradeflow.models.base import utcnow
from tradeflow.models.forwarder_assignment import AssignmentStatus
from tradeflow.models.shipment_order import OrderStatus, ShipmentOrder

logger = logging.getLogger("tradeflow.reconciliation")

MAX_CAS_ATTEMPTS = 3

# Statuses reconciliation may move between, in forward order.
_FORWARD_RANK = {
    OrderStatus.APPROVED: 0,
    OrderStatus.READY_FOR_FORWARDER: 0,
    OrderStatus.ASSIGNED_TO_FORWARDER: 0,
    OrderStatus.PROCESSING: 1,
    OrderStatus.IN_TRANSIT: 2,
}


def derive_order_status(stage_statuses: Iterable[AssignmentStatus]) -> OrderStatus | None:
    """All stages completed → in_transit; any in progress → processing."""
    statuses = list(stage_statuses)
    if not statuses:
        return None
    if all(s == AssignmentStatus.COMPLETED for s in statuses):
        return OrderStatus.IN_TRANSIT
    if any(s == AssignmentStatus.IN_PROGRESS for s in statuses):
        return OrderStatus.PROCESSING
    return None


def next_order_status(current: OrderStatus, derived: OrderStatus | None) -> OrderStatus | None:
    """Return the status to write, or None when nothing should change."""
    if derived is None or current not in _FORWARD_RANK:
        return None
    if _FORWARD_RANK[derived] <= _FORWARD_RANK[current]:
        return None
    return derived


async def reconcile_order_status(
    db: AsyncSession,
    order_id: uuid.UUID,
    stage_statuses: Iterable[AssignmentStatus],
) -> OrderStatus | None:
    """Best-effort status roll-up. Returns the status written, if any.

    Never raises: failures are logged and the caller's operation stands.
    """
    derived = derive_order_status(stage_statuses)
    if derived is None:
        return None

    try:
        for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
            async with db.begin_nested():
                row = (
                    await db.execute(
                        select(ShipmentOrder.status, ShipmentOrder.version).where(ShipmentOrder.id == order_id)
                    )
                ).first()
                if row is None:
                    logger.warning("Reconciliation skipped: order %s not found", order_id)
                    return None

                current, version = row
                target = next_order_status(current, derived)
                if target is None:
                    return None

                result = await db.execute(
                    update(ShipmentOrder)
                    .where(ShipmentOrder.id == order_id, ShipmentOrder.version == version)
                    .values(status=target, version=version + 1, updated_at=utcnow())
                    .execution_options(synchronize_session="fetch")
                )
                if result.rowcount == 1:
                    logger.info("Order %s status %s → %s", order_id, current.value, target.value)
                    return target

            logger.info("Order %s version conflict (attempt %d), retrying", order_id, attempt)

        logger.warning("Order %s status reconciliation gave up after %d attempts", order_id, MAX_CAS_ATTEMPTS)
    except Exception as e:
        logger.error("Order %s status reconciliation failed: %s", order_id, e)
    return None

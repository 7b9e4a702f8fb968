from fastapi import APIRouter

from tradeflow.api.v1 import (
    documents,
    forwarder_assignments,
    forwarder_tasks,
    health,
    shipment_orders,
)

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(shipment_orders.router, prefix="/shipment-orders", tags=["shipment-orders"])
api_router.include_router(
    forwarder_assignments.router, prefix="/forwarder-assignments", tags=["forwarder-assignments"]
)
api_router.include_router(forwarder_tasks.router, prefix="/forwarder", tags=["forwarder"])
api_router.include_router(documents.router, prefix="/documents", tags=["documents"])

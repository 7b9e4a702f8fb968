from tradeflow.schemas.document import DocumentDetail, DocumentListResponse, DocumentUploadResponse
from tradeflow.schemas.forwarder_assignment import ForwarderAssignmentResponse, TaskResponse
from tradeflow.schemas.health import HealthResponse
from tradeflow.schemas.shipment_order import ShipmentOrderResponse

__all__ = [
    "DocumentDetail",
    "DocumentListResponse",
    "DocumentUploadResponse",
    "ForwarderAssignmentResponse",
    "TaskResponse",
    "HealthResponse",
    "ShipmentOrderResponse",
]

from tradeflow.models.base import Base, TimestampMixin
from tradeflow.models.document import Document, DocumentStatus, DocumentType
from tradeflow.models.forwarder_assignment import (
    AssignmentStatus,
    ForwarderAssignment,
    Stage,
    StageAssignment,
    TrackingEntry,
)
from tradeflow.models.notification import Notification
from tradeflow.models.shipment_order import (
    ComplianceStatus,
    DocumentSlot,
    OrderStatus,
    ShipmentOrder,
)
from tradeflow.models.user import User, UserRole, UserStatus

__all__ = [
    "Base",
    "TimestampMixin",
    "User",
    "UserRole",
    "UserStatus",
    "Document",
    "DocumentStatus",
    "DocumentType",
    "ShipmentOrder",
    "OrderStatus",
    "ComplianceStatus",
    "DocumentSlot",
    "ForwarderAssignment",
    "StageAssignment",
    "TrackingEntry",
    "Stage",
    "AssignmentStatus",
    "Notification",
]

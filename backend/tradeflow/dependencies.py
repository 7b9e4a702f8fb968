from fastapi import BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradeflow.ai.processor import DocumentProcessor
from tradeflow.ai.quota_manager import QuotaManager
from tradeflow.ai.worker import DocumentProcessingQueue
from tradeflow.auth import get_current_user
from tradeflow.config import settings
from tradeflow.database import async_session_factory, get_db
from tradeflow.services.notification_service import NotificationService
from tradeflow.workflow.forwarder_assignments import ForwarderAssignmentService
from tradeflow.workflow.shipment_orders import ShipmentOrderService

# Re-export for use in Depends()
get_db = get_db
get_current_user = get_current_user


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


def get_notification_service(
    background_tasks: BackgroundTasks,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> NotificationService:
    return NotificationService(session_factory, background_tasks.add_task)


def get_shipment_order_service(
    notifier: NotificationService = Depends(get_notification_service),
) -> ShipmentOrderService:
    return ShipmentOrderService(settings, notifier)


def get_forwarder_assignment_service(
    notifier: NotificationService = Depends(get_notification_service),
) -> ForwarderAssignmentService:
    return ForwarderAssignmentService(settings, notifier)


def get_quota_manager(request: Request) -> QuotaManager:
    return request.app.state.quota_manager


def get_document_processor(request: Request) -> DocumentProcessor:
    return request.app.state.document_processor


def get_processing_queue(request: Request) -> DocumentProcessingQueue:
    return request.app.state.processing_queue

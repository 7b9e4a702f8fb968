"""Persist in-app notifications outside the request that triggered them."""

import logging
import uuid
from collections.abc import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradeflow.models.notification import Notification

logger = logging.getLogger("tradeflow.notifications")


async def deliver_notification(
    session_factory: async_sessionmaker[AsyncSession],
    user_id: uuid.UUID,
    notification_type: str,
    message: str,
    data: dict | None = None,
) -> None:
    """Write one notification in its own session. Failures are logged only."""
    try:
        async with session_factory() as session:
            session.add(
                Notification(
                    user_id=user_id,
                    type=notification_type,
                    message=message,
                    data=data,
                )
            )
            await session.commit()
        logger.info("Notification %s delivered to user %s", notification_type, user_id)
    except Exception as e:
        logger.error("Failed to deliver %s notification to user %s: %s", notification_type, user_id, e)


class NotificationService:
    """Schedules notification writes on a caller-supplied runner.

    ``scheduler`` is usually ``BackgroundTasks.add_task`` so the write runs
    after the response has been sent.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        scheduler: Callable[..., None],
    ):
        self.session_factory = session_factory
        self._scheduler = scheduler

    def schedule(
        self,
        user_id: uuid.UUID,
        notification_type: str,
        message: str,
        data: dict | None = None,
    ) -> None:
        try:
            self._scheduler(
                deliver_notification,
                self.session_factory,
                user_id,
                notification_type,
                message,
                data,
            )
        except Exception as e:
            logger.error("Could not schedule %s notification for user %s: %s", notification_type, user_id, e)

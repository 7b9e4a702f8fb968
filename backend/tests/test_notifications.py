"""Tests for background notification delivery."""

import logging
import uuid
from unittest.mock import MagicMock

from sqlalchemy import select

from tradeflow.models.notification import Notification
from tradeflow.services.notification_service import NotificationService, deliver_notification


class TestDeliverNotification:
    async def test_writes_row(self, db_session, session_factory, admin_forwarder):
        await deliver_notification(
            session_factory, admin_forwarder.id, "order_assigned", "Order SO1 assigned", {"order_id": "abc"}
        )

        rows = (await db_session.execute(select(Notification))).scalars().all()
        assert len(rows) == 1
        assert rows[0].user_id == admin_forwarder.id
        assert rows[0].type == "order_assigned"
        assert rows[0].data == {"order_id": "abc"}
        assert rows[0].is_read is False

    async def test_failure_is_logged_not_raised(self, caplog):
        broken_factory = MagicMock(side_effect=RuntimeError("pool exhausted"))

        with caplog.at_level(logging.ERROR, logger="tradeflow.notifications"):
            await deliver_notification(broken_factory, uuid.uuid4(), "stage_assigned", "hello")

        assert "pool exhausted" in caplog.text


class TestNotificationService:
    def test_schedule_hands_delivery_to_scheduler(self, session_factory, scheduler):
        service = NotificationService(session_factory, scheduler)
        user_id = uuid.uuid4()

        service.schedule(user_id, "stage_assigned", "You have a new stage", {"stage": "pickup"})

        [(func, args, _)] = scheduler.calls
        assert func is deliver_notification
        assert args == (session_factory, user_id, "stage_assigned", "You have a new stage", {"stage": "pickup"})
        assert scheduler.notifications == [(user_id, "stage_assigned")]

    def test_scheduler_errors_are_contained(self, session_factory, caplog):
        service = NotificationService(session_factory, MagicMock(side_effect=RuntimeError("closed")))
        with caplog.at_level(logging.ERROR, logger="tradeflow.notifications"):
            service.schedule(uuid.uuid4(), "order_assigned", "msg")
        assert "Could not schedule" in caplog.text

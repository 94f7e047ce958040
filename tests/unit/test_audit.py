"""
Tests for the audit recorder and structured audit log.
"""
import logging
from unittest.mock import AsyncMock

import pytest

from tourpass.core.audit_log import log_refund_action
from tests.factories import make_user, ADMIN_ID, CUSTOMER_ID
from tourpass.models import ActivityLog, AdminNotification, NotificationType, OrderTimelineEvent
from tourpass.services import audit_service
from tourpass.services.context import RequestActor


class TestLogRefundAction:

    def test_sensitive_details_are_filtered(self):
        entry = log_refund_action(
            action="refund_approve",
            actor_type="admin",
            actor_id=7,
            resource_type="refund_request",
            resource_id=1,
            details={"refund_amount": "200.00", "token": "abc", "Secret": "x"},
        )
        assert entry["details"] == {"refund_amount": "200.00"}
        assert entry["resource_id"] == "1"

    def test_failed_action_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="audit"):
            entry = log_refund_action("refund_reject", "admin", 7, "refund_request", success=False)
        assert entry["success"] is False
        assert "AUDIT FAILED" in caplog.text


class TestRecordActivity:

    @pytest.mark.asyncio
    async def test_writes_activity_row(self, mock_db, admin_actor):
        ok = await audit_service.record_activity(
            mock_db, admin_actor, "refund_assign", "Refund request REF-1 assigned", details={"a": 1}
        )

        assert ok is True
        row = mock_db.add.call_args[0][0]
        assert isinstance(row, ActivityLog)
        assert row.user_type == "admin"
        assert row.user_id == admin_actor.actor_id
        assert row.category == "refunds"
        assert row.details == {"a": 1}

    @pytest.mark.asyncio
    async def test_failure_is_logged_and_swallowed(self, mock_db, caplog):
        mock_db.flush = AsyncMock(side_effect=RuntimeError("activity_logs is read-only"))

        with caplog.at_level(logging.WARNING):
            ok = await audit_service.record_activity(
                mock_db, RequestActor.system(), "refund_assign", "x"
            )

        assert ok is False
        assert "Failed to record activity" in caplog.text


class TestRecordTimelineEvent:

    @pytest.mark.asyncio
    async def test_writes_timeline_row(self, mock_db, customer_actor):
        ok = await audit_service.record_timeline_event(
            mock_db, customer_actor, 100, "refund_requested", "Refund requested"
        )

        assert ok is True
        row = mock_db.add.call_args[0][0]
        assert isinstance(row, OrderTimelineEvent)
        assert row.order_id == 100
        assert row.actor_type == "customer"

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self, mock_db, customer_actor):
        mock_db.flush = AsyncMock(side_effect=RuntimeError("boom"))

        assert await audit_service.record_timeline_event(
            mock_db, customer_actor, 100, "refund_requested", "Refund requested"
        ) is False


class TestNotifyAdmins:

    @pytest.mark.asyncio
    async def test_one_notification_per_active_admin(self, mock_db, pass_store):
        store = pass_store(users=[
            make_user(CUSTOMER_ID),
            make_user(ADMIN_ID, is_admin=True),
            make_user(8, is_admin=True, is_active=False),
        ])

        written = await audit_service.notify_admins(
            mock_db,
            "New Refund Request",
            "Refund request REF-1 created for order #TP-1",
            notification_type=NotificationType.WARNING,
            link="/admin/refund-requests/1",
        )

        assert written == 1
        notification = store.added_of(AdminNotification)[0]
        assert notification.admin_id == ADMIN_ID
        assert notification.notification_type == "warning"
        assert notification.link == "/admin/refund-requests/1"
        assert notification.details == {}

    @pytest.mark.asyncio
    async def test_no_admins_writes_nothing(self, mock_db, pass_store):
        store = pass_store(users=[make_user(CUSTOMER_ID)])

        assert await audit_service.notify_admins(mock_db, "New Refund Request", "x") == 0
        assert store.added == []

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self, mock_db, pass_store, caplog):
        pass_store()
        mock_db.flush = AsyncMock(side_effect=RuntimeError("admin_notifications missing"))

        with caplog.at_level(logging.WARNING):
            written = await audit_service.notify_admins(mock_db, "New Refund Request", "x")

        assert written == 0
        assert "Failed to notify admins" in caplog.text

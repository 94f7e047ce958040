"""
Audit Recorder

Appends activity-log rows and order timeline events for refund
transitions, and notifies every active admin of new requests. Every
write happens in its own savepoint and any failure is logged and
swallowed: auditing never blocks or reverses a transition.
"""
import logging
from typing import Optional, Dict, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tourpass.core.audit_log import log_refund_action
from tourpass.models import ActivityLog, AdminNotification, NotificationType, OrderTimelineEvent, User
from tourpass.services.context import RequestActor

logger = logging.getLogger(__name__)

REFUND_ACTIVITY_CATEGORY = "refunds"


async def record_activity(
    db: AsyncSession,
    actor: RequestActor,
    action: str,
    description: str,
    details: Optional[Dict[str, Any]] = None,
    resource_id: Optional[Any] = None,
) -> bool:
    """Append an activity-log entry. Returns False when the write failed."""
    log_refund_action(
        action=action,
        actor_type=actor.actor_type.value,
        actor_id=actor.actor_id,
        resource_type="refund_request",
        resource_id=resource_id,
        details=details,
    )

    try:
        async with db.begin_nested():
            db.add(ActivityLog(
                user_type=actor.actor_type.value,
                user_id=actor.actor_id,
                action=action,
                description=description,
                category=REFUND_ACTIVITY_CATEGORY,
                details=details or {},
            ))
            await db.flush()
        return True
    except Exception as e:
        logger.warning(f"Failed to record activity '{action}': {e}")
        return False


async def record_timeline_event(
    db: AsyncSession,
    actor: RequestActor,
    order_id: int,
    event_type: str,
    title: str,
    description: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> bool:
    """Append an order timeline event. Returns False when the write failed."""
    try:
        async with db.begin_nested():
            db.add(OrderTimelineEvent(
                order_id=order_id,
                event_type=event_type,
                title=title,
                description=description,
                details=details or {},
                actor_type=actor.actor_type.value,
                actor_id=actor.actor_id,
            ))
            await db.flush()
        return True
    except Exception as e:
        logger.warning(f"Failed to record timeline event '{event_type}' for order {order_id}: {e}")
        return False


async def notify_admins(
    db: AsyncSession,
    title: str,
    message: str,
    notification_type: NotificationType = NotificationType.INFO,
    link: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> int:
    """
    Add one notification per active admin.

    Returns:
        Number of notifications written (0 when the write failed)
    """
    try:
        async with db.begin_nested():
            result = await db.execute(
                select(User.id).where(User.is_admin == True, User.is_active == True)  # noqa: E712
            )
            admin_ids = list(result.scalars().all())
            for admin_id in admin_ids:
                db.add(AdminNotification(
                    admin_id=admin_id,
                    notification_type=NotificationType(notification_type).value,
                    title=title,
                    message=message,
                    link=link,
                    details=details or {},
                ))
            await db.flush()
        return len(admin_ids)
    except Exception as e:
        logger.warning(f"Failed to notify admins '{title}': {e}")
        return 0

"""
Audit logging for refund workflow actions

Every refund transition emits one structured entry on the "audit" logger:
- Records who did what and when
- Sensitive keys are filtered out of the details payload
- Database persistence is handled by services/audit_service.py
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Any

from tourpass.core.config import settings

# Structured audit logger
audit_logger = logging.getLogger("audit")
audit_logger.setLevel(logging.INFO)

# Action categories
ACTION_REFUND_CREATED = "refund_request_created"
ACTION_REFUND_ASSIGN = "refund_assign"
ACTION_REFUND_APPROVE = "refund_approve"
ACTION_REFUND_REJECT = "refund_reject"
ACTION_REFUND_MARK_COMPLETED = "refund_mark_completed"

SENSITIVE_KEYS = ("password", "secret", "token", "key", "credential")


def log_refund_action(
    action: str,
    actor_type: str,
    actor_id: Optional[int],
    resource_type: str,
    resource_id: Optional[Any] = None,
    details: Optional[dict] = None,
    success: bool = True,
):
    """
    Log a refund workflow action.

    Args:
        action: Action identifier (e.g., "refund_approve")
        actor_type: "customer", "admin" or "system"
        actor_id: ID of the user performing the action
        resource_type: Type of resource affected (e.g., "refund_request")
        resource_id: ID of the affected resource (if applicable)
        details: Additional context about the action
        success: Whether the action succeeded
    """
    log_entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action,
        "actor_type": actor_type,
        "actor_id": actor_id,
        "resource_type": resource_type,
        "resource_id": str(resource_id) if resource_id is not None else None,
        "success": success,
        "environment": settings.ENVIRONMENT,
    }

    if details:
        log_entry["details"] = {
            k: v for k, v in details.items()
            if k.lower() not in SENSITIVE_KEYS
        }

    if success:
        audit_logger.info(
            f"AUDIT: {action} by {actor_type}/{actor_id} on {resource_type}/{resource_id}",
            extra={"audit": log_entry}
        )
    else:
        audit_logger.warning(
            f"AUDIT FAILED: {action} by {actor_type}/{actor_id} on {resource_type}/{resource_id}",
            extra={"audit": log_entry}
        )

    return log_entry

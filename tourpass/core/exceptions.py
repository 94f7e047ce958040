"""
Tourpass Exception Hierarchy

Structured exception classes for the refund lifecycle engine.
All exceptions include code, message, and details for audit trail and debugging.

Exception Hierarchy:
    TourpassBaseError
    ├── RefundError
    │   ├── RefundPreconditionError
    │   │   ├── OrderNotFoundError
    │   │   ├── RefundNotFoundError
    │   │   ├── RefundPermissionError
    │   │   └── InvalidRefundTransitionError
    │   ├── RefundEligibilityError
    │   │   ├── OrderNotRefundableError
    │   │   ├── DuplicateRefundError
    │   │   └── PassesAlreadyUsedError
    │   └── RefundStepError
    │       ├── PassCancellationError
    │       └── RefundCompletionError
    └── UsageLedgerError
        └── PassNotRedeemableError
"""
import logging
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)


class TourpassBaseError(Exception):
    """
    Base exception for all Tourpass custom errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        severity: P0-P3 severity level
        status_code: HTTP status the API layer reports for this error
    """

    default_code: str = "TOURPASS_ERROR"
    default_severity: str = "P2"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# REFUND ERRORS
# =============================================================================

class RefundError(TourpassBaseError):
    """Base exception for refund workflow errors."""
    default_code = "REFUND_ERROR"


class RefundPreconditionError(RefundError):
    """Wrong caller, missing field or wrong source state. Nothing was mutated."""
    default_code = "REFUND_PRECONDITION_FAILED"
    default_severity = "P3"
    status_code = 400


class OrderNotFoundError(RefundPreconditionError):
    """Order does not exist or belongs to another customer."""
    default_code = "ORDER_NOT_FOUND"
    status_code = 404

    def __init__(self, order_id: Any, **kwargs):
        details = kwargs.pop("details", {})
        details["order_id"] = order_id
        super().__init__("Order not found", details=details, **kwargs)


class RefundNotFoundError(RefundPreconditionError):
    """Refund request does not exist (or is not visible to the caller)."""
    default_code = "REFUND_NOT_FOUND"
    status_code = 404

    def __init__(self, refund_request_id: Any, **kwargs):
        details = kwargs.pop("details", {})
        details["refund_request_id"] = refund_request_id
        super().__init__("Refund request not found", details=details, **kwargs)


class RefundPermissionError(RefundPreconditionError):
    """Caller is not allowed to perform the action."""
    default_code = "REFUND_FORBIDDEN"
    status_code = 403


class InvalidRefundTransitionError(RefundPreconditionError):
    """Review action attempted from a state that does not allow it."""
    default_code = "INVALID_REFUND_TRANSITION"

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        allowed_statuses: Optional[List[str]] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "current_status": current_status,
            "allowed_statuses": allowed_statuses or [],
        })
        super().__init__(message, details=details, **kwargs)


class RefundEligibilityError(RefundError):
    """Order cannot enter the refund workflow. Nothing was mutated."""
    default_code = "REFUND_NOT_ELIGIBLE"
    default_severity = "P3"
    status_code = 400


class OrderNotRefundableError(RefundEligibilityError):
    """Order is already refunded or cancelled."""
    default_code = "ORDER_NOT_REFUNDABLE"


class DuplicateRefundError(RefundEligibilityError):
    """Another refund request for the order is in flight or completed."""
    default_code = "DUPLICATE_REFUND_REQUEST"

    def __init__(self, order_id: Any, **kwargs):
        details = kwargs.pop("details", {})
        details["order_id"] = order_id
        super().__init__(
            "A refund request for this order is already in progress or has been completed",
            details=details,
            **kwargs
        )


class PassesAlreadyUsedError(RefundEligibilityError):
    """At least one pass on the order has been consumed."""
    default_code = "PASSES_ALREADY_USED"

    def __init__(self, message: str, pass_ids: Optional[List[int]] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["pass_ids"] = pass_ids or []
        super().__init__(message, details=details, **kwargs)


class RefundStepError(RefundError):
    """A mandatory step of a review action failed. The caller should retry."""
    default_code = "REFUND_STEP_FAILED"
    default_severity = "P1"
    status_code = 500


class PassCancellationError(RefundStepError):
    """Batched cancellation of the remaining passes failed."""
    default_code = "PASS_CANCELLATION_FAILED"


class RefundCompletionError(RefundStepError):
    """Order could not be marked refunded after passes were cancelled."""
    default_code = "REFUND_COMPLETION_FAILED"
    default_severity = "P0"


# =============================================================================
# USAGE LEDGER ERRORS
# =============================================================================

class UsageLedgerError(TourpassBaseError):
    """Base exception for redemption ledger errors."""
    default_code = "USAGE_LEDGER_ERROR"
    status_code = 400


class PassNotRedeemableError(UsageLedgerError):
    """Pass is missing or not in a redeemable status."""
    default_code = "PASS_NOT_REDEEMABLE"
    default_severity = "P3"

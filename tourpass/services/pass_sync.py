"""
Pass State Synchronizer

The only code allowed to change pass status as a side effect of a refund:
- suspend: refund requested, passes parked with their prior status saved
- reactivate: refund rejected, prior status restored
- force_cancel_remaining: refund completing, every live pass cancelled

suspend and reactivate are best-effort per pass: each pass is written in its
own savepoint and a failing pass is reported in PassSyncResult without
stopping the loop. force_cancel_remaining is a single UPDATE and either
cancels every matched pass or none.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Dict, Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tourpass.core.exceptions import PassCancellationError
from tourpass.models import PurchasedPass, PassStatus

logger = logging.getLogger(__name__)

SUSPENDABLE_PASS_STATUSES = (
    PassStatus.ACTIVE,
    PassStatus.PENDING,
    PassStatus.PENDING_ACTIVATION,
)

CANCELLABLE_PASS_STATUSES = (
    PassStatus.ACTIVE,
    PassStatus.SUSPENDED,
    PassStatus.PENDING,
    PassStatus.PENDING_ACTIVATION,
)


@dataclass
class PassSyncResult:
    """Per-pass outcome of a suspend or reactivate run."""
    operation: str
    order_id: int
    succeeded: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    errors: Dict[int, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def record_failure(self, pass_id: int, error: Exception):
        self.failed.append(pass_id)
        self.errors[pass_id] = str(error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "order_id": self.order_id,
            "succeeded": list(self.succeeded),
            "failed": list(self.failed),
            "errors": {str(k): v for k, v in self.errors.items()},
        }


class PassStateSynchronizer:

    @staticmethod
    async def _load_passes(db: AsyncSession, order_id: int, statuses) -> List[PurchasedPass]:
        result = await db.execute(
            select(PurchasedPass)
            .where(
                PurchasedPass.order_id == order_id,
                PurchasedPass.status.in_(statuses),
            )
            .order_by(PurchasedPass.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def suspend(db: AsyncSession, order_id: int) -> PassSyncResult:
        """
        Suspend every live pass on the order.

        An existing previous_status is never overwritten, so a pass
        suspended twice still remembers the status it had before the
        first suspension.
        """
        outcome = PassSyncResult(operation="suspend", order_id=order_id)
        passes = await PassStateSynchronizer._load_passes(db, order_id, SUSPENDABLE_PASS_STATUSES)

        for purchased_pass in passes:
            pass_id = purchased_pass.id
            try:
                async with db.begin_nested():
                    purchased_pass.previous_status = purchased_pass.previous_status or purchased_pass.status
                    purchased_pass.status = PassStatus.SUSPENDED
                    await db.flush()
                outcome.succeeded.append(pass_id)
            except SQLAlchemyError as e:
                logger.error(f"Failed to suspend pass {pass_id} for order {order_id}: {e}")
                outcome.record_failure(pass_id, e)

        logger.info(
            f"Suspended {len(outcome.succeeded)} pass(es) for order {order_id} "
            f"({len(outcome.failed)} failed)"
        )
        return outcome

    @staticmethod
    async def reactivate(db: AsyncSession, order_id: int) -> PassSyncResult:
        """Restore every suspended pass on the order to its prior status."""
        outcome = PassSyncResult(operation="reactivate", order_id=order_id)
        passes = await PassStateSynchronizer._load_passes(db, order_id, (PassStatus.SUSPENDED,))

        for purchased_pass in passes:
            pass_id = purchased_pass.id
            try:
                async with db.begin_nested():
                    purchased_pass.status = purchased_pass.inferred_prior_status()
                    purchased_pass.previous_status = None
                    await db.flush()
                outcome.succeeded.append(pass_id)
            except SQLAlchemyError as e:
                logger.error(f"Failed to reactivate pass {pass_id} for order {order_id}: {e}")
                outcome.record_failure(pass_id, e)

        logger.info(
            f"Reactivated {len(outcome.succeeded)} pass(es) for order {order_id} "
            f"({len(outcome.failed)} failed)"
        )
        return outcome

    @staticmethod
    async def force_cancel_remaining(db: AsyncSession, order_id: int) -> int:
        """
        Cancel every live or suspended pass on the order in one statement.

        Returns:
            Number of passes cancelled (0 when re-run on an already
            cancelled order)

        Raises:
            PassCancellationError: the UPDATE failed; no pass was changed
        """
        try:
            async with db.begin_nested():
                result = await db.execute(
                    update(PurchasedPass)
                    .where(
                        PurchasedPass.order_id == order_id,
                        PurchasedPass.status.in_(CANCELLABLE_PASS_STATUSES),
                    )
                    .values(status=PassStatus.CANCELLED)
                    .execution_options(synchronize_session="fetch")
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to cancel passes for order {order_id}: {e}")
            raise PassCancellationError(
                "Failed to cancel remaining passes for this order",
                details={"order_id": order_id},
            ) from e

        cancelled = result.rowcount or 0
        logger.info(f"Cancelled {cancelled} remaining pass(es) for order {order_id}")
        return cancelled

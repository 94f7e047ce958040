"""
Database Migration Script for the refund lifecycle engine

Creates or upgrades:
- pass_status / refund_* ENUM types
- purchased_passes.previous_status (typed column), backfilled from the
  legacy metadata->>'previous_status' value
- venue_visits: usage ledger
- refund_requests with the partial unique index that allows one in-flight
  or completed request per order
- activity_logs, order_timeline_events: append-only audit tables
- admin_notifications: per-admin inbox for new refund requests

users and orders are owned by the commerce schema and must already exist.

This is an idempotent migration - safe to run multiple times.
"""
import asyncio
import logging
from sqlalchemy import text

logger = logging.getLogger(__name__)

PASS_STATUSES = ("pending", "pending_activation", "active", "suspended", "cancelled", "expired", "used")

ENUM_TYPES = {
    "pass_status": PASS_STATUSES,
    "pass_previous_status": PASS_STATUSES,
    "refund_status": ("pending", "under_review", "approved", "rejected", "completed", "cancelled"),
    "refund_reason_type": ("not_as_described", "technical_issue", "duplicate_purchase", "changed_mind", "other"),
    "refund_method": ("original_payment", "bank_transfer", "store_credit"),
}


def create_enum_sql(type_name: str, values) -> str:
    labels = ", ".join(f"'{v}'" for v in values)
    return f"""
        DO $$
        BEGIN
            IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = '{type_name}') THEN
                CREATE TYPE {type_name} AS ENUM ({labels});
            END IF;
        END
        $$;
    """


async def migrate_refund_lifecycle_tables(engine):
    """Create refund lifecycle tables if they don't exist."""
    logger.info("Starting refund lifecycle tables migration...")

    async with engine.begin() as conn:
        # ==================== ENUM types ====================
        for type_name, values in ENUM_TYPES.items():
            await conn.execute(text(create_enum_sql(type_name, values)))
            logger.info(f"Created/verified {type_name} ENUM")

        # ==================== purchased_passes table ====================
        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS purchased_passes (
                id SERIAL PRIMARY KEY,
                order_id INTEGER NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
                customer_id INTEGER REFERENCES users(id) ON DELETE SET NULL,

                pass_name VARCHAR(255) NOT NULL,
                pass_type VARCHAR(50),

                status pass_status NOT NULL DEFAULT 'pending_activation',
                previous_status pass_previous_status,

                usage_count INTEGER NOT NULL DEFAULT 0,
                metadata JSONB DEFAULT '{}'::jsonb,

                activation_date TIMESTAMP WITH TIME ZONE,
                expiry_date TIMESTAMP WITH TIME ZONE,

                created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
                updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),

                CONSTRAINT check_pass_usage_count_non_negative CHECK (usage_count >= 0)
            )
        """))

        # Existing deployments: add the typed column and move the saved status out of metadata
        await conn.execute(text("""
            ALTER TABLE purchased_passes
            ADD COLUMN IF NOT EXISTS previous_status pass_previous_status
        """))
        result = await conn.execute(text("""
            UPDATE purchased_passes
            SET previous_status = (metadata->>'previous_status')::pass_previous_status,
                metadata = metadata - 'previous_status'
            WHERE previous_status IS NULL
              AND metadata ? 'previous_status'
              AND metadata->>'previous_status' IN (
                  'pending', 'pending_activation', 'active', 'suspended',
                  'cancelled', 'expired', 'used'
              )
        """))
        logger.info(f"Backfilled previous_status on {result.rowcount} pass(es)")

        for idx_sql in [
            "CREATE INDEX IF NOT EXISTS ix_purchased_passes_order_id ON purchased_passes(order_id)",
            "CREATE INDEX IF NOT EXISTS ix_purchased_passes_customer_id ON purchased_passes(customer_id)",
            "CREATE INDEX IF NOT EXISTS ix_purchased_passes_status ON purchased_passes(status)",
            "CREATE INDEX IF NOT EXISTS ix_purchased_passes_order_status ON purchased_passes(order_id, status)",
        ]:
            await conn.execute(text(idx_sql))
        logger.info("Created/verified purchased_passes table")

        # ==================== venue_visits table ====================
        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS venue_visits (
                id SERIAL PRIMARY KEY,
                purchased_pass_id INTEGER NOT NULL REFERENCES purchased_passes(id) ON DELETE CASCADE,
                customer_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
                business_id INTEGER NOT NULL,
                status VARCHAR(20) NOT NULL DEFAULT 'completed',
                visit_date TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                CONSTRAINT check_venue_visit_status CHECK (status IN ('pending', 'completed', 'cancelled'))
            )
        """))
        for idx_sql in [
            "CREATE INDEX IF NOT EXISTS ix_venue_visits_purchased_pass_id ON venue_visits(purchased_pass_id)",
            "CREATE INDEX IF NOT EXISTS ix_venue_visits_business_id ON venue_visits(business_id)",
            "CREATE INDEX IF NOT EXISTS ix_venue_visits_pass_status ON venue_visits(purchased_pass_id, status)",
        ]:
            await conn.execute(text(idx_sql))
        logger.info("Created/verified venue_visits table")

        # ==================== refund_requests table ====================
        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS refund_requests (
                id SERIAL PRIMARY KEY,
                request_number VARCHAR(50) UNIQUE NOT NULL,

                order_id INTEGER NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
                customer_id INTEGER REFERENCES users(id) ON DELETE SET NULL,

                status refund_status NOT NULL DEFAULT 'pending',

                reason_type refund_reason_type NOT NULL,
                reason_text TEXT NOT NULL,
                requested_amount NUMERIC(12, 2) NOT NULL,

                refund_method refund_method,
                refund_amount NUMERIC(12, 2),
                rejection_reason TEXT,
                admin_notes TEXT,

                assigned_to INTEGER REFERENCES users(id) ON DELETE SET NULL,
                assigned_at TIMESTAMP WITH TIME ZONE,
                reviewed_by INTEGER REFERENCES users(id) ON DELETE SET NULL,
                reviewed_at TIMESTAMP WITH TIME ZONE,

                refund_processed_at TIMESTAMP WITH TIME ZONE,
                refund_transaction_id VARCHAR(100),

                created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
                updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),

                CONSTRAINT check_refund_requested_amount_positive CHECK (requested_amount > 0),
                CONSTRAINT check_refund_amount_positive CHECK (refund_amount IS NULL OR refund_amount > 0)
            )
        """))
        for idx_sql in [
            "CREATE INDEX IF NOT EXISTS ix_refund_requests_order_id ON refund_requests(order_id)",
            "CREATE INDEX IF NOT EXISTS ix_refund_requests_customer_id ON refund_requests(customer_id)",
            "CREATE INDEX IF NOT EXISTS ix_refund_requests_status ON refund_requests(status)",
            "CREATE INDEX IF NOT EXISTS ix_refund_requests_status_created ON refund_requests(status, created_at)",
            "CREATE INDEX IF NOT EXISTS ix_refund_requests_customer ON refund_requests(customer_id, created_at)",
        ]:
            await conn.execute(text(idx_sql))

        # One in-flight or completed request per order
        await conn.execute(text("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_refund_requests_order_in_flight
            ON refund_requests(order_id)
            WHERE status IN ('pending', 'under_review', 'approved', 'completed')
        """))
        logger.info("Created/verified refund_requests table")

        # ==================== activity_logs table ====================
        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS activity_logs (
                id BIGSERIAL PRIMARY KEY,
                user_type VARCHAR(20) NOT NULL,
                user_id INTEGER,
                action VARCHAR(100) NOT NULL,
                description TEXT,
                category VARCHAR(50) NOT NULL DEFAULT 'refunds',
                details JSONB DEFAULT '{}'::jsonb,
                created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
            )
        """))
        for idx_sql in [
            "CREATE INDEX IF NOT EXISTS ix_activity_logs_user ON activity_logs(user_type, user_id, created_at)",
            "CREATE INDEX IF NOT EXISTS ix_activity_logs_action ON activity_logs(action)",
        ]:
            await conn.execute(text(idx_sql))
        logger.info("Created/verified activity_logs table")

        # ==================== admin_notifications table ====================
        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS admin_notifications (
                id BIGSERIAL PRIMARY KEY,
                admin_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                type VARCHAR(20) NOT NULL DEFAULT 'info',
                title VARCHAR(255) NOT NULL,
                message TEXT NOT NULL,
                link VARCHAR(255),
                details JSONB DEFAULT '{}'::jsonb,
                is_read BOOLEAN NOT NULL DEFAULT FALSE,
                created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
            )
        """))
        await conn.execute(text(
            "CREATE INDEX IF NOT EXISTS ix_admin_notifications_admin_unread "
            "ON admin_notifications(admin_id, is_read, created_at)"
        ))
        logger.info("Created/verified admin_notifications table")

        # ==================== order_timeline_events table ====================
        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS order_timeline_events (
                id BIGSERIAL PRIMARY KEY,
                order_id INTEGER NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
                event_type VARCHAR(50) NOT NULL,
                title VARCHAR(255) NOT NULL,
                description TEXT,
                details JSONB DEFAULT '{}'::jsonb,
                actor_type VARCHAR(20) NOT NULL,
                actor_id INTEGER,
                created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
            )
        """))
        await conn.execute(text(
            "CREATE INDEX IF NOT EXISTS ix_order_timeline_events_order_id ON order_timeline_events(order_id)"
        ))
        logger.info("Created/verified order_timeline_events table")

    logger.info("Refund lifecycle tables migration complete!")


async def run_migration():
    """Run the migration using the app's database engine."""
    from tourpass.core.database import engine

    await migrate_refund_lifecycle_tables(engine)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_migration())

from tourpass.models.user import User
from tourpass.models.order import Order, OrderStatus, PaymentStatus
from tourpass.models.purchased_pass import PurchasedPass, PassStatus
from tourpass.models.venue_visit import VenueVisit, VisitStatus
from tourpass.models.refund import (
    RefundRequest,
    RefundStatus,
    RefundReasonType,
    RefundMethod,
    ReviewAction,
)
from tourpass.models.activity_log import (
    ActivityLog,
    AdminNotification,
    NotificationType,
    OrderTimelineEvent,
    ActorType,
    TimelineEventType,
)

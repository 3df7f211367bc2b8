"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from sellify.models.base import Base
from sellify.models.user import User
from sellify.models.checkout_page import CheckoutPage
from sellify.models.submission import Submission, SubmissionPaymentStatus
from sellify.models.payment import Payment, PaymentStatus
from sellify.models.webhook_event import WebhookEvent, WebhookEventStatus

# Export all for convenience
__all__ = [
    "Base", "User", "CheckoutPage", "Submission", "SubmissionPaymentStatus",
    "Payment", "PaymentStatus", "WebhookEvent", "WebhookEventStatus"
]

"""Payment model"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship

from sellify.models.base import Base, utcnow


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


TERMINAL_PAYMENT_STATUSES = frozenset({
    PaymentStatus.COMPLETED,
    PaymentStatus.FAILED,
    PaymentStatus.CANCELLED,
    PaymentStatus.REFUNDED,
})

# Status only moves forward. A failed attempt can still be superseded by a
# successful one on the same checkout session; nothing returns to pending.
ALLOWED_PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.PROCESSING, PaymentStatus.COMPLETED,
        PaymentStatus.FAILED, PaymentStatus.CANCELLED,
    }),
    PaymentStatus.PROCESSING: frozenset({
        PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED,
    }),
    PaymentStatus.FAILED: frozenset({PaymentStatus.COMPLETED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


class Payment(Base):
    """One Stripe checkout session and its payment intent"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    page_id = Column(Integer, ForeignKey("checkout_pages.id", ondelete="SET NULL"), nullable=True, index=True)
    submission_id = Column(Integer, ForeignKey("submissions.id", ondelete="SET NULL"), nullable=True, unique=True)

    # Sellify-minted reference, copied into session and payment intent metadata
    reference = Column(String(64), unique=True, nullable=False, index=True)

    # Stripe identifiers
    stripe_session_id = Column(String(255), unique=True, nullable=False, index=True)
    stripe_payment_intent_id = Column(String(255), unique=True, nullable=True, index=True)
    stripe_account_id = Column(String(255), nullable=False)

    # Amounts in minor units
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), default="usd", nullable=False)
    application_fee_amount = Column(Integer, nullable=True)

    status = Column(String(20), default=PaymentStatus.PENDING.value, nullable=False, index=True)

    customer_email = Column(String(255), nullable=True)
    customer_name = Column(String(255), nullable=True)
    stripe_metadata = Column("metadata", JSON, default=dict, nullable=False)

    payment_completed_at = Column(DateTime(timezone=True), nullable=True)
    stripe_created_at = Column(DateTime(timezone=True), nullable=True)

    # Raw gateway error text, internal only
    last_error = Column(Text, nullable=True)

    webhook_processed = Column(Boolean, default=False, nullable=False)
    webhook_processed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="payments")
    page = relationship("CheckoutPage", back_populates="payments")
    submission = relationship("Submission", back_populates="payment")

    @property
    def status_enum(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status_enum in TERMINAL_PAYMENT_STATUSES

    def can_transition_to(self, target: PaymentStatus) -> bool:
        return target in ALLOWED_PAYMENT_TRANSITIONS[self.status_enum]

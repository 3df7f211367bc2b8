"""Submission model"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey
from sqlalchemy.orm import relationship

from sellify.models.base import Base, utcnow


class SubmissionPaymentStatus(str, enum.Enum):
    NONE = "none"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Submission(Base):
    """One filled-in form on a checkout page"""
    __tablename__ = "submissions"

    id = Column(Integer, primary_key=True, index=True)
    page_id = Column(Integer, ForeignKey("checkout_pages.id", ondelete="CASCADE"), nullable=False, index=True)
    form_data = Column(JSON, nullable=False)
    payment_status = Column(String(20), default=SubmissionPaymentStatus.NONE.value, nullable=False, index=True)
    customer_email = Column(String(255), nullable=True)
    customer_name = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    page = relationship("CheckoutPage", back_populates="submissions")
    payment = relationship("Payment", back_populates="submission", uselist=False)

    @property
    def payment_id(self):
        return self.payment.id if self.payment else None

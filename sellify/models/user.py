"""User model"""
from datetime import timedelta

from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.orm import relationship

from sellify.core.config import settings
from sellify.models.base import Base, utcnow


def default_trial_expiry():
    return utcnow() + timedelta(days=settings.TRIAL_DURATION_DAYS)


class User(Base):
    """Seller accounts"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=True)
    plan = Column(String(20), default="free", nullable=False)  # 'free', 'builder', 'pro'
    trial_expires_at = Column(DateTime(timezone=True), default=default_trial_expiry, nullable=True)
    is_verified = Column(Boolean, default=False, nullable=False)

    # Stripe: customer for billing the seller, connected account for payouts
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    stripe_account_id = Column(String(255), nullable=True, unique=True, index=True)
    stripe_charges_enabled = Column(Boolean, default=False, nullable=False)
    stripe_payouts_enabled = Column(Boolean, default=False, nullable=False)
    stripe_details_submitted = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    pages = relationship("CheckoutPage", back_populates="user", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="user")

"""CheckoutPage model"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Numeric, JSON, ForeignKey
from sqlalchemy.orm import relationship

from sellify.models.base import Base, utcnow


class CheckoutPage(Base):
    """A seller's no-code checkout page"""
    __tablename__ = "checkout_pages"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    title = Column(String(255), nullable=False)
    product_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)  # Major currency units
    currency = Column(String(3), default="usd", nullable=False)
    fields = Column(JSON, default=list, nullable=False)  # [{label, type, required}]
    order_bumps = Column(JSON, default=list, nullable=False)  # [{title, price, recurring}]
    success_redirect_url = Column(String(2048), nullable=True)
    cancel_redirect_url = Column(String(2048), nullable=True)
    layout_style = Column(String(20), default="standard", nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="pages")
    submissions = relationship("Submission", back_populates="page", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="page")

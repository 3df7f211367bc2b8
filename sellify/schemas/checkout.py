"""Pydantic schemas for Stripe Connect and checkout"""
from typing import Optional

from pydantic import BaseModel


class CheckoutSessionRequest(BaseModel):
    submission_id: Optional[int] = None

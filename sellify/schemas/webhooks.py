"""Pydantic schemas for webhook endpoints"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class MockPaymentRequest(BaseModel):
    """Body of the mock checkout completion call, camelCase as sent by the frontend"""
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(None, alias="sessionId")
    form_data: Optional[Dict[str, Any]] = Field(None, alias="formData")
    customer_email: Optional[str] = Field(None, alias="customerEmail")

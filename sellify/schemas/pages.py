"""Pydantic schemas for checkout pages and submissions"""
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

FieldType = Literal["text", "email", "number", "textarea", "checkbox"]
LayoutStyle = Literal["standard", "modern", "minimalist"]


class PageField(BaseModel):
    label: str = Field(min_length=1, max_length=255)
    type: FieldType = "text"
    required: bool = False


class OrderBump(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    price: Decimal = Field(ge=0)
    recurring: bool = False


class PageCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    product_name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    price: Decimal = Field(ge=0)
    currency: str = Field("usd", min_length=3, max_length=3)
    fields: List[PageField] = []
    order_bumps: List[OrderBump] = []
    success_redirect_url: Optional[str] = None
    cancel_redirect_url: Optional[str] = None
    layout_style: LayoutStyle = "standard"

    @field_validator("currency")
    @classmethod
    def lowercase_currency(cls, v):
        return v.lower()


class PageUpdate(BaseModel):
    """Partial update; only fields that were sent are applied"""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    slug: Optional[str] = Field(None, min_length=1, max_length=255)
    product_name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    fields: Optional[List[PageField]] = None
    order_bumps: Optional[List[OrderBump]] = None
    success_redirect_url: Optional[str] = None
    cancel_redirect_url: Optional[str] = None
    layout_style: Optional[LayoutStyle] = None

    @field_validator("currency")
    @classmethod
    def lowercase_currency(cls, v):
        return v.lower() if v else v


class SubmissionCreate(BaseModel):
    form_data: Dict[str, Any]
    customer_name: Optional[str] = None

# sourcing_service/schemas/rfq.py
from pydantic import BaseModel, Field, model_validator
from typing import Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum


class RFQStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class RFQCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category_id: str
    quantity: Optional[int] = Field(None, ge=1)
    budget_min: Optional[Decimal] = Field(None, ge=0)
    budget_max: Optional[Decimal] = Field(None, ge=0)
    delivery_timeline: Optional[str] = Field(None, max_length=100)
    delivery_location: Optional[str] = None
    expires_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_budget(self):
        if self.budget_min is not None and self.budget_max is not None:
            if self.budget_min > self.budget_max:
                raise ValueError("budget_min must be <= budget_max")
        return self


class RFQSummary(BaseModel):
    id: str
    buyer_id: str
    title: str
    category_id: str
    quantity: Optional[int] = None
    budget_min: Optional[Decimal] = None
    budget_max: Optional[Decimal] = None
    delivery_timeline: Optional[str] = None
    status: RFQStatus
    expires_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

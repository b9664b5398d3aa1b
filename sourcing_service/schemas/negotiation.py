# sourcing_service/schemas/negotiation.py
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from enum import Enum


class OfferType(str, Enum):
    ORIGINAL = "original"
    COUNTER = "counter"
    FINAL = "final"


class NegotiationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class NegotiationAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    COUNTER = "counter"


class NegotiationSummaryStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# --- Requests ---

class CounterOfferCreate(BaseModel):
    counter_price: Decimal = Field(..., gt=0)
    counter_terms: Optional[str] = None
    valid_until: Optional[datetime] = None
    message: Optional[str] = Field(None, max_length=2000)


class CounterOfferReply(BaseModel):
    action: NegotiationAction
    counter_price: Optional[Decimal] = Field(None, gt=0)
    counter_terms: Optional[str] = None
    valid_until: Optional[datetime] = None
    message: Optional[str] = Field(None, max_length=2000)


class AutoConversionSettings(BaseModel):
    max_negotiation_rounds: int = Field(5, ge=1)
    auto_accept_threshold: Optional[float] = Field(5.0, ge=0)  # percent of original price
    negotiation_timeout: int = Field(48, ge=0)  # hours


# --- Responses ---

class ParticipantSummary(BaseModel):
    id: str
    business_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    verification_tier: str

    model_config = {"from_attributes": True}


class NegotiationEntryResponse(BaseModel):
    id: str
    quote_id: str
    round_number: int
    from_user_id: str
    to_user_id: str
    offer_type: OfferType
    price: Decimal
    terms: Optional[str] = None
    message: Optional[str] = None
    status: NegotiationStatus
    valid_until: Optional[datetime] = None
    created_at: datetime
    from_user: Optional[ParticipantSummary] = None
    to_user: Optional[ParticipantSummary] = None

    model_config = {"from_attributes": True}


class NegotiationSummary(BaseModel):
    quote_id: str
    original_price: float
    current_price: float
    price_reduction: float
    price_reduction_percentage: float
    negotiation_rounds: int
    status: NegotiationSummaryStatus
    last_activity: datetime
    history: List[NegotiationEntryResponse] = []


class ConversionResult(BaseModel):
    converted: bool
    order_id: Optional[str] = None
    quote_id: Optional[str] = None
    negotiation_id: Optional[str] = None
    final_price: Optional[Decimal] = None


class NegotiationSweepResult(BaseModel):
    expired_count: int = 0
    processed_negotiations: List[str] = []
    reverted_quotes: List[str] = []


class AutoConversionResult(BaseModel):
    converted_count: int = 0
    converted_negotiations: List[str] = []
    failed_negotiations: List[str] = []


class UserNegotiationStats(BaseModel):
    total_negotiations: int = 0
    active_negotiations: int = 0
    completed_negotiations: int = 0
    average_price_reduction: float = 0
    success_rate: float = 0
    average_negotiation_rounds: float = 0

# sourcing_service/schemas/quote.py
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sourcing_service.schemas.rfq import RFQSummary


# --- Enums ---

class QuoteStatus(str, Enum):
    PENDING = "pending"
    NEGOTIATING = "negotiating"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    WITHDRAWN = "withdrawn"


class VerificationTier(str, Enum):
    BASIC = "basic"
    STANDARD = "standard"
    ENHANCED = "enhanced"
    PREMIUM = "premium"


class QuoteSortField(str, Enum):
    CREATED_AT = "created_at"
    TOTAL_PRICE = "total_price"
    VALID_UNTIL = "valid_until"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


OPEN_QUOTE_STATUSES = {QuoteStatus.PENDING.value, QuoteStatus.NEGOTIATING.value}


# --- Create / Update ---

class QuoteItemCreate(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    unit_price: Decimal = Field(..., ge=0)
    total_price: Decimal = Field(..., ge=0)


class QuoteCreate(BaseModel):
    rfq_id: str
    total_price: Decimal = Field(..., gt=0)
    items: List[QuoteItemCreate] = []
    delivery_timeline: Optional[str] = Field(None, max_length=100)
    terms_conditions: Optional[str] = None
    valid_until: Optional[datetime] = None


class QuoteUpdate(BaseModel):
    total_price: Optional[Decimal] = Field(None, gt=0)
    delivery_timeline: Optional[str] = Field(None, max_length=100)
    terms_conditions: Optional[str] = None
    valid_until: Optional[datetime] = None


class RejectQuoteRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class QuoteFilters(BaseModel):
    rfq_id: Optional[str] = None
    seller_id: Optional[str] = None
    status: QuoteStatus = QuoteStatus.PENDING
    min_price: Optional[Decimal] = Field(None, ge=0)
    max_price: Optional[Decimal] = Field(None, ge=0)
    valid_only: bool = False
    page: int = Field(1, ge=1)
    page_size: int = Field(20, ge=1)
    sort_by: QuoteSortField = QuoteSortField.CREATED_AT
    sort_order: SortOrder = SortOrder.DESC

    @model_validator(mode="after")
    def validate_price_range(self):
        if self.min_price is not None and self.max_price is not None:
            if self.min_price > self.max_price:
                raise ValueError("min_price must be <= max_price")
        return self


# --- Responses ---

class SellerSummary(BaseModel):
    id: str
    business_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    verification_tier: str

    model_config = {"from_attributes": True}


class QuoteItemResponse(BaseModel):
    id: str
    product_id: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    model_config = {"from_attributes": True}


class QuoteResponse(BaseModel):
    id: str
    rfq_id: str
    seller_id: str
    total_price: Decimal
    original_price: Decimal
    delivery_timeline: Optional[str] = None
    terms_conditions: Optional[str] = None
    rejection_reason: Optional[str] = None
    valid_until: Optional[datetime] = None
    status: QuoteStatus
    created_at: datetime
    items: List[QuoteItemResponse] = []
    seller: Optional[SellerSummary] = None
    rfq: Optional[RFQSummary] = None
    order_id: Optional[str] = None

    model_config = {"from_attributes": True}


class Pagination(BaseModel):
    page: int
    page_size: int
    total_count: int
    total_pages: int


class QuoteListResult(BaseModel):
    quotes: List[QuoteResponse]
    pagination: Pagination


# --- Comparison ---

class QuoteScore(BaseModel):
    quote_id: str
    price_score: float
    tier_score: float
    delivery_score: float
    terms_score: float
    total_score: float
    reasons: List[str] = []


class BestValue(BaseModel):
    quote_id: str
    score: float
    reasons: List[str] = []


class ComparisonMetrics(BaseModel):
    lowest_price: float = 0
    highest_price: float = 0
    average_price: float = 0
    price_range: float = 0
    scores: List[QuoteScore] = []
    best_value: Optional[BestValue] = None


class QuoteComparison(BaseModel):
    quotes: List[QuoteResponse]
    comparison: ComparisonMetrics


# --- Stats / sweeps ---

class SellerQuoteStats(BaseModel):
    total: int = 0
    pending: int = 0
    negotiating: int = 0
    accepted: int = 0
    rejected: int = 0
    expired: int = 0
    withdrawn: int = 0
    acceptance_rate: float = 0
    average_quote_value: float = 0


class SweepResult(BaseModel):
    expired_count: int = 0
    processed_ids: List[str] = []
    cascaded_ids: List[str] = []

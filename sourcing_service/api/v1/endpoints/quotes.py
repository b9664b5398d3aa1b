# sourcing_service/api/v1/endpoints/quotes.py
"""Seller quote submission and buyer decision endpoints."""
from decimal import Decimal
from typing import Optional

import pydantic
from fastapi import APIRouter, Depends, Query, status

from sourcing_service.api import deps
from sourcing_service.core.exceptions import ValidationError
from sourcing_service.schemas.quote import (
    QuoteComparison,
    QuoteCreate,
    QuoteFilters,
    QuoteListResult,
    QuoteResponse,
    QuoteSortField,
    QuoteStatus,
    QuoteUpdate,
    RejectQuoteRequest,
    SellerQuoteStats,
    SortOrder,
)
from sourcing_service.schemas.token import TokenPayload
from sourcing_service.services.quote_manager import QuoteManager

router = APIRouter(tags=["Quotes"])


@router.post("/quotes", response_model=QuoteResponse, status_code=status.HTTP_201_CREATED)
def create_quote(
    quote_in: QuoteCreate,
    current_user: TokenPayload = Depends(deps.get_current_user),
    manager: QuoteManager = Depends(deps.get_quote_manager),
):
    return manager.create_quote(current_user.sub, quote_in)


@router.get("/quotes", response_model=QuoteListResult)
def list_quotes(
    rfq_id: Optional[str] = Query(None),
    seller_id: Optional[str] = Query(None),
    quote_status: QuoteStatus = Query(QuoteStatus.PENDING, alias="status"),
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    valid_only: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1),
    sort_by: QuoteSortField = Query(QuoteSortField.CREATED_AT),
    sort_order: SortOrder = Query(SortOrder.DESC),
    current_user: TokenPayload = Depends(deps.get_current_user),
    manager: QuoteManager = Depends(deps.get_quote_manager),
):
    try:
        filters = QuoteFilters(
            rfq_id=rfq_id,
            seller_id=seller_id,
            status=quote_status,
            min_price=min_price,
            max_price=max_price,
            valid_only=valid_only,
            page=page,
            page_size=page_size,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except pydantic.ValidationError as e:
        raise ValidationError(str(e.errors()[0]["msg"]), field="price_range")
    return manager.get_quotes(filters)


@router.get("/quotes/{quote_id}", response_model=QuoteResponse)
def get_quote(
    quote_id: str,
    current_user: TokenPayload = Depends(deps.get_current_user),
    manager: QuoteManager = Depends(deps.get_quote_manager),
):
    return manager.get_quote_by_id(quote_id)


@router.patch("/quotes/{quote_id}", response_model=QuoteResponse)
def update_quote(
    quote_id: str,
    quote_in: QuoteUpdate,
    current_user: TokenPayload = Depends(deps.get_current_user),
    manager: QuoteManager = Depends(deps.get_quote_manager),
):
    return manager.update_quote(quote_id, current_user.sub, quote_in)


@router.post("/quotes/{quote_id}/withdraw", response_model=QuoteResponse)
def withdraw_quote(
    quote_id: str,
    current_user: TokenPayload = Depends(deps.get_current_user),
    manager: QuoteManager = Depends(deps.get_quote_manager),
):
    return manager.withdraw_quote(quote_id, current_user.sub)


@router.post("/quotes/{quote_id}/accept", response_model=QuoteResponse)
def accept_quote(
    quote_id: str,
    current_user: TokenPayload = Depends(deps.get_current_user),
    manager: QuoteManager = Depends(deps.get_quote_manager),
):
    """Accept a quote; rejects the RFQ's other open quotes and completes the RFQ."""
    return manager.accept_quote(quote_id, current_user.sub)


@router.post("/quotes/{quote_id}/reject", response_model=QuoteResponse)
def reject_quote(
    quote_id: str,
    body: Optional[RejectQuoteRequest] = None,
    current_user: TokenPayload = Depends(deps.get_current_user),
    manager: QuoteManager = Depends(deps.get_quote_manager),
):
    reason = body.reason if body else None
    return manager.reject_quote(quote_id, current_user.sub, reason)


@router.get("/rfqs/{rfq_id}/quotes/comparison", response_model=QuoteComparison)
def compare_quotes(
    rfq_id: str,
    current_user: TokenPayload = Depends(deps.get_current_user),
    manager: QuoteManager = Depends(deps.get_quote_manager),
):
    return manager.get_quotes_for_comparison(rfq_id, current_user.sub)


@router.get("/sellers/me/quote-stats", response_model=SellerQuoteStats)
def get_my_quote_stats(
    current_user: TokenPayload = Depends(deps.get_current_user),
    manager: QuoteManager = Depends(deps.get_quote_manager),
):
    return manager.get_seller_quote_stats(current_user.sub)

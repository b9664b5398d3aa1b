# sourcing_service/api/v1/endpoints/negotiations.py
"""Counter-offer endpoints."""
from typing import Union

from fastapi import APIRouter, Depends, status

from sourcing_service.api import deps
from sourcing_service.schemas.negotiation import (
    ConversionResult,
    CounterOfferCreate,
    CounterOfferReply,
    NegotiationEntryResponse,
    NegotiationSummary,
    UserNegotiationStats,
)
from sourcing_service.schemas.token import TokenPayload
from sourcing_service.services.negotiation_manager import NegotiationManager

router = APIRouter(tags=["Negotiations"])


@router.post(
    "/quotes/{quote_id}/counter-offers",
    response_model=NegotiationEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_counter_offer(
    quote_id: str,
    offer_in: CounterOfferCreate,
    current_user: TokenPayload = Depends(deps.get_current_user),
    manager: NegotiationManager = Depends(deps.get_negotiation_manager),
):
    return manager.create_counter_offer(current_user.sub, quote_id, offer_in)


@router.get("/quotes/{quote_id}/negotiations", response_model=NegotiationSummary)
def get_negotiation_history(
    quote_id: str,
    current_user: TokenPayload = Depends(deps.get_current_user),
    manager: NegotiationManager = Depends(deps.get_negotiation_manager),
):
    return manager.get_negotiation_history(quote_id)


@router.get("/negotiations/{negotiation_id}", response_model=NegotiationEntryResponse)
def get_negotiation(
    negotiation_id: str,
    current_user: TokenPayload = Depends(deps.get_current_user),
    manager: NegotiationManager = Depends(deps.get_negotiation_manager),
):
    return manager.get_negotiation_by_id(negotiation_id, user_id=current_user.sub)


@router.post(
    "/negotiations/{negotiation_id}/respond",
    response_model=Union[ConversionResult, NegotiationEntryResponse],
)
def respond_to_counter_offer(
    negotiation_id: str,
    reply: CounterOfferReply,
    current_user: TokenPayload = Depends(deps.get_current_user),
    manager: NegotiationManager = Depends(deps.get_negotiation_manager),
):
    """
    Accept, reject or counter an offer addressed to the current user.

    Accepting returns the conversion result with the order id.
    """
    return manager.respond_to_counter_offer(current_user.sub, negotiation_id, reply)


@router.get("/users/me/negotiation-stats", response_model=UserNegotiationStats)
def get_my_negotiation_stats(
    current_user: TokenPayload = Depends(deps.get_current_user),
    manager: NegotiationManager = Depends(deps.get_negotiation_manager),
):
    return manager.get_user_negotiation_stats(current_user.sub)

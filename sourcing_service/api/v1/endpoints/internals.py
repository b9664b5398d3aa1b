# sourcing_service/api/v1/endpoints/internals.py
"""Sweep entrypoints for an external scheduler, guarded by the internal API key."""
from typing import Optional

from fastapi import APIRouter, Depends

from sourcing_service.api import deps
from sourcing_service.schemas.negotiation import (
    AutoConversionResult,
    AutoConversionSettings,
    NegotiationSweepResult,
)
from sourcing_service.services.negotiation_manager import NegotiationManager

router = APIRouter(prefix="/internal", tags=["Internal"])


@router.post("/negotiations/sweep-expired", response_model=NegotiationSweepResult)
def sweep_expired_negotiations(
    api_key: str = Depends(deps.get_internal_api_key),
    manager: NegotiationManager = Depends(deps.get_negotiation_manager),
):
    return manager.process_expired_negotiations()


@router.post("/negotiations/auto-convert", response_model=AutoConversionResult)
def run_auto_conversion(
    conversion_settings: Optional[AutoConversionSettings] = None,
    api_key: str = Depends(deps.get_internal_api_key),
    manager: NegotiationManager = Depends(deps.get_negotiation_manager),
):
    return manager.process_auto_conversion(conversion_settings)

# sourcing_service/api/v1/api.py

from fastapi import APIRouter
from sourcing_service.api.v1.endpoints import (
    quotes,
    negotiations,
    internals,
)

# This is the main router for the v1 API.
api_router = APIRouter()

api_router.include_router(quotes.router)
api_router.include_router(negotiations.router)
api_router.include_router(internals.router)

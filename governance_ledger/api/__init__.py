"""API routes for the Governance Ledger."""

from fastapi import APIRouter

from .governance import router as governance_router

# Main API router
api_router = APIRouter()
api_router.include_router(governance_router)

__all__ = ["api_router"]

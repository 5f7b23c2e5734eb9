"""Governance Ledger: Main FastAPI Application.

Tracks how a multisig team votes on on-chain governance referenda:
reconciles pending multisig votes against the chain, and drives the
team's internal agreement workflow.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .api import api_router
from .core import close_db, get_settings, init_db
from .schemas import ErrorDetail, ErrorResponse
from .services import agreement_guard, deadline_guard, reconciliation_guard

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app_name} {settings.app_version} ({settings.environment})")
    # Production schemas are managed by migrations
    if settings.environment != "production":
        try:
            await init_db()
        except Exception as e:
            logger.warning(f"Could not initialize database: {e}")
    yield
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Governance Ledger API

    - **Vote Reconciliation**: pending multisig votes are confirmed against chain state and the Subscan indexer.
    - **Team Workflow**: members claim, agree, veto or recuse; a referendum is ready to vote once everyone agreed.
    - **Deadline Sweep**: referendums whose voting closed without a team vote are marked not voted.
    - **Agreement Sweep**: agreement transitions are re-applied to waiting and ready referendums.

    Authentication is handled in front of this service.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        ErrorDetail(
            field=".".join(str(part) for part in error.get("loc", ())[1:]) or None,
            message=error.get("msg", ""),
            code=error.get("type", "invalid"),
        )
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(
            error="validation_error",
            message="Request validation failed",
            details=details,
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="internal_error",
            message=f"An unexpected error occurred: {str(exc)[:200]}",
        ).model_dump(),
    )


@app.get("/health", tags=["health"])
async def health_check():
    """Liveness, plus whether each background pass is currently running."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "passes": {
            "reconciliation": reconciliation_guard.running,
            "deadline_sweep": deadline_guard.running,
            "agreement_transitions": agreement_guard.running,
        },
    }


app.include_router(api_router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("governance_ledger.main:app", host="0.0.0.0", port=8000, reload=settings.debug)

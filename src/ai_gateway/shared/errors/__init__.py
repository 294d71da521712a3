"""Global exception handlers — map domain errors to HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse
import structlog

from ai_gateway.domain.exceptions import (
    AllProvidersFailedError,
    BudgetExceededError,
    DomainError,
    ResourceNotFoundError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Register all domain→HTTP exception mappings."""

    @app.exception_handler(ValidationError)
    async def handle_validation(request: Request, exc: ValidationError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=422,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(ResourceNotFoundError)
    async def handle_not_found(request: Request, exc: ResourceNotFoundError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=404,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(BudgetExceededError)
    async def handle_budget(request: Request, exc: BudgetExceededError) -> ORJSONResponse:
        logger.warning("token_budget_exceeded_http", period=exc.period)
        return ORJSONResponse(
            status_code=429,
            content={
                "code": exc.code,
                "message": exc.message,
                "details": {
                    "period": exc.period,
                    "consumed": exc.consumed,
                    "requested": exc.requested,
                    "limit": exc.limit,
                },
            },
        )

    @app.exception_handler(AllProvidersFailedError)
    async def handle_all_failed(request: Request, exc: AllProvidersFailedError) -> ORJSONResponse:
        logger.error("all_providers_failed_http", providers=list(exc.errors), skipped=list(exc.skipped))
        return ORJSONResponse(
            status_code=503,
            content={
                "code": exc.code,
                "message": exc.message,
                "details": {"errors": exc.details(), "skipped": list(exc.skipped)},
            },
        )

    @app.exception_handler(DomainError)
    async def handle_domain(request: Request, exc: DomainError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=400,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("unhandled_exception", error=str(exc))
        return ORJSONResponse(
            status_code=500,
            content={
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            },
        )

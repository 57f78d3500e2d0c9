"""Marketplace order service main application module.

Initializes the FastAPI application and configures middleware,
routers, exception handlers and startup/shutdown events.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketplace.api import (
    cart_router,
    health_router,
    offers_router,
    orders_router,
    payments_router,
)
from marketplace.api.middleware import error_body, setup_middleware
from marketplace.domain.exceptions import DomainError
from marketplace.infrastructure.address_book import AddressBookError, reset_address_book
from marketplace.infrastructure.config import settings
from marketplace.infrastructure.database import dispose_engine
from marketplace.infrastructure.logging import configure_logging
from marketplace.infrastructure.payment_gateway import (
    PaymentGatewayError,
    reset_payment_gateway,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown events."""
    configure_logging(settings.log_level)
    logger.info(
        "Starting marketplace order service",
        version=settings.api_version,
        debug=settings.debug,
        payment_gateway=settings.payment_gateway,
    )

    yield

    logger.info("Shutting down marketplace order service")
    await reset_payment_gateway()
    await reset_address_book()
    await dispose_engine()


app = FastAPI(
    title="Marketplace Orders API",
    description="Multi-seller marketplace carts, checkout, payments and fulfillment",
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_middleware(app)

app.include_router(health_router, tags=["Health"])
app.include_router(offers_router)
app.include_router(cart_router)
app.include_router(orders_router)
app.include_router(payments_router)


# ============================================================================
# Exception Handlers
# ============================================================================


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Map business rule violations to their error code and status."""
    logger.info(
        "Request rejected",
        path=request.url.path,
        error_code=exc.error_code,
        error=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.error_code, exc.message, exc.details, _request_id(request)),
    )


@app.exception_handler(PaymentGatewayError)
async def payment_gateway_error_handler(
    request: Request, exc: PaymentGatewayError
) -> JSONResponse:
    logger.error(
        "Payment gateway error",
        path=request.url.path,
        error=exc.message,
        gateway_status=exc.status_code,
    )
    return JSONResponse(
        status_code=502,
        content=error_body(
            "PAYMENT_GATEWAY_ERROR",
            exc.message,
            {"gateway_status": exc.status_code},
            _request_id(request),
        ),
    )


@app.exception_handler(AddressBookError)
async def address_book_error_handler(request: Request, exc: AddressBookError) -> JSONResponse:
    logger.error(
        "Address book error",
        path=request.url.path,
        error=exc.message,
        upstream_status=exc.status_code,
    )
    return JSONResponse(
        status_code=502,
        content=error_body(
            "ADDRESS_BOOK_ERROR",
            exc.message,
            {"upstream_status": exc.status_code},
            _request_id(request),
        ),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=error_body(
            "VALIDATION_ERROR",
            "Request validation failed",
            {"errors": jsonable_errors(exc)},
            _request_id(request),
        ),
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions with the uniform error body."""
    detail = exc.detail
    if isinstance(detail, dict):
        error_code = detail.get("error_code", "ERROR")
        message = detail.get("message", str(detail))
        details = detail.get("details", {})
    else:
        error_code = "ERROR"
        message = str(detail)
        details = {}

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(error_code, message, details, _request_id(request)),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions with the uniform error body."""
    logger.exception(
        "Unhandled exception in handler",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )
    return JSONResponse(
        status_code=500,
        content=error_body(
            "INTERNAL_ERROR", "An internal error occurred", request_id=_request_id(request)
        ),
    )

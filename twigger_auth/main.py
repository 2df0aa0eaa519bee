"""ASGI entry point: app factory wiring, lifespan and error translation."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from twigger_auth.api.router import api_router
from twigger_auth.config import get_settings
from twigger_auth.database import engine
from twigger_auth.services.exceptions import (
    ConflictError,
    IdentityServiceError,
    InvalidArgumentError,
    NotFoundError,
)

settings = get_settings()
logger = logging.getLogger(__name__)

# Most specific first; anything else is a 500
SERVICE_ERROR_STATUS: list[tuple[type[IdentityServiceError], int]] = [
    (InvalidArgumentError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
]


def status_for_service_error(exc: IdentityServiceError) -> int:
    for error_type, status_code in SERVICE_ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    problem = settings.validate_security()
    if problem:
        logger.error("Configuration: %s", problem)
    logger.info(
        "Sessions last %d days; authentication deadline %.1fs, audit deadline %.1fs",
        settings.session_ttl_days,
        settings.auth_timeout_seconds,
        settings.audit_timeout_seconds,
    )
    yield
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Identity resolution, workspaces and sessions",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {"field": " -> ".join(str(loc) for loc in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Validation error", "errors": errors},
    )


@app.exception_handler(IdentityServiceError)
async def identity_service_error_handler(
    request: Request, exc: IdentityServiceError
) -> JSONResponse:
    status_code = status_for_service_error(exc)
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(
            "%s on %s %s", type(exc).__name__, request.method, request.url.path, exc_info=exc
        )
    # Service error messages carry no emails or subject ids
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An unexpected error occurred. Please try again later."},
    )

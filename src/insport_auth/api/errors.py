"""
Exception handlers - map domain errors to HTTP responses.

Every failure leaves the API as ``{"detail": <stable message>}``.
5xx responses carry a generic message; the cause is logged server-side.
"""

import logging

import psycopg
import redis
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from psycopg_pool import PoolTimeout

from insport_auth.domain.exceptions import (
    AccountLocked,
    AccountPersistenceFailed,
    ChannelDeliveryFailed,
    IdentifierAlreadyRegistered,
    InvalidCredentials,
    InvalidFlowToken,
    InvalidInput,
    InvalidOtp,
    OtpNotFoundOrExpired,
    RateLimitExceeded,
    SignupDetailsExpired,
    SignupError,
    StepNotVerified,
)

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[SignupError], int] = {
    InvalidInput: status.HTTP_400_BAD_REQUEST,
    InvalidOtp: status.HTTP_400_BAD_REQUEST,
    OtpNotFoundOrExpired: status.HTTP_400_BAD_REQUEST,
    SignupDetailsExpired: status.HTTP_400_BAD_REQUEST,
    InvalidFlowToken: status.HTTP_401_UNAUTHORIZED,
    StepNotVerified: status.HTTP_401_UNAUTHORIZED,
    InvalidCredentials: status.HTTP_401_UNAUTHORIZED,
    IdentifierAlreadyRegistered: status.HTTP_409_CONFLICT,
    AccountLocked: status.HTTP_423_LOCKED,
    RateLimitExceeded: status.HTTP_429_TOO_MANY_REQUESTS,
    ChannelDeliveryFailed: status.HTTP_503_SERVICE_UNAVAILABLE,
    AccountPersistenceFailed: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

GENERIC_MESSAGES: dict[type[SignupError], str] = {
    ChannelDeliveryFailed: "Failed to send OTP, please try again later",
    AccountPersistenceFailed: "User creation failed, please try again later",
}


def status_for(exc: SignupError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def message_for(exc: SignupError) -> str:
    for cls in type(exc).__mro__:
        if cls in GENERIC_MESSAGES:
            return GENERIC_MESSAGES[cls]
    if status_for(exc) >= 500:
        return "Internal server error"
    return str(exc) or "Request failed"


async def signup_error_handler(request: Request, exc: SignupError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc, exc_info=exc)
    headers = None
    if isinstance(exc, RateLimitExceeded) and exc.retry_after > 0:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=code, content={"detail": message_for(exc)}, headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        detail = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        detail = "Invalid request"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail})


async def infrastructure_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Infrastructure failure on %s", request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Service temporarily unavailable"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SignupError, signup_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(redis.RedisError, infrastructure_error_handler)
    app.add_exception_handler(psycopg.OperationalError, infrastructure_error_handler)
    app.add_exception_handler(PoolTimeout, infrastructure_error_handler)

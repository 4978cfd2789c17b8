"""
FastAPI dependencies - Dependency injection factories.

This module wires domain services to infrastructure adapters and
provides Depends() factories for injecting them into routes.
Services are built once per application in the lifespan and kept on
``app.state``; tests replace them through ``app.dependency_overrides``.
"""

from collections.abc import Collection
from dataclasses import dataclass, field

import redis
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from psycopg_pool import ConnectionPool

from insport_auth.adapters.repository import PostgresUserRepository
from insport_auth.adapters.session import RedisRateLimiter, RedisSessionStore
from insport_auth.adapters.sms.http_gateway import HttpSmsGatewayChannel
from insport_auth.adapters.smtp.console import ConsoleOtpChannel
from insport_auth.adapters.smtp.smtp_sender import SmtpEmailChannel
from insport_auth.config.settings import Settings, get_settings
from insport_auth.domain import (
    FlowTokenCodec,
    IdentifierKind,
    LockoutPolicy,
    LoginService,
    OtpChannel,
    OtpCipher,
    OtpPolicy,
    OtpService,
    PasswordHasher,
    RateLimiter,
    SignupContext,
    SignupPolicy,
    SignupService,
)
from insport_auth.domain.throttle import enforce

SIGNUP_COOKIE = "signup_token"


@dataclass
class Services:
    """Everything the routes need, built once per application."""

    signup: SignupService
    login: LoginService
    limiter: RateLimiter
    channels: dict[IdentifierKind, OtpChannel] = field(default_factory=dict)

    def close(self) -> None:
        """Release channel clients (the SMS gateway's httpx.Client)."""
        for channel in {id(c): c for c in self.channels.values()}.values():
            close = getattr(channel, "close", None)
            if close is not None:
                close()


def build_channels(settings: Settings) -> dict[IdentifierKind, OtpChannel]:
    """Console delivery for development, SMS gateway + SMTP for live delivery."""
    if settings.otp_delivery == "console":
        console = ConsoleOtpChannel()
        return {IdentifierKind.PHONE: console, IdentifierKind.EMAIL: console}
    return {
        IdentifierKind.PHONE: HttpSmsGatewayChannel(
            url=settings.sms_gateway_url,
            api_key=settings.sms_gateway_api_key,
            timeout=settings.channel_timeout_seconds,
        ),
        IdentifierKind.EMAIL: SmtpEmailChannel(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.smtp_sender,
            username=settings.smtp_username,
            password=settings.smtp_password,
            timeout=settings.channel_timeout_seconds,
            expires_in_minutes=max(1, settings.otp_expiration_seconds // 60),
        ),
    }


def build_services(settings: Settings, pool: ConnectionPool, redis_client: redis.Redis) -> Services:
    """
    Composition root.

    Wires the session store, rate limiter, OTP channels, token codec,
    password hasher and repository into the signup and login services.
    """
    store = RedisSessionStore(redis_client)
    limiter = RedisRateLimiter(redis_client)
    users = PostgresUserRepository(pool)
    hasher = PasswordHasher(
        time_cost=settings.argon2_time_cost,
        memory_cost=settings.argon2_memory_cost,
        parallelism=settings.argon2_parallelism,
    )
    tokens = FlowTokenCodec(
        secret=settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        flow_ttl_seconds=settings.account_creation_token_ttl_seconds,
        access_ttl_seconds=settings.access_token_ttl_seconds,
    )
    channels = build_channels(settings)
    otp = OtpService(
        store=store,
        limiter=limiter,
        cipher=OtpCipher(settings.otp_encryption_key),
        channels=channels,
        policy=OtpPolicy(
            length=settings.otp_length,
            expiration_seconds=settings.otp_expiration_seconds,
            resend_interval_seconds=settings.otp_resend_interval_seconds,
            max_attempts=settings.otp_max_attempts,
        ),
    )
    context = SignupContext(
        store=store,
        limiter=limiter,
        otp=otp,
        tokens=tokens,
        users=users,
        hasher=hasher,
        policy=SignupPolicy(
            signup_data_ttl_seconds=settings.signup_data_ttl_seconds,
            otp_rate_limit=settings.otp_rate_limit,
            otp_rate_window_seconds=settings.otp_rate_window_seconds,
        ),
    )
    login = LoginService(
        users=users,
        hasher=hasher,
        tokens=tokens,
        policy=LockoutPolicy(
            max_attempts=settings.max_login_attempts,
            lock_duration_seconds=settings.lock_duration_seconds,
        ),
    )
    return Services(
        signup=SignupService(context), login=login, limiter=limiter, channels=channels
    )


def get_signup_service(request: Request) -> SignupService:
    """Get the signup service built during app lifespan startup."""
    return request.app.state.services.signup


def get_login_service(request: Request) -> LoginService:
    return request.app.state.services.login


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.services.limiter


# Bearer scheme for OpenAPI documentation; the cookie remains the default carrier
http_bearer = HTTPBearer(auto_error=False)


def get_flow_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(http_bearer),
) -> str | None:
    """
    Extract the signup flow token from the request.

    Precedence: Authorization bearer header, then the ``signup_token``
    cookie. A ``token`` field in the JSON body overrides both; routes
    apply that last step themselves.
    """
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(SIGNUP_COOKIE)


def client_address(request: Request, trusted_proxies: Collection[str] = ()) -> str:
    """
    Address used for the per-IP limit.

    The socket peer, unless the peer is a trusted proxy: then the
    nearest X-Forwarded-For hop that is not itself a trusted proxy.
    Hops further left are client-supplied and never used.
    """
    peer = request.client.host if request.client is not None else "unknown"
    if peer not in trusted_proxies:
        return peer
    forwarded = request.headers.get("x-forwarded-for", "")
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted_proxies:
            return hop
    return hops[0] if hops else peer


def enforce_ip_rate_limit(
    request: Request,
    limiter: RateLimiter = Depends(get_rate_limiter),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Per-IP request limit shared by every /auth route.

    Raises:
        RateLimitExceeded: Too many requests from this address in the window
    """
    enforce(
        limiter,
        f"ip:{client_address(request, settings.trusted_proxies)}",
        settings.ip_rate_limit,
        settings.ip_rate_window_seconds,
        message="Too many requests from this IP, please try again later.",
    )

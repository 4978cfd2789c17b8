"""
API v1 routes.

Defines REST endpoints for account creation (four steps) and login.
Every step returns a fresh flow token, both in the body and as the
``signup_token`` cookie. Domain errors propagate to the handlers in
``insport_auth.api.errors``.

Handlers are plain ``def`` so argon2 hashing and blocking I/O run in
FastAPI's threadpool.
"""

from fastapi import APIRouter, Depends, Response

from insport_auth.api.dependencies import (
    SIGNUP_COOKIE,
    enforce_ip_rate_limit,
    get_flow_token,
    get_login_service,
    get_signup_service,
)
from insport_auth.api.models import (
    CreateAccountRequest,
    EnterDetailsRequest,
    ErrorResponse,
    FlowResponse,
    LoginRequest,
    LoginResponse,
    SetPasswordRequest,
    SetPasswordResponse,
    UserResponse,
    VerifyOtpRequest,
)
from insport_auth.config.settings import Settings, get_settings
from insport_auth.domain import FlowStep, LoginService, SignupService

router = APIRouter(
    prefix="/auth",
    tags=["v1"],
    dependencies=[Depends(enforce_ip_rate_limit)],
)

_BAD_REQUEST = {400: {"model": ErrorResponse, "description": "Invalid input"}}
_TOO_MANY = {429: {"model": ErrorResponse, "description": "Rate limited (see Retry-After)"}}
_UNAUTHORIZED = {401: {"model": ErrorResponse, "description": "Missing, invalid or mismatched flow token"}}


def _flow_response(step: FlowStep, response: Response, settings: Settings) -> FlowResponse:
    response.set_cookie(
        key=SIGNUP_COOKIE,
        value=step.token,
        max_age=settings.account_creation_token_ttl_seconds,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
    )
    return FlowResponse(
        message=step.message,
        state=step.state.value,
        identifier=step.identifier.value,
        token=step.token,
    )


@router.post(
    "/create-account",
    response_model=FlowResponse,
    responses={
        **_BAD_REQUEST,
        409: {"model": ErrorResponse, "description": "Identifier already registered"},
        **_TOO_MANY,
        503: {"model": ErrorResponse, "description": "OTP delivery failed"},
    },
    summary="Step 1: start signup with a phone number or email",
)
def create_account(
    body: CreateAccountRequest,
    response: Response,
    service: SignupService = Depends(get_signup_service),
    settings: Settings = Depends(get_settings),
) -> FlowResponse:
    """Send an OTP to the identifier and open (or restart) its signup flow."""
    step = service.create_account(body.identifier)
    return _flow_response(step, response, settings)


@router.post(
    "/resend-otp",
    response_model=FlowResponse,
    responses={**_BAD_REQUEST, **_UNAUTHORIZED, **_TOO_MANY},
    summary="Re-send the OTP for a pending signup",
)
def resend_otp(
    body: CreateAccountRequest,
    response: Response,
    token: str | None = Depends(get_flow_token),
    service: SignupService = Depends(get_signup_service),
    settings: Settings = Depends(get_settings),
) -> FlowResponse:
    step = service.resend_otp(body.identifier, token=body.token or token)
    return _flow_response(step, response, settings)


@router.post(
    "/verify-otp",
    response_model=FlowResponse,
    responses={**_BAD_REQUEST, **_UNAUTHORIZED, **_TOO_MANY},
    summary="Step 2: verify the OTP",
)
def verify_otp(
    body: VerifyOtpRequest,
    response: Response,
    token: str | None = Depends(get_flow_token),
    service: SignupService = Depends(get_signup_service),
    settings: Settings = Depends(get_settings),
) -> FlowResponse:
    """
    Verify the code sent in step 1 (or to a secondary contact in step 3).

    A wrong code can be retried until the OTP expires or the attempt
    limit burns it.
    """
    step = service.verify_otp(body.identifier, body.otp, token=body.token or token)
    return _flow_response(step, response, settings)


@router.post(
    "/enter-details",
    response_model=FlowResponse,
    responses={
        **_BAD_REQUEST,
        **_UNAUTHORIZED,
        409: {"model": ErrorResponse, "description": "Secondary contact already registered"},
        **_TOO_MANY,
    },
    summary="Step 3: submit profile details",
)
def enter_details(
    body: EnterDetailsRequest,
    response: Response,
    token: str | None = Depends(get_flow_token),
    service: SignupService = Depends(get_signup_service),
    settings: Settings = Depends(get_settings),
) -> FlowResponse:
    """
    Store the draft profile for the token's verified identifier.

    When an unverified contact of the other kind is supplied, the response
    state is AWAITING_OTP for that contact: verify it, then resubmit.
    """
    flow_token = body.token or token
    identifier = service.identify(flow_token)
    step = service.enter_details(
        identifier.value,
        body.first_name,
        body.last_name,
        email=body.email,
        phone=body.phone,
        token=flow_token,
    )
    return _flow_response(step, response, settings)


@router.post(
    "/set-password",
    response_model=SetPasswordResponse,
    responses={
        **_BAD_REQUEST,
        **_UNAUTHORIZED,
        409: {"model": ErrorResponse, "description": "Identifier registered meanwhile"},
        500: {"model": ErrorResponse, "description": "Account could not be persisted"},
    },
    summary="Step 4: set the password and create the account",
)
def set_password(
    body: SetPasswordRequest,
    response: Response,
    token: str | None = Depends(get_flow_token),
    service: SignupService = Depends(get_signup_service),
) -> SetPasswordResponse:
    flow_token = body.token or token
    identifier = service.identify(flow_token)
    account = service.set_password(
        identifier.value, body.password, body.confirm_password, token=flow_token
    )
    response.delete_cookie(SIGNUP_COOKIE)
    return SetPasswordResponse(
        message="Account created successfully",
        user=UserResponse(**account.to_dict()),
    )


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={
        **_BAD_REQUEST,
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        423: {"model": ErrorResponse, "description": "Account temporarily locked"},
        **_TOO_MANY,
    },
    summary="Log in with phone-or-email and password",
)
def login(
    body: LoginRequest,
    service: LoginService = Depends(get_login_service),
) -> LoginResponse:
    outcome = service.login(body.identifier, body.password)
    return LoginResponse(
        message="Login successful",
        token=outcome.access_token,
        user=UserResponse(**outcome.account.to_dict()),
    )

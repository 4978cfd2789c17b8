"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
Presence and format of identifiers, names and passwords are checked by the
domain layer so every step reports missing input the same way.
"""

from pydantic import BaseModel, ConfigDict, Field


class CreateAccountRequest(BaseModel):
    """Request model for step 1 (and for OTP resend)."""

    identifier: str | None = Field(None, description="Phone number (E.164) or email address")
    token: str | None = Field(None, description="Flow token, if not sent as cookie or bearer")


class VerifyOtpRequest(BaseModel):
    """Request model for step 2."""

    identifier: str | None = None
    otp: str | None = Field(None, description="Numeric code received by SMS or email")
    token: str | None = None


class EnterDetailsRequest(BaseModel):
    """Request model for step 3. The identifier comes from the flow token."""

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    token: str | None = None


class SetPasswordRequest(BaseModel):
    """Request model for step 4. The identifier comes from the flow token."""

    model_config = ConfigDict(populate_by_name=True)

    password: str | None = None
    confirm_password: str | None = Field(None, alias="confirmPassword")
    token: str | None = None


class LoginRequest(BaseModel):
    identifier: str | None = None
    password: str | None = None


class FlowResponse(BaseModel):
    """Response model for every signup step that issues a flow token."""

    message: str
    state: str
    identifier: str
    token: str


class UserResponse(BaseModel):
    """Public user representation. Never includes password_hash."""

    id: str
    username: str
    email: str | None
    phone: str | None
    status: str
    role: str
    first_name: str
    last_name: str
    experience_level: str
    created_at: str | None = None


class SetPasswordResponse(BaseModel):
    message: str
    user: UserResponse


class LoginResponse(BaseModel):
    message: str
    token: str
    user: UserResponse


class ErrorResponse(BaseModel):
    """Standard error response model."""

    detail: str

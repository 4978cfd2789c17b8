"""
Domain layer - Pure business logic behind port interfaces.

This package contains the signup state machine, the OTP subsystem and
the login/lockout guard. It defines its own port interfaces for
infrastructure abstraction; adapters live in ``insport_auth.adapters``.
"""

from .crypto import FlowTokenCodec, OtpCipher, PasswordHasher
from .exceptions import (
    AccountLocked,
    AccountPersistenceFailed,
    ChannelDeliveryFailed,
    IdentifierAlreadyRegistered,
    InvalidCredentials,
    InvalidFlowToken,
    InvalidInput,
    InvalidOtp,
    OtpAttemptsExceeded,
    OtpNotFoundOrExpired,
    RateLimitExceeded,
    ResendTooSoon,
    SignupDetailsExpired,
    SignupError,
    StepNotVerified,
    UsernameTaken,
)
from .identifiers import Email, Identifier, IdentifierKind, Phone, parse_identifier
from .login import LockoutPolicy, LoginOutcome, LoginService
from .otp import OtpPolicy, OtpService
from .ports import (
    Account,
    OtpChannel,
    OtpCheck,
    RateLimiter,
    SessionStore,
    SignupState,
    UserRepository,
)
from .signup import FlowStep, SignupContext, SignupPolicy, SignupService

__all__ = [
    "Account",
    "AccountLocked",
    "AccountPersistenceFailed",
    "ChannelDeliveryFailed",
    "Email",
    "FlowStep",
    "FlowTokenCodec",
    "Identifier",
    "IdentifierAlreadyRegistered",
    "IdentifierKind",
    "InvalidCredentials",
    "InvalidFlowToken",
    "InvalidInput",
    "InvalidOtp",
    "LockoutPolicy",
    "LoginOutcome",
    "LoginService",
    "OtpAttemptsExceeded",
    "OtpChannel",
    "OtpCheck",
    "OtpCipher",
    "OtpNotFoundOrExpired",
    "OtpPolicy",
    "OtpService",
    "PasswordHasher",
    "Phone",
    "RateLimitExceeded",
    "RateLimiter",
    "ResendTooSoon",
    "SessionStore",
    "SignupContext",
    "SignupDetailsExpired",
    "SignupError",
    "SignupPolicy",
    "SignupService",
    "SignupState",
    "StepNotVerified",
    "UserRepository",
    "UsernameTaken",
    "parse_identifier",
]

"""
Domain exceptions - Semantic error types for account creation and login.

This module defines domain-specific exceptions that communicate
business rule violations without leaking infrastructure details.
The API layer maps each class to a status code and a stable message.
"""


class SignupError(Exception):
    """Base class for account-creation and login domain errors."""

    pass


class InvalidInput(SignupError):
    """Malformed or missing input, including password mismatch."""

    pass


class IdentifierAlreadyRegistered(SignupError):
    """Phone or email already belongs to an account."""

    pass


class InvalidFlowToken(SignupError):
    """Flow token missing, expired, forged, or bound to another identifier."""

    pass


class StepNotVerified(SignupError):
    """A step was attempted before the step it depends on completed."""

    pass


class OtpNotFoundOrExpired(SignupError):
    """No live OTP exists for the identifier."""

    pass


class InvalidOtp(SignupError):
    """Submitted OTP does not match the live code."""

    pass


class SignupDetailsExpired(SignupError):
    """Pending profile details are absent or have expired."""

    pass


class RateLimitExceeded(SignupError):
    """Too many requests for a key within the current window."""

    def __init__(self, message: str = "Too many requests", retry_after: int = 0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ResendTooSoon(RateLimitExceeded):
    """OTP resend requested inside the cooldown window."""

    pass


class OtpAttemptsExceeded(RateLimitExceeded):
    """Too many wrong guesses for the live OTP; the code has been burned."""

    pass


class ChannelDeliveryFailed(SignupError):
    """SMS or email channel failed to deliver the OTP. Retryable."""

    pass


class AccountPersistenceFailed(SignupError):
    """The User/UserProfile transaction aborted for a non-uniqueness reason."""

    pass


class UsernameTaken(SignupError):
    """Generated username collided with an existing one."""

    pass


class InvalidCredentials(SignupError):
    """Identifier/password pair did not authenticate."""

    pass


class AccountLocked(SignupError):
    """Account is temporarily locked after repeated login failures."""

    pass

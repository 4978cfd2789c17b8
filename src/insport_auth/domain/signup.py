"""
Account-creation domain service - signup state machine implementation.

This module contains the core business logic for the four-step signup:
create-account -> verify-OTP -> enter-details -> set-password.

Signup State Machine (Forward-Only Transitions)
===============================================

States:
- AWAITING_IDENTIFIER: No live flow for the identifier
- AWAITING_OTP: OTP issued, waiting for the code
- AWAITING_DETAILS: Identifier verified, waiting for profile fields
- AWAITING_PASSWORD: Draft profile stored, waiting for the password
- COMPLETE: User and UserProfile committed (terminal)

Valid Transitions:
    AWAITING_IDENTIFIER -> AWAITING_OTP       (create_account)
    AWAITING_OTP        -> AWAITING_DETAILS   (verify_otp)
    AWAITING_DETAILS    -> AWAITING_PASSWORD  (enter_details)
    AWAITING_PASSWORD   -> COMPLETE           (set_password)
    any non-terminal    -> AWAITING_OTP       (create_account restarts)

The current state is resolved on every call from session-store evidence
(flow marker, verified marker, draft details) and checked against
_TRANSITIONS. A flow token proves the identifier it was issued for; it
never advances the state on its own.

Secondary identifiers: when a phone-verified flow supplies an email (or
the reverse), that second identifier must pass its own OTP verification
before the draft is accepted. The verified marker and every flow token
name the flow they belong to (the primary identifier), so a verification
made in somebody else's signup never satisfies this one.
"""

import logging
import re
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass, replace

from .crypto import FlowTokenCodec, PasswordHasher
from .exceptions import (
    AccountPersistenceFailed,
    IdentifierAlreadyRegistered,
    InvalidFlowToken,
    InvalidInput,
    InvalidOtp,
    OtpAttemptsExceeded,
    OtpNotFoundOrExpired,
    ResendTooSoon,
    SignupDetailsExpired,
    StepNotVerified,
    UsernameTaken,
)
from .identifiers import Email, Identifier, IdentifierKind, Phone, identifier_of, parse_identifier
from .otp import OtpService
from .ports import (
    Account,
    NewAccount,
    OtpCheck,
    Profile,
    RateLimiter,
    SessionStore,
    SignupState,
    UserRepository,
)
from .throttle import enforce

logger = logging.getLogger(__name__)

FLOW_NAMESPACE = "signup"
VERIFIED_NAMESPACE = "verified"
DETAILS_NAMESPACE = "details"
OTP_REQUESTS_NAMESPACE = "otp-requests"

_NAME_MAX_LENGTH = 50
_USERNAME_BASE_LENGTH = 20

# operation -> (states it may run in, error raised otherwise, message)
_TRANSITIONS: dict[str, tuple[frozenset[SignupState], type[Exception], str]] = {
    "resend_otp": (
        frozenset({SignupState.AWAITING_OTP}),
        StepNotVerified,
        "No pending verification for this identifier",
    ),
    "verify_otp": (
        frozenset({SignupState.AWAITING_OTP}),
        OtpNotFoundOrExpired,
        "OTP not found or expired",
    ),
    "enter_details": (
        frozenset({SignupState.AWAITING_DETAILS, SignupState.AWAITING_PASSWORD}),
        StepNotVerified,
        "Identifier not verified",
    ),
    "set_password": (
        frozenset({SignupState.AWAITING_PASSWORD}),
        SignupDetailsExpired,
        "User details not found or expired",
    ),
}


@dataclass(frozen=True)
class SignupPolicy:
    signup_data_ttl_seconds: int = 600
    otp_rate_limit: int = 5
    otp_rate_window_seconds: int = 300
    max_username_attempts: int = 3


@dataclass
class SignupContext:
    """Handles the state machine works through. Built once per app (or per test)."""

    store: SessionStore
    limiter: RateLimiter
    otp: OtpService
    tokens: FlowTokenCodec
    users: UserRepository
    hasher: PasswordHasher
    policy: SignupPolicy = SignupPolicy()
    clock: Callable[[], float] = time.time


@dataclass(frozen=True)
class FlowStep:
    """Outcome of one signup step: the state reached and the token proving it."""

    state: SignupState
    identifier: Identifier
    token: str
    message: str


def validate_password(password: str, min_length: int = 8) -> None:
    """
    Enforce the password policy.

    Raises:
        InvalidInput: With the first rule the password breaks
    """
    if len(password) < min_length:
        raise InvalidInput(f"Password must be at least {min_length} characters long")
    if not any(c.islower() for c in password):
        raise InvalidInput("Password must include at least one lowercase letter")
    if not any(c.isupper() for c in password):
        raise InvalidInput("Password must include at least one uppercase letter")
    if not any(c.isdigit() for c in password):
        raise InvalidInput("Password must include at least one digit")


class SignupService:
    """
    Domain service for account creation.

    Orchestrates rate limiting, OTP issuance/verification, draft storage,
    password hashing and the final atomic User+UserProfile persistence.
    """

    def __init__(self, context: SignupContext) -> None:
        self._ctx = context

    # Step 1

    def create_account(self, raw_identifier: str | None) -> FlowStep:
        """
        Start (or restart) a signup flow for a phone number or email.

        Raises:
            InvalidInput: Missing or malformed identifier
            IdentifierAlreadyRegistered: Identifier belongs to an account
            RateLimitExceeded: Too many OTP requests in the window
            ChannelDeliveryFailed: OTP could not be delivered
        """
        identifier = parse_identifier(raw_identifier)
        self._ensure_available(identifier)
        self._throttle_otp_requests(identifier)

        self._ctx.otp.issue(identifier)
        self._ctx.store.delete(
            identifier.key(VERIFIED_NAMESPACE), identifier.key(DETAILS_NAMESPACE)
        )
        self._mark_flow_started(identifier)

        logger.info("Signup started for %s identifier", identifier.kind.value)
        return self._step(SignupState.AWAITING_OTP, identifier, "OTP sent")

    def resend_otp(self, raw_identifier: str | None, token: str | None = None) -> FlowStep:
        """
        Re-issue the OTP for a flow still waiting on its code.

        Raises:
            StepNotVerified: No flow is waiting for an OTP
            ResendTooSoon: Inside the resend cooldown
            RateLimitExceeded: Too many OTP requests in the window
        """
        identifier, flow = self._identify_flow(raw_identifier, token)
        self._require("resend_otp", identifier)

        if self._ctx.otp.cooldown_active(identifier):
            raise ResendTooSoon(
                "OTP was recently sent. Please wait before requesting another.",
                retry_after=self._ctx.otp.policy.resend_interval_seconds,
            )
        self._throttle_otp_requests(identifier)
        self._ctx.otp.issue(identifier)
        self._mark_flow_started(identifier)
        return self._step(SignupState.AWAITING_OTP, identifier, "OTP resent", flow=flow)

    # Step 2

    def verify_otp(
        self, raw_identifier: str | None, code: str | None, token: str | None = None
    ) -> FlowStep:
        """
        Verify the OTP and mark the identifier as verified.

        The verified marker records the flow named by the token, so a
        secondary contact only counts for the flow that asked for it.

        Raises:
            InvalidFlowToken: Token bound to a different identifier
            OtpNotFoundOrExpired: No live OTP for the identifier
            InvalidOtp: Wrong code (the code stays valid until its TTL)
            OtpAttemptsExceeded: Too many wrong codes; a new one is needed
        """
        identifier, flow = self._identify_flow(raw_identifier, token)
        if not code or not code.strip():
            raise InvalidInput("OTP is required")
        self._require("verify_otp", identifier)

        result = self._ctx.otp.verify(identifier, code)
        if result == OtpCheck.NOT_FOUND:
            raise OtpNotFoundOrExpired("OTP not found or expired")
        if result == OtpCheck.INVALID_CODE:
            raise InvalidOtp("Invalid OTP")
        if result == OtpCheck.LOCKED:
            raise OtpAttemptsExceeded("Too many invalid attempts. Request a new code.")

        self._mark_verified(identifier, flow)
        logger.info("Identifier verified (%s)", identifier.kind.value)
        return self._step(SignupState.AWAITING_DETAILS, identifier, "OTP verified", flow=flow)

    # Step 3

    def enter_details(
        self,
        raw_identifier: str | None,
        first_name: str | None,
        last_name: str | None,
        email: str | None = None,
        phone: str | None = None,
        token: str | None = None,
    ) -> FlowStep:
        """
        Store the draft profile for a verified identifier.

        If a contact of the other kind is supplied and has not been verified
        for this flow yet, an OTP is sent to it and the returned step is
        AWAITING_OTP for that secondary identifier; the draft is not stored
        until the client verifies it and submits the details again. A
        verification made by any other signup flow does not count and is
        discarded.

        Raises:
            StepNotVerified: Identifier has not passed OTP verification
            InvalidInput: Missing names or malformed contacts
            IdentifierAlreadyRegistered: Secondary contact already in use
        """
        identifier = self._identify(raw_identifier, token)
        self._require("enter_details", identifier)
        flow = self._flow_of(identifier)

        first = self._clean_name(first_name, "First name")
        last = self._clean_name(last_name, "Last name")
        secondary = self._secondary_contact(identifier, email, phone)

        if secondary is not None:
            self._ensure_available(secondary)
            if self._flow_of(secondary, verified_only=True) != flow:
                self._throttle_otp_requests(secondary)
                self._ctx.otp.issue(secondary)
                self._ctx.store.delete(
                    secondary.key(VERIFIED_NAMESPACE), secondary.key(DETAILS_NAMESPACE)
                )
                self._mark_flow_started(secondary)
                logger.info("Secondary %s requires verification", secondary.kind.value)
                return self._step(
                    SignupState.AWAITING_OTP,
                    secondary,
                    f"Verification code sent to {secondary.kind.value}",
                    flow=flow,
                )

        contacts = {identifier.kind: identifier}
        if secondary is not None:
            contacts[secondary.kind] = secondary
        draft = {
            "first_name": first,
            "last_name": last,
            "email": contacts[IdentifierKind.EMAIL].value if IdentifierKind.EMAIL in contacts else None,
            "phone": contacts[IdentifierKind.PHONE].value if IdentifierKind.PHONE in contacts else None,
        }
        ttl = self._ctx.policy.signup_data_ttl_seconds
        self._ctx.store.set(identifier.key(DETAILS_NAMESPACE), draft, ttl)
        self._mark_verified(identifier, flow)

        logger.info("Details accepted for %s identifier", identifier.kind.value)
        return self._step(SignupState.AWAITING_PASSWORD, identifier, "Details accepted", flow=flow)

    # Step 4

    def set_password(
        self,
        raw_identifier: str | None,
        password: str | None,
        confirm_password: str | None,
        token: str | None = None,
    ) -> Account:
        """
        Hash the password and atomically create the User and UserProfile.

        Raises:
            InvalidInput: Passwords differ or break the policy
            SignupDetailsExpired: No live draft for the identifier
            IdentifierAlreadyRegistered: Contact taken, including at commit time
            AccountPersistenceFailed: Transaction aborted for another reason
        """
        identifier = self._identify(raw_identifier, token)
        password = password or ""
        if password != (confirm_password or ""):
            raise InvalidInput("Passwords do not match")
        validate_password(password)
        self._require("set_password", identifier)

        draft = self._ctx.store.get(identifier.key(DETAILS_NAMESPACE))
        if draft is None:
            raise SignupDetailsExpired("User details not found or expired")

        contacts = [
            identifier_of(kind, draft[kind.value])
            for kind in IdentifierKind
            if draft.get(kind.value)
        ]
        for contact in contacts:
            self._ensure_available(contact)

        new_account = NewAccount(
            username="",
            password_hash=self._ctx.hasher.hash(password),
            profile=Profile(first_name=draft["first_name"], last_name=draft["last_name"]),
            email=draft.get("email"),
            phone=draft.get("phone"),
            email_verified=bool(draft.get("email")),
            phone_verified=bool(draft.get("phone")),
        )
        account = self._persist(new_account)

        for contact in contacts:
            self.purge(contact)

        logger.info("Account %s created via %s signup", account.id, identifier.kind.value)
        return account

    # Queries

    def identify(self, token: str | None) -> Identifier:
        """
        Return the identifier a flow token was issued for.

        Raises:
            InvalidFlowToken: Token missing, forged or expired
        """
        if not token:
            raise InvalidFlowToken("Missing token")
        return self._ctx.tokens.decode_flow_token(token).identifier

    def state_of(self, raw_identifier: str | None) -> SignupState:
        identifier = parse_identifier(raw_identifier)
        if self._ctx.users.identifier_registered(identifier):
            return SignupState.COMPLETE
        return self._resolve_state(identifier)

    def purge(self, identifier: Identifier) -> None:
        """Delete every transient entry for ``identifier``. Idempotent."""
        self._ctx.store.delete(
            identifier.key(FLOW_NAMESPACE),
            identifier.key(VERIFIED_NAMESPACE),
            identifier.key(DETAILS_NAMESPACE),
        )
        self._ctx.otp.discard(identifier)

    # Internals

    def _resolve_state(self, identifier: Identifier) -> SignupState:
        store = self._ctx.store
        verified = store.exists(identifier.key(VERIFIED_NAMESPACE))
        if verified and store.exists(identifier.key(DETAILS_NAMESPACE)):
            return SignupState.AWAITING_PASSWORD
        if verified:
            return SignupState.AWAITING_DETAILS
        if store.exists(identifier.key(FLOW_NAMESPACE)):
            return SignupState.AWAITING_OTP
        return SignupState.AWAITING_IDENTIFIER

    def _require(self, operation: str, identifier: Identifier) -> SignupState:
        allowed, error, message = _TRANSITIONS[operation]
        state = self._resolve_state(identifier)
        if state not in allowed:
            logger.warning(
                "%s rejected in state %s for %s identifier",
                operation,
                state.value,
                identifier.kind.value,
            )
            raise error(message)
        return state

    def _identify(self, raw_identifier: str | None, token: str | None) -> Identifier:
        """Parse the identifier and, when a token is given, bind it to the token's claim."""
        return self._identify_flow(raw_identifier, token)[0]

    def _identify_flow(self, raw_identifier: str | None, token: str | None) -> tuple[Identifier, str]:
        """Like ``_identify``, also returning the flow the token was issued for."""
        identifier = parse_identifier(raw_identifier)
        flow = identifier.key(FLOW_NAMESPACE)
        if token:
            claims = self._ctx.tokens.decode_flow_token(token)
            if claims.identifier != identifier:
                logger.warning("Flow token presented for a different identifier")
                raise InvalidFlowToken("Token does not match identifier")
            flow = claims.flow or flow
        return identifier, flow

    def _flow_of(self, identifier: Identifier, verified_only: bool = False) -> str | None:
        """
        Flow an identifier was verified for.

        Returns None for an unverified identifier when ``verified_only``,
        otherwise the identifier's own flow.
        """
        marker = self._ctx.store.get(identifier.key(VERIFIED_NAMESPACE))
        if marker is None and verified_only:
            return None
        return (marker or {}).get("flow") or identifier.key(FLOW_NAMESPACE)

    def _mark_verified(self, identifier: Identifier, flow: str) -> None:
        self._ctx.store.set(
            identifier.key(VERIFIED_NAMESPACE),
            {"verified_at": self._ctx.clock(), "flow": flow},
            self._ctx.policy.signup_data_ttl_seconds,
        )

    def _ensure_available(self, identifier: Identifier) -> None:
        if self._ctx.users.identifier_registered(identifier):
            logger.warning("Signup attempted for registered %s", identifier.kind.value)
            raise IdentifierAlreadyRegistered(
                f"User with this {identifier.kind.value} already exists"
            )

    def _throttle_otp_requests(self, identifier: Identifier) -> None:
        enforce(
            self._ctx.limiter,
            identifier.key(OTP_REQUESTS_NAMESPACE),
            self._ctx.policy.otp_rate_limit,
            self._ctx.policy.otp_rate_window_seconds,
            message="Too many OTP requests. Please try again later.",
        )

    def _mark_flow_started(self, identifier: Identifier) -> None:
        self._ctx.store.set(
            identifier.key(FLOW_NAMESPACE),
            {"started_at": self._ctx.clock()},
            self._ctx.policy.signup_data_ttl_seconds,
        )

    def _step(
        self, state: SignupState, identifier: Identifier, message: str, flow: str | None = None
    ) -> FlowStep:
        token = self._ctx.tokens.issue_flow_token(
            identifier, state, flow=flow or identifier.key(FLOW_NAMESPACE)
        )
        return FlowStep(state=state, identifier=identifier, token=token, message=message)

    def _secondary_contact(
        self, primary: Identifier, email: str | None, phone: str | None
    ) -> Identifier | None:
        secondary = None
        for raw, parser in ((email, Email.parse), (phone, Phone.parse)):
            if raw is None or not raw.strip():
                continue
            contact = parser(raw)
            if contact.kind == primary.kind:
                if contact != primary:
                    raise InvalidInput(
                        f"{contact.kind.value.capitalize()} does not match the verified identifier"
                    )
                continue
            secondary = contact
        return secondary

    def _persist(self, new_account: NewAccount) -> Account:
        for _ in range(self._ctx.policy.max_username_attempts):
            candidate = replace(new_account, username=self._username_for(new_account.profile))
            try:
                return self._ctx.users.create_account(candidate)
            except UsernameTaken:
                logger.info("Username collision, regenerating")
        raise AccountPersistenceFailed("Could not allocate a username")

    @staticmethod
    def _username_for(profile: Profile) -> str:
        base = ".".join(
            part for part in (
                re.sub(r"[^a-z0-9]", "", profile.first_name.lower()),
                re.sub(r"[^a-z0-9]", "", profile.last_name.lower()),
            ) if part
        )[:_USERNAME_BASE_LENGTH] or "user"
        return f"{base}.{secrets.token_hex(2)}"

    @staticmethod
    def _clean_name(value: str | None, label: str) -> str:
        cleaned = (value or "").strip()
        if not cleaned:
            raise InvalidInput("All fields are required")
        if len(cleaned) > _NAME_MAX_LENGTH:
            raise InvalidInput(f"{label} must be at most {_NAME_MAX_LENGTH} characters")
        return cleaned

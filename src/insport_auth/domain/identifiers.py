"""
Identifier variant - the single correlation key of a signup flow.

A signup is correlated by exactly one phone number or one email address.
Both kinds expose the same interface so the flow logic is written once:

- ``kind``: which delivery channel serves the identifier
- ``value``: normalized value used for storage and lookup
- ``key(namespace)``: session-store key scoped to the identifier
"""

import re
from dataclasses import dataclass
from enum import Enum

from email_validator import EmailNotValidError, validate_email

from .exceptions import InvalidInput

_PHONE_SEPARATORS = re.compile(r"[\s\-().]")
_PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{6,14}$")


class IdentifierKind(str, Enum):
    """Delivery channel an identifier is reachable through."""

    PHONE = "phone"
    EMAIL = "email"


@dataclass(frozen=True)
class Identifier:
    """Base identifier. Use ``Phone`` or ``Email``."""

    value: str

    kind = None  # set by subclasses

    def key(self, namespace: str) -> str:
        return f"{namespace}:{self.kind.value}:{self.value}"

    def masked(self) -> str:
        """Value safe to write to logs."""
        return self.value[:3] + "***" if len(self.value) > 3 else "***"


@dataclass(frozen=True)
class Phone(Identifier):
    kind = IdentifierKind.PHONE

    @classmethod
    def parse(cls, raw: str) -> "Phone":
        compact = _PHONE_SEPARATORS.sub("", raw.strip())
        if not _PHONE_PATTERN.match(compact):
            raise InvalidInput("Invalid phone number")
        return cls(compact)


@dataclass(frozen=True)
class Email(Identifier):
    kind = IdentifierKind.EMAIL

    @classmethod
    def parse(cls, raw: str) -> "Email":
        """
        Normalize email address for consistent storage and lookup.

        Applies: strip whitespace + lowercase, after syntax validation.
        """
        candidate = raw.strip().lower()
        try:
            validate_email(candidate, check_deliverability=False)
        except EmailNotValidError:
            raise InvalidInput("Invalid email address") from None
        return cls(candidate)


def parse_identifier(raw: str | None) -> Identifier:
    """
    Parse a raw phone-or-email string into an Identifier.

    Anything containing ``@`` is treated as an email address,
    everything else as a phone number.

    Raises:
        InvalidInput: If the value is empty or malformed
    """
    if raw is None or not raw.strip():
        raise InvalidInput("Email or phone number is required")
    if "@" in raw:
        return Email.parse(raw)
    return Phone.parse(raw)


def identifier_of(kind: IdentifierKind | str, value: str) -> Identifier:
    """Rebuild an identifier from its stored kind and normalized value."""
    if IdentifierKind(kind) is IdentifierKind.PHONE:
        return Phone.parse(value)
    return Email.parse(value)

"""insport-auth: account creation, OTP verification and login for InSport."""

__version__ = "0.1.0"

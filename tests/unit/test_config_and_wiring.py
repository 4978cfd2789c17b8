"""
Unit tests for settings loading and service wiring.
"""

from unittest.mock import MagicMock

import pytest
from starlette.requests import Request

from insport_auth.adapters.sms.http_gateway import HttpSmsGatewayChannel
from insport_auth.adapters.smtp.console import ConsoleOtpChannel
from insport_auth.adapters.smtp.smtp_sender import SmtpEmailChannel
from insport_auth.api.dependencies import build_channels, build_services, client_address
from insport_auth.config.settings import Settings
from insport_auth.domain import IdentifierKind, LoginService, SignupService


def make_request(headers: dict[str, str] | None = None, client: tuple[str, int] | None = ("10.0.0.7", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/v1/auth/login",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestSettings:
    """Tests for pydantic-settings configuration."""

    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.otp_length == 6
        assert settings.otp_expiration_seconds == 300
        assert settings.otp_resend_interval_seconds == 60
        assert settings.otp_rate_limit == 5
        assert settings.max_login_attempts == 5
        assert settings.lock_duration_seconds == 7200
        assert settings.account_creation_token_ttl_seconds == 1800
        assert settings.otp_delivery == "console"

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OTP_LENGTH", "8")
        monkeypatch.setenv("OTP_DELIVERY", "live")
        settings = Settings(_env_file=None)
        assert settings.otp_length == 8
        assert settings.otp_delivery == "live"


class TestBuildChannels:
    """Tests for OTP channel selection."""

    def test_console_serves_both_kinds(self) -> None:
        channels = build_channels(Settings(_env_file=None, otp_delivery="console"))
        assert isinstance(channels[IdentifierKind.PHONE], ConsoleOtpChannel)
        assert isinstance(channels[IdentifierKind.EMAIL], ConsoleOtpChannel)

    def test_live_uses_sms_and_smtp(self) -> None:
        channels = build_channels(
            Settings(_env_file=None, otp_delivery="live", sms_gateway_url="https://sms.gateway.test/send")
        )
        assert isinstance(channels[IdentifierKind.PHONE], HttpSmsGatewayChannel)
        assert isinstance(channels[IdentifierKind.EMAIL], SmtpEmailChannel)


class TestBuildServices:
    def test_wires_signup_and_login(self) -> None:
        settings = Settings(_env_file=None, argon2_time_cost=1, argon2_memory_cost=8192, argon2_parallelism=1)
        services = build_services(settings, pool=MagicMock(), redis_client=MagicMock())

        assert isinstance(services.signup, SignupService)
        assert isinstance(services.login, LoginService)
        assert services.login.policy.max_attempts == settings.max_login_attempts

    def test_close_releases_sms_client(self) -> None:
        settings = Settings(
            _env_file=None,
            otp_delivery="live",
            sms_gateway_url="https://sms.gateway.test/send",
            argon2_time_cost=1,
            argon2_memory_cost=8192,
            argon2_parallelism=1,
        )
        services = build_services(settings, pool=MagicMock(), redis_client=MagicMock())
        sms = services.channels[IdentifierKind.PHONE]
        assert isinstance(sms, HttpSmsGatewayChannel)

        services.close()

        assert sms._client.is_closed

    def test_close_with_console_channels(self) -> None:
        settings = Settings(_env_file=None, argon2_time_cost=1, argon2_memory_cost=8192, argon2_parallelism=1)
        services = build_services(settings, pool=MagicMock(), redis_client=MagicMock())

        services.close()

        assert set(services.channels) == {IdentifierKind.PHONE, IdentifierKind.EMAIL}


class TestClientAddress:
    """Tests for per-IP rate-limit keys."""

    def test_socket_peer(self) -> None:
        assert client_address(make_request()) == "10.0.0.7"

    def test_spoofed_forwarded_header_ignored(self) -> None:
        request = make_request({"X-Forwarded-For": "203.0.113.9"})
        assert client_address(request) == "10.0.0.7"

    def test_forwarded_hop_behind_trusted_proxy(self) -> None:
        request = make_request({"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})
        assert client_address(request, {"10.0.0.7", "10.0.0.1"}) == "203.0.113.9"

    def test_client_supplied_hops_left_of_proxy_ignored(self) -> None:
        request = make_request({"X-Forwarded-For": "198.51.100.1, 203.0.113.9"})
        assert client_address(request, {"10.0.0.7"}) == "203.0.113.9"

    def test_trusted_proxies_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TRUSTED_PROXIES", '["10.0.0.7"]')
        assert Settings(_env_file=None).trusted_proxies == ["10.0.0.7"]

    def test_unknown_peer(self) -> None:
        assert client_address(make_request(client=None)) == "unknown"

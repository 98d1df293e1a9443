"""
Config and Logging Tests
========================
"""

import json
import logging

import pytest


class TestAuthGateConfig:
    """Tests for environment-driven configuration."""

    def test_defaults(self):
        from authgate_core.config import AuthGateConfig

        config = AuthGateConfig.from_env({})

        assert config.challenge.code_length == 6
        assert config.challenge.otp_validity_minutes == 5
        assert config.challenge.magic_link_validity_minutes == 15
        assert [r.max_attempts for r in config.rate_limit.rules] == [5, 10, 1000]
        assert config.abuse.block_threshold == 0.8
        assert config.denylist.permanent_bounce_threshold == 2
        assert config.magic_link.secret == ""
        assert not config.captcha.enabled

    def test_environment_overrides(self):
        from authgate_core.config import AuthGateConfig
        from authgate_core.rate_limit import RateLimitScope

        config = AuthGateConfig.from_env({
            "AUTHGATE_CODE_LENGTH": "8",
            "AUTHGATE_RATE_LIMIT_IDENTIFIER_MAX": "3",
            "AUTHGATE_RATE_LIMIT_IP_WINDOW_MINUTES": "15",
            "AUTHGATE_DISPOSABLE_DOMAINS": "burner.example, trash.example ,",
            "AUTHGATE_MAGIC_LINK_SECRET": "s3cret",
            "AUTHGATE_CAPTCHA_SECRET": "0xabc",
            "AUTHGATE_DEFAULT_PHONE_REGION": "GB",
        })

        rules = {r.scope: r for r in config.rate_limit.rules}
        assert config.challenge.code_length == 8
        assert rules[RateLimitScope.IDENTIFIER].max_attempts == 3
        assert rules[RateLimitScope.IP].window_minutes == 15
        assert config.denylist.extra_disposable_domains == ["burner.example", "trash.example"]
        assert config.magic_link.secret == "s3cret"
        assert config.captcha.enabled
        assert config.default_phone_region == "GB"

    def test_invalid_number_raises(self):
        from authgate_core.config import AuthGateConfig

        with pytest.raises(ValueError):
            AuthGateConfig.from_env({"AUTHGATE_MAX_ATTEMPTS": "three"})


@pytest.fixture
def restore_logging():
    import structlog

    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.mark.usefixtures("restore_logging")
class TestLogging:
    """Tests for structlog setup."""

    def test_json_events_carry_service_and_request_id(self, capsys):
        import structlog
        from authgate_core.logging_config import bind_request_context, clear_request_context, setup_logging

        setup_logging(service_name="authgate-test", level="INFO", json_output=True)
        request_id = bind_request_context(tenant="acme")
        try:
            structlog.get_logger("authgate_core.tests").info("challenge_issued", channel="sms")
        finally:
            clear_request_context()

        line = capsys.readouterr().out.strip().splitlines()[-1]
        event = json.loads(line)

        assert event["event"] == "challenge_issued"
        assert event["service"] == "authgate-test"
        assert event["request_id"] == request_id
        assert event["tenant"] == "acme"
        assert event["level"] == "info"

    def test_level_filtering(self, capsys):
        import structlog
        from authgate_core.logging_config import setup_logging

        setup_logging(level="WARNING")
        structlog.get_logger("authgate_core.tests").info("hidden_event")

        assert "hidden_event" not in capsys.readouterr().out
        assert logging.getLogger().level == logging.WARNING

    def test_generated_request_id(self):
        from authgate_core.logging_config import bind_request_context, clear_request_context

        try:
            assert bind_request_context().startswith("req_")
        finally:
            clear_request_context()

"""Tests for limiter settings."""

import pytest
from pydantic import ValidationError

from cellgate.core.config import Settings
from cellgate.services.gcra.models import RateSpec


class TestSettings:
    """Environment-driven configuration."""

    def test_defaults(self):
        config = Settings(_env_file=None)
        assert config.rate_limit_key_prefix == "rate:"
        assert config.rate_limit_fail_closed is False
        assert config.log_format == "text"

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache:6380/2")
        monkeypatch.setenv("RATE_LIMIT_FAIL_CLOSED", "true")
        monkeypatch.setenv("RATE_LIMIT_DEFAULT_PERMITTED", "120")
        config = Settings(_env_file=None)
        assert config.redis_url == "redis://cache:6380/2"
        assert config.rate_limit_fail_closed is True
        assert config.rate_limit_default_permitted == 120

    def test_default_rate_spec(self):
        config = Settings(
            _env_file=None,
            rate_limit_default_permitted=10,
            rate_limit_default_period_seconds=1.0,
            rate_limit_default_burst=20,
        )
        assert config.default_rate_spec() == RateSpec.per_second(10, burst=20)

    @pytest.mark.parametrize(
        "field,value",
        [
            ("rate_limit_default_permitted", 0),
            ("rate_limit_default_period_seconds", 0),
            ("rate_limit_default_burst", 0),
            ("rate_limit_timeout_seconds", -1),
            ("clock_skew_tolerance_ms", 0),
            ("log_format", "xml"),
        ],
    )
    def test_rejects_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})

    def test_log_format_normalized(self):
        assert Settings(_env_file=None, log_format=" JSON ").log_format == "json"

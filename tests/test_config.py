"""Tests for core/config.py -- settings defaults and cross-field validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings, get_settings


class TestSettings:
    def test_defaults(self) -> None:
        s = Settings(_env_file=None, debug=False, bcrypt_rounds=12, env="development")
        assert s.db_timeout_seconds == 3.0
        assert s.activation_token_ttl_seconds == 3 * 24 * 60 * 60
        assert s.authentication_token_ttl_seconds == 24 * 60 * 60
        assert s.database_url.startswith("sqlite:///")

    def test_low_rounds_rejected_outside_debug(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, debug=False, bcrypt_rounds=4)

    def test_low_rounds_allowed_in_debug(self) -> None:
        assert Settings(_env_file=None, debug=True, bcrypt_rounds=4).bcrypt_rounds == 4

    @pytest.mark.parametrize("rounds", [3, 32])
    def test_rounds_out_of_bcrypt_range(self, rounds: int) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, debug=True, bcrypt_rounds=rounds)

    def test_unknown_environment_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, env="qa")

    def test_non_positive_timeout_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, db_timeout_seconds=0)

    def test_environment_variables_are_read(self, monkeypatch) -> None:
        monkeypatch.setenv("SMTP_PORT", "2525")
        monkeypatch.setenv("CORS_TRUSTED_ORIGINS", '["https://example.com"]')
        s = Settings(_env_file=None)
        assert s.smtp_port == 2525
        assert s.cors_trusted_origins == ["https://example.com"]

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()

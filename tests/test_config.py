"""Tests for core/config.py -- Settings validation and the AuthConfig snapshot."""

from __future__ import annotations

from datetime import timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from core.config import MIN_SECRET_LENGTH, AuthConfig, Settings
from tests.conftest import TEST_SECRET


class TestSettings:
    def test_production_requires_secret_key(self) -> None:
        with pytest.raises(PydanticValidationError, match="SECRET_KEY is required"):
            Settings(_env_file=None, debug=False, secret_key="")

    def test_short_secret_key_rejected(self) -> None:
        with pytest.raises(PydanticValidationError, match="at least"):
            Settings(_env_file=None, debug=True, secret_key="too-short")

    def test_debug_generates_secret_key(self) -> None:
        settings = Settings(_env_file=None, debug=True, secret_key="")
        assert len(settings.secret_key) >= MIN_SECRET_LENGTH

    def test_auth_config_snapshot(self) -> None:
        settings = Settings(
            _env_file=None,
            secret_key=TEST_SECRET,
            access_token_ttl_seconds=60,
            refresh_token_ttl_seconds=3600,
            bcrypt_rounds=5,
        )
        config = settings.auth_config()
        assert config.secret_key == TEST_SECRET
        assert config.access_token_ttl == timedelta(seconds=60)
        assert config.refresh_token_ttl == timedelta(seconds=3600)
        assert config.bcrypt_rounds == 5
        with pytest.raises(AttributeError):
            config.secret_key = "changed"  # type: ignore[misc]


class TestAuthConfig:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"secret_key": "short"},
            {"access_token_ttl": timedelta(0)},
            {"refresh_token_ttl": timedelta(seconds=-1)},
            {"bcrypt_rounds": 3},
        ],
    )
    def test_invalid_values_rejected(self, overrides: dict) -> None:
        values = {
            "secret_key": TEST_SECRET,
            "access_token_ttl": timedelta(minutes=15),
            "refresh_token_ttl": timedelta(days=30),
        }
        values.update(overrides)
        with pytest.raises(ValueError):
            AuthConfig(**values)

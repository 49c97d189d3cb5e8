"""
Unit tests run without an application or database.

Model classes are still instantiated (e.g. RefreshToken in issue_token_pair),
which configures the SQLAlchemy mappers. Every model referenced by a
relationship must be imported for that to succeed.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from riya_backend.app.models import (  # noqa: F401
    notification,
    order,
    password_reset,
    refresh_token,
    user,
)
from riya_backend.config import LockoutConfig, PollingConfig, Settings, TokenConfig


@pytest.fixture
def token_config() -> TokenConfig:
    return TokenConfig(
        access_secret="unit-access-secret",
        refresh_secret="unit-refresh-secret",
        access_ttl=timedelta(minutes=15),
        refresh_ttl=timedelta(days=7),
        issuer="unit-issuer",
        audience="unit-audience",
    )


@pytest.fixture
def lockout_config() -> LockoutConfig:
    return LockoutConfig(threshold=3, window=timedelta(minutes=15), bcrypt_rounds=4)


@pytest.fixture
def polling_config() -> PollingConfig:
    return PollingConfig()


@pytest.fixture
def settings(token_config, lockout_config, polling_config) -> Settings:
    return Settings(token=token_config, lockout=lockout_config, polling=polling_config)

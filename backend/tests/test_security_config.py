from __future__ import annotations

import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from auth.utils import create_token, decode_token, hash_password, normalize_username, verify_password  # noqa: E402
from config import Settings  # noqa: E402


def test_production_security_gate_rejects_default_secret_values():
    settings = Settings(
        ENVIRONMENT="production",
        SECRET_KEY="change-me-in-production",
        CRON_SECRET="change-me-in-production",
        AUTH_COOKIE_SECURE=False,
    )
    with pytest.raises(RuntimeError):
        settings.validate_security_configuration()


def test_production_security_gate_accepts_hardened_values():
    settings = Settings(
        ENVIRONMENT="production",
        SECRET_KEY="a-long-random-secret",
        CRON_SECRET="cron-secret",
        PUSH_RELAY_API_KEY="relay-secret",
        AUTH_COOKIE_SECURE=True,
    )
    settings.validate_security_configuration()


def test_development_skips_security_gate():
    Settings(ENVIRONMENT="development").validate_security_configuration()


def test_password_hash_round_trip():
    hashed = hash_password("StrongPass123")
    assert verify_password("StrongPass123", hashed)
    assert not verify_password("wrong", hashed)


def test_token_carries_user_and_version():
    payload = decode_token(create_token(42, token_version=3))
    assert payload["sub"] == "42"
    assert payload["tv"] == 3


def test_username_normalization_collapses_case_and_spacing():
    assert normalize_username("  Some   User ") == "some user"

"""
Unit tests for token_service: signing, verification and rotation.

DB-free: the session is a MagicMock; refresh token rows are SimpleNamespace.
"""

from __future__ import annotations

import dataclasses
import hashlib
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import jwt
import pytest

from riya_backend.app.errors import AppError, ErrorCode
from riya_backend.app.models.refresh_token import RefreshToken
from riya_backend.app.services import token_service
from riya_backend.app.time_utils import utcnow


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _flip_signature_char(token: str) -> str:
    head, payload, sig = token.split(".")
    replacement = "A" if sig[5] != "A" else "B"
    return ".".join([head, payload, sig[:5] + replacement + sig[6:]])


def _assert_app_error(exc_info, code: str, status: int = 401) -> None:
    err = exc_info.value
    assert err.code == code
    assert err.http_status == status


# ── issue / verify access ──────────────────────────────────────────────────

class TestAccessTokens:

    def test_round_trip_preserves_subject_and_role(self, token_config):
        session = MagicMock()
        pair = token_service.issue_token_pair(42, "manager", session, token_config)

        claims = token_service.verify_access_token(pair.access_token, token_config)

        assert claims.user_id == 42
        assert claims.role == "manager"
        assert claims.expires_at - claims.issued_at == 15 * 60
        assert pair.expires_in == 15 * 60

    def test_issue_records_refresh_token_digest(self, token_config):
        session = MagicMock()
        pair = token_service.issue_token_pair(42, "customer", session, token_config)

        session.add.assert_called_once()
        row = session.add.call_args.args[0]
        assert isinstance(row, RefreshToken)
        assert row.user_id == 42
        assert row.token_hash == _sha256(pair.refresh_token)
        assert row.token_hash != pair.refresh_token
        session.flush.assert_called_once()

        payload = jwt.decode(
            pair.refresh_token,
            token_config.refresh_secret,
            algorithms=["HS256"],
            audience=token_config.audience,
        )
        assert row.jti == payload["jti"]
        assert payload["type"] == "refresh"

    def test_pair_dict_shape(self, token_config):
        pair = token_service.issue_token_pair(1, "customer", MagicMock(), token_config)
        assert set(pair.to_dict()) == {"access_token", "refresh_token", "token_type", "expires_in"}
        assert pair.to_dict()["token_type"] == "Bearer"

    def test_tampered_token_fails(self, token_config):
        pair = token_service.issue_token_pair(42, "customer", MagicMock(), token_config)
        with pytest.raises(AppError) as exc_info:
            token_service.verify_access_token(_flip_signature_char(pair.access_token), token_config)
        _assert_app_error(exc_info, ErrorCode.TOKEN_INVALID)

    def test_expired_token_fails_with_token_expired(self, token_config):
        issued = utcnow() - timedelta(hours=1)
        pair = token_service.issue_token_pair(42, "customer", MagicMock(), token_config, now=issued)
        with pytest.raises(AppError) as exc_info:
            token_service.verify_access_token(pair.access_token, token_config)
        _assert_app_error(exc_info, ErrorCode.TOKEN_EXPIRED)

    def test_leeway_accepts_recently_expired_token(self, token_config):
        lenient = dataclasses.replace(token_config, leeway_seconds=30)
        issued = utcnow() - token_config.access_ttl - timedelta(seconds=10)
        pair = token_service.issue_token_pair(42, "customer", MagicMock(), lenient, now=issued)

        claims = token_service.verify_access_token(pair.access_token, lenient)
        assert claims.user_id == 42

    def test_refresh_token_rejected_as_access_token(self, token_config):
        pair = token_service.issue_token_pair(42, "customer", MagicMock(), token_config)
        with pytest.raises(AppError) as exc_info:
            token_service.verify_access_token(pair.refresh_token, token_config)
        _assert_app_error(exc_info, ErrorCode.TOKEN_INVALID)

    def test_wrong_type_claim_rejected_even_with_valid_signature(self, token_config):
        now = int(utcnow().timestamp())
        forged = jwt.encode(
            {
                "sub": "42", "role": "customer", "iss": token_config.issuer,
                "aud": token_config.audience, "iat": now, "exp": now + 60,
                "jti": "x", "type": "refresh",
            },
            token_config.access_secret,
            algorithm="HS256",
        )
        with pytest.raises(AppError) as exc_info:
            token_service.verify_access_token(forged, token_config)
        _assert_app_error(exc_info, ErrorCode.TOKEN_INVALID)

    def test_wrong_audience_rejected(self, token_config):
        pair = token_service.issue_token_pair(42, "customer", MagicMock(), token_config)
        other = dataclasses.replace(token_config, audience="someone-else")
        with pytest.raises(AppError) as exc_info:
            token_service.verify_access_token(pair.access_token, other)
        _assert_app_error(exc_info, ErrorCode.TOKEN_INVALID)

    def test_non_numeric_subject_rejected(self, token_config):
        now = int(utcnow().timestamp())
        forged = jwt.encode(
            {
                "sub": "alice", "role": "customer", "iss": token_config.issuer,
                "aud": token_config.audience, "iat": now, "exp": now + 60,
                "jti": "x", "type": "access",
            },
            token_config.access_secret,
            algorithm="HS256",
        )
        with pytest.raises(AppError) as exc_info:
            token_service.verify_access_token(forged, token_config)
        _assert_app_error(exc_info, ErrorCode.TOKEN_INVALID)


# ── verify refresh ─────────────────────────────────────────────────────────

def _stored_row(pair, user_id=42, revoked_at=None, token_hash=None):
    return SimpleNamespace(
        id=1,
        user_id=user_id,
        jti="stored-jti",
        token_hash=token_hash or _sha256(pair.refresh_token),
        revoked_at=revoked_at,
    )


class TestVerifyRefreshToken:

    def test_returns_live_record(self, token_config):
        pair = token_service.issue_token_pair(42, "customer", MagicMock(), token_config)
        session = MagicMock()
        row = _stored_row(pair)
        session.execute.return_value.scalar_one_or_none.return_value = row

        assert token_service.verify_refresh_token(pair.refresh_token, session, token_config) is row

    def test_revoked_record_raises_token_revoked(self, token_config):
        pair = token_service.issue_token_pair(42, "customer", MagicMock(), token_config)
        session = MagicMock()
        session.execute.return_value.scalar_one_or_none.return_value = _stored_row(
            pair, revoked_at=utcnow(),
        )
        with pytest.raises(AppError) as exc_info:
            token_service.verify_refresh_token(pair.refresh_token, session, token_config)
        _assert_app_error(exc_info, ErrorCode.TOKEN_REVOKED)

    def test_unknown_jti_raises_token_invalid(self, token_config):
        pair = token_service.issue_token_pair(42, "customer", MagicMock(), token_config)
        session = MagicMock()
        session.execute.return_value.scalar_one_or_none.return_value = None
        with pytest.raises(AppError) as exc_info:
            token_service.verify_refresh_token(pair.refresh_token, session, token_config)
        _assert_app_error(exc_info, ErrorCode.TOKEN_INVALID)

    def test_digest_mismatch_raises_token_invalid(self, token_config):
        pair = token_service.issue_token_pair(42, "customer", MagicMock(), token_config)
        session = MagicMock()
        session.execute.return_value.scalar_one_or_none.return_value = _stored_row(
            pair, token_hash=_sha256("something else"),
        )
        with pytest.raises(AppError) as exc_info:
            token_service.verify_refresh_token(pair.refresh_token, session, token_config)
        _assert_app_error(exc_info, ErrorCode.TOKEN_INVALID)

    def test_owner_mismatch_raises_token_invalid(self, token_config):
        pair = token_service.issue_token_pair(42, "customer", MagicMock(), token_config)
        session = MagicMock()
        session.execute.return_value.scalar_one_or_none.return_value = _stored_row(pair, user_id=7)
        with pytest.raises(AppError) as exc_info:
            token_service.verify_refresh_token(pair.refresh_token, session, token_config)
        _assert_app_error(exc_info, ErrorCode.TOKEN_INVALID)


# ── rotation ───────────────────────────────────────────────────────────────

class TestRotateRefreshToken:

    def test_lost_race_raises_token_revoked(self, token_config):
        session = MagicMock()
        session.execute.return_value.rowcount = 0
        record = SimpleNamespace(id=1, user_id=42)

        with patch.object(token_service, "verify_refresh_token", return_value=record):
            with pytest.raises(AppError) as exc_info:
                token_service.rotate_refresh_token("raw", session, token_config)

        _assert_app_error(exc_info, ErrorCode.TOKEN_REVOKED)
        session.add.assert_not_called()

    def test_inactive_user_raises_token_revoked(self, token_config):
        session = MagicMock()
        session.execute.return_value.rowcount = 1
        session.get.return_value = SimpleNamespace(id=42, role="customer", is_active=False)
        record = SimpleNamespace(id=1, user_id=42)

        with patch.object(token_service, "verify_refresh_token", return_value=record):
            with pytest.raises(AppError) as exc_info:
                token_service.rotate_refresh_token("raw", session, token_config)

        _assert_app_error(exc_info, ErrorCode.TOKEN_REVOKED)

    def test_new_pair_carries_current_role(self, token_config):
        session = MagicMock()
        session.execute.return_value.rowcount = 1
        session.get.return_value = SimpleNamespace(id=42, role="superadmin", is_active=True)
        record = SimpleNamespace(id=1, user_id=42)

        with patch.object(token_service, "verify_refresh_token", return_value=record):
            user, pair = token_service.rotate_refresh_token("raw", session, token_config)

        assert user.id == 42
        claims = token_service.verify_access_token(pair.access_token, token_config)
        assert claims.role == "superadmin"
        session.add.assert_called_once()


class TestRevokeAndPurge:

    def test_revoke_all_returns_rowcount(self):
        session = MagicMock()
        session.execute.return_value.rowcount = 3
        assert token_service.revoke_all_for_user(42, session) == 3
        session.flush.assert_called_once()

    def test_revoke_single_rejects_token_of_other_user(self, token_config):
        pair = token_service.issue_token_pair(42, "customer", MagicMock(), token_config)
        session = MagicMock()
        session.execute.return_value.scalar_one_or_none.return_value = SimpleNamespace(
            id=1, user_id=42,
        )
        with pytest.raises(AppError) as exc_info:
            token_service.revoke_refresh_token(pair.refresh_token, 7, session, token_config)
        _assert_app_error(exc_info, ErrorCode.TOKEN_INVALID)

    def test_purge_expired_returns_rowcount(self):
        session = MagicMock()
        session.execute.return_value.rowcount = 5
        assert token_service.purge_expired(session) == 5

"""
Tests for bearer-token authentication and identity guards.

Tests: token issue/decode, header parsing, role guards, admin credentials.
"""
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from config import settings
from deps import require_admin, require_customer
from domain.enums import Role
from domain.errors import AuthError, PermissionDeniedError
from domain.identity import RequestIdentity
from middleware.auth import (
    check_admin_credentials,
    decode_access_token,
    identity_from_header,
    issue_access_token,
    parse_bearer_token,
)


class TestTokens:

    @pytest.mark.unit
    def test_issue_and_decode(self):
        token = issue_access_token(subject="cust-1", role=Role.CUSTOMER)
        payload = decode_access_token(token)
        assert payload["sub"] == "cust-1"
        assert payload["role"] == "customer"
        assert payload["iss"] == settings.jwt_issuer

    @pytest.mark.unit
    def test_expired_token(self):
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        token = jwt.encode(
            {
                "iss": settings.jwt_issuer,
                "sub": "cust-1",
                "role": "customer",
                "iat": int(past.timestamp()),
                "exp": int((past + timedelta(minutes=5)).timestamp()),
            },
            settings.jwt_secret,
            algorithm="HS256",
        )
        with pytest.raises(AuthError, match="expired"):
            decode_access_token(token)

    @pytest.mark.unit
    def test_foreign_signature_rejected(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {
                "iss": settings.jwt_issuer,
                "sub": "cust-1",
                "iat": int(now.timestamp()),
                "exp": int((now + timedelta(minutes=5)).timestamp()),
            },
            "some-other-secret",
            algorithm="HS256",
        )
        with pytest.raises(AuthError, match="Invalid"):
            decode_access_token(token)

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "header,expected",
        [
            (None, None),
            ("", None),
            ("Bearer", None),
            ("Basic abc", None),
            ("Bearer   ", None),
            ("bearer abc.def", "abc.def"),
        ],
    )
    def test_parse_bearer_token(self, header, expected):
        assert parse_bearer_token(header) == expected

    @pytest.mark.unit
    def test_identity_from_header(self):
        token = issue_access_token(subject="ops", role=Role.ADMIN)
        identity = identity_from_header(f"Bearer {token}")
        assert identity == RequestIdentity(subject="ops", role=Role.ADMIN)
        assert identity.is_admin

    @pytest.mark.unit
    def test_missing_header(self):
        with pytest.raises(AuthError):
            identity_from_header(None)


class TestGuards:

    @pytest.mark.unit
    async def test_customer_guard(self, customer_identity, admin_identity):
        assert await require_customer(customer_identity) is customer_identity
        with pytest.raises(PermissionDeniedError):
            await require_customer(admin_identity)

    @pytest.mark.unit
    async def test_admin_guard(self, customer_identity, admin_identity):
        assert await require_admin(admin_identity) is admin_identity
        with pytest.raises(PermissionDeniedError):
            await require_admin(customer_identity)


class TestAdminCredentials:

    @pytest.mark.unit
    def test_valid_credentials(self):
        assert check_admin_credentials("ops", "ops-password") is True

    @pytest.mark.unit
    @pytest.mark.parametrize("username,password", [("ops", "wrong"), ("root", "ops-password"), ("", "")])
    def test_invalid_credentials(self, username, password):
        assert check_admin_credentials(username, password) is False

    @pytest.mark.unit
    def test_unconfigured_account_never_matches(self, monkeypatch):
        monkeypatch.setattr(settings, "admin_password", "")
        assert check_admin_credentials("ops", "") is False

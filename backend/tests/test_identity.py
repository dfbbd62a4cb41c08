"""
AI Gateway — Identity Provider Unit Tests
==========================================

What:  Tests for bearer-token verification and user classification.
How:   Tokens are minted with PyJWT using the test secret from conftest.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt as pyjwt
import pytest

from gateway.exceptions import UnauthorizedError
from gateway.services.identity import (
    EXEMPT,
    STANDARD,
    IdentityProvider,
    classify_email,
)

SECRET = "test-jwt-secret-with-enough-length-1234"
USER_ID = uuid.UUID("44444444-4444-4444-8444-444444444444")


def mint(secret=SECRET, **overrides) -> str:
    claims = {
        "sub": str(USER_ID),
        "email": "student@uni.example",
        "aud": "authenticated",
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    claims.update(overrides)
    claims = {k: v for k, v in claims.items() if v is not None}
    return pyjwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def provider():
    return IdentityProvider(
        secret=SECRET,
        audience="authenticated",
        algorithm="HS256",
        exempt_domains=["premium.de"],
    )


class TestAuthenticate:

    @pytest.mark.asyncio
    async def test_valid_standard_token(self, provider):
        identity = await provider.authenticate(mint())

        assert identity.user_id == USER_ID
        assert identity.email == "student@uni.example"
        assert identity.user_class == STANDARD
        assert identity.is_exempt is False

    @pytest.mark.asyncio
    async def test_exempt_domain(self, provider):
        identity = await provider.authenticate(mint(email="Tutor@Premium.DE"))

        assert identity.user_class == EXEMPT
        assert identity.is_exempt is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, ""])
    async def test_missing_token(self, provider, token):
        with pytest.raises(UnauthorizedError) as exc_info:
            await provider.authenticate(token)
        assert exc_info.value.message == "Missing bearer token"
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_expired_token(self, provider):
        expired = mint(exp=datetime.now(timezone.utc) - timedelta(minutes=5))

        with pytest.raises(UnauthorizedError) as exc_info:
            await provider.authenticate(expired)
        assert exc_info.value.message == "Token expired"

    @pytest.mark.asyncio
    async def test_wrong_signature(self, provider):
        with pytest.raises(UnauthorizedError) as exc_info:
            await provider.authenticate(mint(secret="another-secret-that-is-long-enough-xx"))
        assert exc_info.value.message == "Invalid token"

    @pytest.mark.asyncio
    async def test_wrong_audience(self, provider):
        with pytest.raises(UnauthorizedError):
            await provider.authenticate(mint(aud="some-other-app"))

    @pytest.mark.asyncio
    async def test_missing_exp_claim(self, provider):
        with pytest.raises(UnauthorizedError):
            await provider.authenticate(mint(exp=None))

    @pytest.mark.asyncio
    async def test_garbage_token(self, provider):
        with pytest.raises(UnauthorizedError):
            await provider.authenticate("not.a.jwt")

    @pytest.mark.asyncio
    async def test_non_uuid_subject(self, provider):
        with pytest.raises(UnauthorizedError) as exc_info:
            await provider.authenticate(mint(sub="user-42"))
        assert exc_info.value.message == "Invalid token subject"

    @pytest.mark.asyncio
    async def test_unconfigured_secret_rejects_everything(self):
        provider = IdentityProvider(secret="", audience="authenticated", exempt_domains=[])

        with pytest.raises(UnauthorizedError):
            await provider.authenticate(mint())


class TestClassifyEmail:

    @pytest.mark.parametrize("email,expected", [
        ("a@premium.de", EXEMPT),
        ("a@PREMIUM.de", EXEMPT),
        ("a@sub.premium.de", STANDARD),
        ("a@premium.de.evil.com", STANDARD),
        ("a@gmail.com", STANDARD),
        ("no-at-sign", STANDARD),
        (None, STANDARD),
    ])
    def test_classification(self, email, expected):
        assert classify_email(email, ["premium.de"]) == expected

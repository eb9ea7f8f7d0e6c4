from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from config import settings
from services.errors import InvalidSessionToken
from services.session_token import AUDIENCE, ISSUER, TOKEN_TYPE, issue_session_token, verify_session_token


def _signed(**claims):
    base = {"sub": "acct_1", "iss": ISSUER, "aud": AUDIENCE, "type": TOKEN_TYPE, "exp": 4102444800}
    base.update(claims)
    claims = {key: value for key, value in base.items() if value is not None}
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def test_issued_token_verifies_to_its_account():
    issued = issue_session_token("acct_1", email="acct_1@example.com")

    claims = verify_session_token(issued.token)

    assert claims.account_id == "acct_1"
    assert claims.email == "acct_1@example.com"
    assert claims.expires_at == issued.expires_at


def test_default_lifetime_follows_settings(monkeypatch):
    monkeypatch.setattr(settings, "JWT_EXPIRATION_HOURS", 2)

    before = datetime.now(timezone.utc)
    issued = issue_session_token("acct_1")
    claims = verify_session_token(issued.token)

    assert claims.email is None
    lifetime = claims.expires_at - before
    assert timedelta(hours=2) - timedelta(seconds=5) <= lifetime <= timedelta(hours=2)


def test_expired_token_is_refused():
    issued = issue_session_token("acct_1", ttl=timedelta(seconds=-30))

    with pytest.raises(InvalidSessionToken, match="expired"):
        verify_session_token(issued.token)


@pytest.mark.parametrize(
    "claims",
    [
        {"iss": "someone-else"},
        {"aud": "another-service"},
        {"type": "password_reset"},
        {"sub": None},
        {"sub": "   "},
    ],
)
def test_tokens_minted_for_other_purposes_are_refused(claims):
    with pytest.raises(InvalidSessionToken):
        verify_session_token(_signed(**claims))


def test_wrong_signature_is_refused():
    forged = jwt.encode(
        {"sub": "acct_1", "iss": ISSUER, "aud": AUDIENCE, "type": TOKEN_TYPE, "exp": 4102444800},
        "a-different-signing-secret-entirely",
        algorithm=settings.JWT_ALGORITHM,
    )

    with pytest.raises(InvalidSessionToken):
        verify_session_token(forged)

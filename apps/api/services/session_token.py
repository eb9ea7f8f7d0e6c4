"""Bearer tokens naming the calling account.

Tokens are HS-signed JWTs carrying the account id as ``sub``, scoped to this
API by issuer, audience and a ``type`` claim so tokens minted for other
purposes with the same secret are refused.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from config import settings
from services.errors import InvalidSessionToken

ISSUER = "postforge-api"
AUDIENCE = "postforge-clients"
TOKEN_TYPE = "postforge_session"


@dataclass(frozen=True)
class SessionClaims:
    account_id: str
    email: Optional[str]
    expires_at: datetime


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime


def _ttl() -> timedelta:
    return timedelta(hours=max(int(settings.JWT_EXPIRATION_HOURS or 24), 1))


def issue_session_token(
    account_id: str,
    *,
    email: Optional[str] = None,
    ttl: Optional[timedelta] = None,
) -> IssuedToken:
    issued_at = datetime.now(timezone.utc).replace(microsecond=0)
    expires_at = issued_at + (ttl if ttl is not None else _ttl())
    claims: Dict[str, Any] = {
        "sub": account_id,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "type": TOKEN_TYPE,
        "iat": issued_at,
        "exp": expires_at,
    }
    if email:
        claims["email"] = email
    token = jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return IssuedToken(token=token, expires_at=expires_at)


def verify_session_token(token: str) -> SessionClaims:
    """Claims of a valid token; raises InvalidSessionToken for anything else."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=AUDIENCE,
            issuer=ISSUER,
        )
    except ExpiredSignatureError as exc:
        raise InvalidSessionToken("Session token has expired.") from exc
    except JWTError as exc:
        raise InvalidSessionToken("Invalid session token.") from exc

    if payload.get("type") != TOKEN_TYPE:
        raise InvalidSessionToken("Invalid session token type.")
    account_id = str(payload.get("sub") or "").strip()
    if not account_id:
        raise InvalidSessionToken("Session token missing subject.")

    return SessionClaims(
        account_id=account_id,
        email=payload.get("email") or None,
        expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
    )

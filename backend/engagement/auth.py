"""JWT authentication for the admin metrics API."""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Dict, Iterable

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import get_env_setting

ALGORITHM = "RS256"
REQUIRED_CLAIMS = ("exp", "iss", "aud", "sub")
DEFAULT_SCOPE = "analytics:read"
auth_scheme = HTTPBearer(auto_error=False)


def _get_jwks_url() -> str:
    return get_env_setting("ENGAGEMENT_JWT_JWKS_URL")


def _get_expected_issuer() -> str:
    return get_env_setting("ENGAGEMENT_JWT_ISSUER")


def _get_expected_audience() -> str:
    return get_env_setting("ENGAGEMENT_JWT_AUDIENCE")


def _get_required_scope() -> str:
    return os.environ.get("ENGAGEMENT_REQUIRED_SCOPE", DEFAULT_SCOPE)


@lru_cache(maxsize=1)
def _get_jwks_client(url: str) -> jwt.PyJWKClient:
    return jwt.PyJWKClient(url)


def _get_signing_key(token: str) -> jwt.PyJWK:
    jwks_client = _get_jwks_client(_get_jwks_url())
    return jwks_client.get_signing_key_from_jwt(token)


def token_scopes(payload: Dict) -> set:
    """Scopes granted by a token, from a space separated ``scope`` or a ``scp`` list."""
    raw = payload.get("scope") or payload.get("scp") or ()
    if isinstance(raw, str):
        raw = raw.split()
    if not isinstance(raw, Iterable):
        return set()
    return {str(scope) for scope in raw}


def verify_jwt(credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)) -> Dict:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")

    token = credentials.credentials
    try:
        signing_key = _get_signing_key(token)
        payload = jwt.decode(
            token,
            signing_key.key,
            algorithms=[ALGORITHM],
            audience=_get_expected_audience(),
            issuer=_get_expected_issuer(),
            options={"require": list(REQUIRED_CLAIMS)},
        )
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired") from exc
    except jwt.InvalidAudienceError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid audience") from exc
    except jwt.InvalidIssuerError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid issuer") from exc
    except jwt.MissingRequiredClaimError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing claim") from exc
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    if _get_required_scope() not in token_scopes(payload):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient scope")

    return payload


def reset_auth_state() -> None:
    """Reset cached authentication state. Intended for use in tests."""

    _get_jwks_client.cache_clear()

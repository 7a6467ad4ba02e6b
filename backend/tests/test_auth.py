import base64
import json
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace

import jwt
import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("ENGAGEMENT_JWT_JWKS_URL", "https://jwks.example.com")
os.environ.setdefault("ENGAGEMENT_JWT_ISSUER", "https://issuer.example.com")
os.environ.setdefault("ENGAGEMENT_JWT_AUDIENCE", "engagement-admin")

from backend.engagement import auth  # noqa: E402  pylint: disable=wrong-import-position
from backend.engagement.auth import (  # noqa: E402  pylint: disable=wrong-import-position
    HTTPAuthorizationCredentials,
    HTTPException,
)

SIGNING_KEYS = {"primary": "primary-public-key", "secondary": "secondary-public-key"}


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


@pytest.fixture(autouse=True)
def reset_auth(monkeypatch):
    def get_signing_key(token: str):
        kid = jwt.get_unverified_header(token)["kid"]
        return SimpleNamespace(key=SIGNING_KEYS[kid])

    monkeypatch.setattr(auth, "_get_signing_key", get_signing_key)

    def fake_decode(
        token: str,
        key,
        algorithms=None,
        audience=None,
        issuer=None,
        options=None,
        **_,
    ):
        header_b64, payload_b64, signature_b64 = token.split(".")
        header = json.loads(_b64decode(header_b64))
        if algorithms and header.get("alg") not in algorithms:
            raise jwt.InvalidAlgorithmError("Invalid algorithm")
        if _b64decode(signature_b64).decode() != f"signed-for-{key}":
            raise jwt.InvalidSignatureError("Signature verification failed")

        payload = json.loads(_b64decode(payload_b64))
        for claim in (options or {}).get("require", []):
            if claim not in payload:
                raise jwt.MissingRequiredClaimError(claim)
        if issuer is not None and payload.get("iss") != issuer:
            raise jwt.InvalidIssuerError("Invalid issuer")
        if audience is not None and payload.get("aud") != audience:
            raise jwt.InvalidAudienceError("Invalid audience")
        exp = payload.get("exp")
        if exp is not None and exp < int(datetime.now(timezone.utc).timestamp()):
            raise jwt.ExpiredSignatureError("Token expired")
        return payload

    monkeypatch.setattr(auth.jwt, "decode", fake_decode)
    monkeypatch.delenv("ENGAGEMENT_REQUIRED_SCOPE", raising=False)
    auth.reset_auth_state()

    yield

    auth.reset_auth_state()


def _build_token(
    *,
    issuer=None,
    audience=None,
    lifetime_seconds=300,
    kid="primary",
    scope="analytics:read",
    signed_with=None,
    drop=(),
):
    now = datetime.now(timezone.utc)
    payload = {
        "iss": issuer or os.environ["ENGAGEMENT_JWT_ISSUER"],
        "aud": audience or os.environ["ENGAGEMENT_JWT_AUDIENCE"],
        "exp": int((now + timedelta(seconds=lifetime_seconds)).timestamp()),
        "sub": "dashboard",
    }
    if scope is not None:
        payload["scope"] = scope
    for claim in drop:
        payload.pop(claim)
    header = {"alg": "RS256", "typ": "JWT", "kid": kid}
    segments = [_b64encode(json.dumps(header).encode()), _b64encode(json.dumps(payload).encode())]
    segments.append(_b64encode(f"signed-for-{signed_with or SIGNING_KEYS[kid]}".encode()))
    return ".".join(segments)


def _verify(token: str):
    return auth.verify_jwt(HTTPAuthorizationCredentials(scheme="Bearer", credentials=token))


def _rejection(token: str) -> HTTPException:
    with pytest.raises(HTTPException) as excinfo:
        _verify(token)
    return excinfo.value


def test_verify_jwt_accepts_valid_token():
    payload = _verify(_build_token(scope="profile analytics:read"))
    assert payload["sub"] == "dashboard"


def test_verify_jwt_requires_credentials():
    with pytest.raises(HTTPException) as excinfo:
        auth.verify_jwt(None)
    assert excinfo.value.status_code == 401
    assert excinfo.value.detail == "Missing token"


def test_verify_jwt_supports_key_rotation():
    _verify(_build_token(kid="primary"))
    _verify(_build_token(kid="secondary"))


def test_verify_jwt_rejects_bad_signature():
    error = _rejection(_build_token(signed_with="someone-else"))
    assert error.status_code == 401
    assert error.detail == "Invalid token"


def test_verify_jwt_rejects_invalid_audience():
    error = _rejection(_build_token(audience="other-audience"))
    assert error.status_code == 401
    assert "audience" in error.detail.lower()


def test_verify_jwt_rejects_expired_token():
    error = _rejection(_build_token(lifetime_seconds=-60))
    assert error.detail == "Token expired"


def test_verify_jwt_rejects_missing_subject():
    error = _rejection(_build_token(drop=("sub",)))
    assert error.detail == "Missing claim"


def test_verify_jwt_requires_scope():
    error = _rejection(_build_token(scope="profile"))
    assert error.status_code == 403
    assert error.detail == "Insufficient scope"


def test_scope_list_claim_and_custom_scope(monkeypatch):
    monkeypatch.setenv("ENGAGEMENT_REQUIRED_SCOPE", "metrics:admin")
    token = _build_token(scope=None)
    assert auth.token_scopes({"scp": ["metrics:admin"]}) == {"metrics:admin"}
    assert _rejection(token).status_code == 403

import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Optional

import httpx
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlalchemy.orm import Session

from billpay.config import Settings
from billpay.db import get_db
from billpay.errors import NotOnboarded, Unauthorized
from billpay.orm_models import User

logger = logging.getLogger(__name__)


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    pad = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + pad)


def _json(data: dict) -> bytes:
    return json.dumps(data, separators=(",", ":"), sort_keys=True).encode("utf-8")


def _now_ts() -> int:
    return int(time.time())


class AuthUser(BaseModel):
    """Identity-provider principal behind a bearer token."""

    id: str
    email: Optional[str] = None


class AuthServiceError(Unauthorized):
    status_code = 500


def _sign_jwt(payload: dict, secret: str, alg: str = "HS256") -> str:
    if alg != "HS256":
        raise ValueError("Unsupported alg; only HS256 is supported in this build")
    header = {"alg": alg, "typ": "JWT"}
    h = _b64url_encode(_json(header))
    p = _b64url_encode(_json(payload))
    msg = f"{h}.{p}".encode("ascii")
    sig = hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).digest()
    s = _b64url_encode(sig)
    return f"{h}.{p}.{s}"


def _verify_jwt(token: str, secret: str, audience: Optional[str]) -> dict:
    try:
        h, p, s = token.split(".")
        header = json.loads(_b64url_decode(h).decode("utf-8"))
        sig = _b64url_decode(s)
        msg = f"{h}.{p}".encode("ascii")
    except ValueError:
        raise Unauthorized("Malformed token")
    if not isinstance(header, dict) or header.get("alg") != "HS256":
        raise Unauthorized("Unsupported token algorithm")
    good = hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).digest()
    if not hmac.compare_digest(sig, good):
        raise Unauthorized("Bad signature")
    try:
        payload = json.loads(_b64url_decode(p).decode("utf-8"))
    except ValueError:
        raise Unauthorized("Malformed token")
    if not isinstance(payload, dict):
        raise Unauthorized("Malformed token")
    exp = payload.get("exp") or 0
    if not isinstance(exp, (int, float)):
        raise Unauthorized("Malformed token")
    if exp and _now_ts() > exp:
        raise Unauthorized("Token expired")
    aud = payload.get("aud")
    if audience and aud is not None:
        auds = aud if isinstance(aud, list) else [aud]
        if audience not in auds:
            raise Unauthorized("Bad audience")
    return payload


def _verify_remote(token: str, settings: Settings) -> AuthUser:
    url = f"{settings.SUPABASE_URL.rstrip('/')}/auth/v1/user"
    headers = {"Authorization": f"Bearer {token}"}
    if settings.SUPABASE_ANON_KEY:
        headers["apikey"] = settings.SUPABASE_ANON_KEY
    try:
        r = httpx.get(url, headers=headers, timeout=settings.AUTH_TIMEOUT_S)
    except httpx.HTTPError as e:
        logger.error("Unexpected error during authentication: %s", e)
        raise AuthServiceError("Internal server error during authentication")
    if r.status_code != 200:
        try:
            body = r.json()
        except ValueError:
            body = {}
        msg = body.get("msg") or body.get("message") or "Unauthorized"
        logger.info("Auth error: %s", msg)
        raise Unauthorized(msg)
    data = r.json()
    if not data.get("id"):
        raise Unauthorized("Unauthorized")
    return AuthUser(id=str(data["id"]), email=data.get("email"))


def verify_token(token: str, settings: Settings) -> AuthUser:
    """Resolve a bearer token to the identity-provider user it was issued for."""
    if settings.AUTH_JWT_SECRET:
        payload = _verify_jwt(token, settings.AUTH_JWT_SECRET, settings.AUTH_AUDIENCE)
        sub = payload.get("sub")
        if not sub:
            raise Unauthorized("Invalid token payload")
        return AuthUser(id=str(sub), email=payload.get("email"))
    if settings.SUPABASE_URL:
        return _verify_remote(token, settings)
    logger.error("no identity provider configured (AUTH_JWT_SECRET or SUPABASE_URL)")
    raise AuthServiceError("Internal server error during authentication")


bearer_scheme = HTTPBearer(auto_error=False)


def get_auth_user(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> AuthUser:
    if creds is None:
        if request.headers.get("authorization"):
            raise Unauthorized("Invalid authorization header format")
        raise Unauthorized("Unauthorized")
    return verify_token(creds.credentials, request.app.state.settings)


def get_current_user(
    auth: AuthUser = Depends(get_auth_user),
    db: Session = Depends(get_db),
) -> User:
    """The onboarded application user behind the bearer token."""
    u = db.query(User).filter(User.auth_user_id == auth.id).first()
    if not u:
        raise NotOnboarded()
    return u

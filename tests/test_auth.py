import httpx
import pytest
from freezegun import freeze_time

from billpay.config import load_settings
from billpay.errors import Unauthorized
from billpay.utils import auth
from billpay.utils.auth import AuthServiceError, _sign_jwt, _verify_jwt, verify_token
from tests.helpers.auth_jwt import TEST_SECRET, mint_token


def test_verify_roundtrip_claims():
    tok = mint_token("auth-1", email="a@example.com")
    payload = _verify_jwt(tok, TEST_SECRET, "authenticated")
    assert payload["sub"] == "auth-1"
    assert payload["email"] == "a@example.com"


def test_expiry_follows_the_clock():
    with freeze_time("2025-09-15T12:00:00Z") as frozen:
        tok = mint_token("auth-1", ttl=60)
        _verify_jwt(tok, TEST_SECRET, "authenticated")
        frozen.tick(120)
        with pytest.raises(Unauthorized) as ei:
            _verify_jwt(tok, TEST_SECRET, "authenticated")
    assert ei.value.message == "Token expired"


def test_audience_list_and_mismatch():
    tok = mint_token("auth-1", aud=["authenticated", "other"])
    assert _verify_jwt(tok, TEST_SECRET, "authenticated")["sub"] == "auth-1"
    with pytest.raises(Unauthorized) as ei:
        _verify_jwt(mint_token("auth-1", aud="anon"), TEST_SECRET, "authenticated")
    assert ei.value.message == "Bad audience"


@pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d", "é.é.é"])
def test_malformed_tokens(token):
    with pytest.raises(Unauthorized):
        _verify_jwt(token, TEST_SECRET, "authenticated")


def test_unsigned_algorithm_rejected():
    tok = mint_token("auth-1")
    h = auth._b64url_encode(b'{"alg":"none","typ":"JWT"}')
    _, p, s = tok.split(".")
    with pytest.raises(Unauthorized) as ei:
        _verify_jwt(f"{h}.{p}.{s}", TEST_SECRET, "authenticated")
    assert ei.value.message == "Unsupported token algorithm"


def test_non_numeric_exp_is_malformed():
    tok = _sign_jwt({"sub": "x", "exp": "tomorrow"}, TEST_SECRET)
    with pytest.raises(Unauthorized) as ei:
        _verify_jwt(tok, TEST_SECRET, None)
    assert ei.value.message == "Malformed token"


def test_missing_subject():
    s = load_settings(DATABASE_URL="sqlite://", AUTH_JWT_SECRET=TEST_SECRET)
    tok = _sign_jwt({"aud": "authenticated"}, TEST_SECRET)
    with pytest.raises(Unauthorized) as ei:
        verify_token(tok, s)
    assert ei.value.message == "Invalid token payload"


def _remote_settings():
    return load_settings(
        DATABASE_URL="sqlite://",
        AUTH_JWT_SECRET="",
        SUPABASE_URL="https://auth.example.test/",
        SUPABASE_ANON_KEY="anon-key",
    )


def test_remote_verification(monkeypatch):
    seen = {}

    def fake_get(url, headers=None, timeout=None):
        seen.update(url=url, headers=headers)
        return httpx.Response(200, json={"id": "uuid-1", "email": "r@example.com"})

    monkeypatch.setattr(auth.httpx, "get", fake_get)
    user = verify_token("opaque", _remote_settings())
    assert user.id == "uuid-1"
    assert user.email == "r@example.com"
    assert seen["url"] == "https://auth.example.test/auth/v1/user"
    assert seen["headers"]["Authorization"] == "Bearer opaque"
    assert seen["headers"]["apikey"] == "anon-key"


def test_remote_rejection_is_401(monkeypatch):
    monkeypatch.setattr(
        auth.httpx, "get", lambda *a, **kw: httpx.Response(401, json={"msg": "JWT expired"})
    )
    with pytest.raises(Unauthorized) as ei:
        verify_token("opaque", _remote_settings())
    assert ei.value.status_code == 401
    assert ei.value.message == "JWT expired"


def test_remote_outage_is_500(monkeypatch):
    def down(*a, **kw):
        raise httpx.ConnectError("refused")

    monkeypatch.setattr(auth.httpx, "get", down)
    with pytest.raises(AuthServiceError) as ei:
        verify_token("opaque", _remote_settings())
    assert ei.value.status_code == 500


def test_no_provider_configured(monkeypatch):
    monkeypatch.delenv("AUTH_JWT_SECRET_FILE", raising=False)
    s = load_settings(DATABASE_URL="sqlite://", AUTH_JWT_SECRET="", SUPABASE_URL="")
    with pytest.raises(AuthServiceError):
        verify_token("anything", s)

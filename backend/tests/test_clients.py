import base64
import json
import time

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from macro_journal.core.errors import AuthError, TextGenerationError, is_rate_limit_error
from macro_journal.models.push_token import PushToken
from macro_journal.services.auth_client import GoTrueAuthProvider, token_expires_at
from macro_journal.services.push import (
    ApnsClient,
    ApnsNotificationSurface,
    aggregate_permission,
    device_tokens,
    register_device,
)
from macro_journal.services.text_generation import HttpTextGenerator
from macro_journal.services.types import SessionEvent

from tests.conftest import OTHER_USER_ID, USER_ID

SECRET = "test-signing-secret-at-least-32-bytes-long"


def mock_client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


# --- Text generation ---


def test_http_text_generator_posts_prompt():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"text": "  Keep going!  "})

    gen = HttpTextGenerator("http://proxy.local/", client=mock_client(handler))
    assert gen.generate("/claude-snack", "quote please") == "Keep going!"
    assert seen == {"path": "/claude-snack", "body": {"prompt": "quote please"}}


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, json={"error": "quota"}),
        httpx.Response(200, json={"message": "no text here"}),
        httpx.Response(200, json={"text": "   "}),
        httpx.Response(200, content=b"<html>oops</html>"),
    ],
)
def test_http_text_generator_failures(response):
    gen = HttpTextGenerator("http://proxy.local", client=mock_client(lambda request: response))
    with pytest.raises(TextGenerationError):
        gen.generate("/claude-report", "report")


def test_http_text_generator_network_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    gen = HttpTextGenerator("http://proxy.local", client=mock_client(handler))
    with pytest.raises(TextGenerationError):
        gen.generate("/claude-snack", "x")


# --- Push ---


@pytest.mark.parametrize(
    "permissions, expected",
    [
        ([], "default"),
        (["denied", "granted"], "granted"),
        (["denied", "denied"], "denied"),
        (["denied", "default"], "default"),
    ],
)
def test_aggregate_permission(permissions, expected):
    assert aggregate_permission(permissions) == expected


def test_register_device_upserts(session_factory):
    with session_factory() as db:
        assert register_device(db, USER_ID, " abc123 ", "ios", "default")
        assert not register_device(db, USER_ID, "abc123", "ios", "granted")
        rows = db.query(PushToken).all()
        assert len(rows) == 1
        assert rows[0].permission == "granted"
        assert [t.device_token for t in device_tokens(db, USER_ID, "granted")] == ["abc123"]


def _p8_key() -> str:
    key = ec.generate_private_key(ec.SECP256R1())
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()


def test_apns_send(monkeypatch):
    monkeypatch.setenv("APNS_KEY_ID", "KEY123")
    monkeypatch.setenv("APNS_TEAM_ID", "TEAM123")
    monkeypatch.setenv("APNS_KEY_P8_BASE64", base64.b64encode(_p8_key().encode()).decode())
    monkeypatch.setenv("APNS_USE_SANDBOX", "true")
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["topic"] = request.headers["apns-topic"]
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200)

    client = ApnsClient("com.example.macros", transport=httpx.MockTransport(handler))
    assert client.send("deadbeef", "Snack Time! 🍎", "Try almonds")
    assert seen["url"] == "https://api.sandbox.push.apple.com/3/device/deadbeef"
    assert seen["topic"] == "com.example.macros"
    assert seen["payload"]["aps"]["alert"] == {"title": "Snack Time! 🍎", "body": "Try almonds"}


def test_apns_not_configured(monkeypatch):
    for name in ("APNS_KEY_ID", "APNS_TEAM_ID", "APNS_KEY_P8_BASE64", "APNS_KEY_P8_PATH", "APNS_BUNDLE_ID"):
        monkeypatch.delenv(name, raising=False)
    assert not ApnsClient("com.example.macros").send("deadbeef", "t", "b")
    assert not ApnsClient(bundle_id="").send("deadbeef", "t", "b")


def test_surface_only_sends_to_granted_devices(session_factory):
    sent = []

    class RecordingClient:
        def send(self, device_token, title, body):
            sent.append(device_token)
            return True

    with session_factory() as db:
        register_device(db, USER_ID, "granted-device", "ios", "granted")
        register_device(db, USER_ID, "denied-device", "ios", "denied")
        register_device(db, OTHER_USER_ID, "other-device", "ios", "granted")

    surface = ApnsNotificationSurface(session_factory, client=RecordingClient())
    assert surface.permission(USER_ID) == "granted"
    assert surface.permission("nobody") == "default"
    assert surface.show(USER_ID, "Daily Motivation", "Go!")
    assert sent == ["granted-device"]


# --- Auth (GoTrue) ---


def test_get_user_sends_key_and_token():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers["authorization"]
        seen["apikey"] = request.headers["apikey"]
        return httpx.Response(200, json={"id": "user-1", "email": "a@b.c"})

    provider = GoTrueAuthProvider("tok", base_url="https://proj.supabase.co", anon_key="anon", client=mock_client(handler))
    assert provider.get_user()["id"] == "user-1"
    assert seen == {"path": "/auth/v1/user", "auth": "Bearer tok", "apikey": "anon"}


def test_get_user_without_token_is_none():
    provider = GoTrueAuthProvider(base_url="https://proj.supabase.co", anon_key="anon", client=mock_client(lambda r: httpx.Response(500)))
    assert provider.get_user() is None


def test_get_user_errors_carry_status():
    provider = GoTrueAuthProvider(
        "tok",
        base_url="https://proj.supabase.co",
        anon_key="anon",
        client=mock_client(lambda request: httpx.Response(429, json={"msg": "slow down"})),
    )
    with pytest.raises(AuthError) as exc_info:
        provider.get_user()
    assert exc_info.value.status_code == 429
    assert is_rate_limit_error(exc_info.value)


def test_refresh_session_rotates_tokens_and_emits():
    def handler(request):
        assert request.url.params["grant_type"] == "refresh_token"
        assert json.loads(request.content) == {"refresh_token": "r1"}
        return httpx.Response(200, json={"access_token": "a2", "refresh_token": "r2"})

    provider = GoTrueAuthProvider("a1", "r1", base_url="https://proj.supabase.co", anon_key="anon", client=mock_client(handler))
    events = []
    provider.on_auth_state_change(events.append)
    assert provider.refresh_session()
    assert (provider.access_token, provider.refresh_token) == ("a2", "r2")
    assert events == [SessionEvent.TOKEN_REFRESHED]


def test_refresh_failure_keeps_tokens():
    provider = GoTrueAuthProvider(
        "a1", "r1", base_url="https://proj.supabase.co", anon_key="anon",
        client=mock_client(lambda request: httpx.Response(400, json={"error": "invalid_grant"})),
    )
    assert not provider.refresh_session()
    assert provider.access_token == "a1"


def test_sign_out_always_emits():
    provider = GoTrueAuthProvider(
        "a1", "r1", base_url="https://proj.supabase.co", anon_key="anon",
        client=mock_client(lambda request: httpx.Response(500)),
    )
    events = []
    provider.on_auth_state_change(events.append)
    provider.sign_out()
    assert provider.access_token is None
    assert events == [SessionEvent.SIGNED_OUT]


def test_needs_refresh_from_token_expiry():
    now = time.time()
    soon = jwt.encode({"sub": "user-1", "exp": int(now) + 30}, SECRET, algorithm="HS256")
    later = jwt.encode({"sub": "user-1", "exp": int(now) + 3600}, SECRET, algorithm="HS256")
    assert token_expires_at(later) == int(now) + 3600
    assert token_expires_at("not-a-jwt") is None
    assert GoTrueAuthProvider(soon, "r", base_url="https://x", anon_key="k").needs_refresh(now=now)
    assert not GoTrueAuthProvider(later, "r", base_url="https://x", anon_key="k").needs_refresh(now=now)
    assert not GoTrueAuthProvider(soon, None, base_url="https://x", anon_key="k").needs_refresh(now=now)

"""
Pop-up surface for insight notifications via Apple Push Notification service (APNs).
Requires APNS_KEY_ID, APNS_TEAM_ID, APNS_BUNDLE_ID, and APNS_KEY_P8_PATH or APNS_KEY_P8_BASE64 in env.
If not configured, send_apns no-ops (log and return False). Pop-ups are best-effort: the ledger
row is the real notification, so nothing here raises.

Permission is what the device last reported on /push/register: granted, denied, or default (undecided).
"""
import base64
import logging
import os
import time
from pathlib import Path
from typing import Callable, Protocol

import httpx
import jwt
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from macro_journal.models.push_token import PushToken

logger = logging.getLogger(__name__)

# APNs host: sandbox for dev builds, production for release
APNS_SANDBOX = "https://api.sandbox.push.apple.com"
APNS_PRODUCTION = "https://api.push.apple.com"

_JWT_EXPIRY_SECONDS = 55 * 60  # APNs accepts tokens with iat within the last hour

PERMISSION_GRANTED = "granted"
PERMISSION_DENIED = "denied"
PERMISSION_DEFAULT = "default"
PERMISSIONS = (PERMISSION_GRANTED, PERMISSION_DENIED, PERMISSION_DEFAULT)


class NotificationSurface(Protocol):
    """Best-effort OS pop-up, gated on the user's notification permission."""

    def permission(self, user_id: str) -> str:
        ...

    def request_permission(self, user_id: str) -> str:
        ...

    def show(self, user_id: str, title: str, body: str) -> bool:
        ...


def _load_p8_key() -> str | None:
    """Load .p8 key from APNS_KEY_P8_PATH or APNS_KEY_P8_BASE64. Return None if not set."""
    base64_content = os.getenv("APNS_KEY_P8_BASE64")
    if base64_content:
        try:
            return base64.b64decode(base64_content).decode("utf-8")
        except Exception as e:
            logger.warning("APNS_KEY_P8_BASE64 decode failed: %s", e)
            return None
    path = os.getenv("APNS_KEY_P8_PATH")
    if path and Path(path).exists():
        try:
            return Path(path).read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("APNS_KEY_P8_PATH read failed: %s", e)
            return None
    return None


class ApnsClient:
    """Sends alerts to devices; caches its provider JWT per instance."""

    def __init__(self, bundle_id: str | None = None, *, transport: httpx.BaseTransport | None = None):
        self.bundle_id = bundle_id or os.getenv("APNS_BUNDLE_ID")
        self._transport = transport
        self._jwt_cache: tuple[str, float] | None = None

    def _jwt(self) -> str | None:
        """Build and cache JWT for APNs. Returns None if config missing."""
        key_id = os.getenv("APNS_KEY_ID")
        team_id = os.getenv("APNS_TEAM_ID")
        if not key_id or not team_id:
            return None
        p8 = _load_p8_key()
        if not p8:
            return None
        now = time.time()
        if self._jwt_cache and self._jwt_cache[1] > now:
            return self._jwt_cache[0]
        try:
            token = jwt.encode(
                {"iss": team_id, "iat": int(now)},
                p8,
                algorithm="ES256",
                headers={"alg": "ES256", "kid": key_id},
            )
            self._jwt_cache = (token, now + _JWT_EXPIRY_SECONDS)
            return token
        except Exception as e:
            logger.warning("APNs JWT build failed: %s", e, exc_info=True)
            return None

    def send(self, device_token: str, title: str, body: str) -> bool:
        """
        Send one alert to an iOS device.
        Returns True if sent successfully, False otherwise (config missing or APNs error).
        """
        if not self.bundle_id:
            logger.debug("APNS_BUNDLE_ID not set; skipping push")
            return False
        jwt_token = self._jwt()
        if not jwt_token:
            logger.debug("APNs not configured (key/team); skipping push")
            return False
        use_sandbox = os.getenv("APNS_USE_SANDBOX", "true").lower() in ("1", "true", "yes")
        base_url = APNS_SANDBOX if use_sandbox else APNS_PRODUCTION
        url = f"{base_url}/3/device/{device_token}"
        headers = {
            "authorization": f"bearer {jwt_token}",
            "apns-topic": self.bundle_id,
            "apns-push-type": "alert",
            "apns-priority": "10",
        }
        payload = {"aps": {"alert": {"title": title, "body": body}, "sound": "default"}}
        try:
            with httpx.Client(http2=self._transport is None, timeout=10.0, transport=self._transport) as client:
                resp = client.post(url, json=payload, headers=headers)
            if resp.status_code == 200:
                return True
            logger.warning("APNs returned %s for token %s...: %s", resp.status_code, device_token[:20], resp.text)
            return False
        except httpx.HTTPError as e:
            logger.warning("APNs request failed: %s", e, exc_info=True)
            return False


# --- Device registry ---


def register_device(db: Session, user_id: str, device_token: str, platform: str = "ios", permission: str = PERMISSION_DEFAULT) -> bool:
    """Upsert a device for the user. Returns True when the token was new."""
    token_str = device_token.strip()
    existing = db.query(PushToken).filter(PushToken.device_token == token_str).first()
    if existing:
        existing.user_id = user_id
        existing.platform = platform
        existing.permission = permission
        db.commit()
        return False
    db.add(PushToken(user_id=user_id, device_token=token_str, platform=platform, permission=permission))
    db.commit()
    return True


def device_tokens(db: Session, user_id: str, permission: str | None = None) -> list[PushToken]:
    q = db.query(PushToken).filter(PushToken.user_id == user_id)
    if permission:
        q = q.filter(PushToken.permission == permission)
    return q.all()


def aggregate_permission(permissions: list[str]) -> str:
    """granted if any device allows pop-ups; denied if every device refused; otherwise default."""
    if PERMISSION_GRANTED in permissions:
        return PERMISSION_GRANTED
    if permissions and all(p == PERMISSION_DENIED for p in permissions):
        return PERMISSION_DENIED
    return PERMISSION_DEFAULT


class ApnsNotificationSurface:
    """NotificationSurface backed by the push_tokens table and APNs."""

    def __init__(self, session_factory: Callable[[], Session], client: ApnsClient | None = None):
        self._session_factory = session_factory
        self._client = client or ApnsClient()

    def permission(self, user_id: str) -> str:
        try:
            with self._session_factory() as db:
                perms = [t.permission for t in device_tokens(db, user_id)]
        except SQLAlchemyError as e:
            logger.warning("Could not read push permission for %s: %s", user_id, e)
            return PERMISSION_DEFAULT
        return aggregate_permission(perms)

    def request_permission(self, user_id: str) -> str:
        # The OS prompt lives on the device; the app asks for it on its next /push/register.
        logger.info("Notification permission undecided for %s; waiting for the device to register", user_id)
        return self.permission(user_id)

    def show(self, user_id: str, title: str, body: str) -> bool:
        try:
            with self._session_factory() as db:
                tokens = [t.device_token for t in device_tokens(db, user_id, PERMISSION_GRANTED)]
        except SQLAlchemyError as e:
            logger.warning("Could not load devices for %s: %s", user_id, e)
            return False
        sent = sum(1 for token in tokens if self._client.send(token, title, body))
        if tokens:
            logger.info("Pop-up %r sent to %s/%s devices for %s", title, sent, len(tokens), user_id)
        return sent > 0

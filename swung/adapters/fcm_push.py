"""Firebase Cloud Messaging adapter: implements PushChannel.

Credentials come from FIREBASE_SERVICE_ACCOUNT_BASE64 (base64 service
account JSON) or, failing that, the FIREBASE_CREDENTIALS_PATH file. With
neither, ``build_push_channel()`` returns None and alarms are delivered on
the live channel only.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from pathlib import Path

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from swung.ports.notification_port import PushResult

logger = logging.getLogger(__name__)

_APP_NAME = "swung"
_MULTICAST_LIMIT = 500

# Errors that mean the token will never work again
_INVALID_TOKEN_ERRORS = (
    messaging.UnregisteredError,
    messaging.SenderIdMismatchError,
)


def load_service_account(encoded: str = "", path: str = "") -> dict | None:
    """Service account JSON from a base64 string (preferred) or a file."""
    if encoded:
        try:
            return json.loads(base64.b64decode(encoded).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.error("FIREBASE_SERVICE_ACCOUNT_BASE64 is not valid base64 JSON: %s", exc)

    if path and Path(path).exists():
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Unreadable Firebase credentials file %s: %s", path, exc)
            return None
        if str(data.get("private_key_id", "")).startswith("PASTE_"):
            logger.warning("Firebase credentials file %s is still a placeholder", path)
            return None
        return data

    return None


class FCMPush:
    """Sends notifications with ``messaging.send_each_for_multicast``."""

    def __init__(self, app: firebase_admin.App) -> None:
        self._app = app

    @classmethod
    def from_service_account(cls, service_account: dict) -> FCMPush:
        try:
            app = firebase_admin.get_app(_APP_NAME)
        except ValueError:
            app = firebase_admin.initialize_app(
                credentials.Certificate(service_account), name=_APP_NAME,
            )
        logger.info("Firebase push initialized for project %s", service_account.get("project_id"))
        return cls(app)

    async def send(
        self,
        tokens: list[str],
        title: str,
        body: str,
        data: dict[str, str] | None = None,
    ) -> PushResult:
        result = PushResult()
        for start in range(0, len(tokens), _MULTICAST_LIMIT):
            batch = tokens[start:start + _MULTICAST_LIMIT]
            message = messaging.MulticastMessage(
                tokens=batch,
                notification=messaging.Notification(title=title, body=body),
                data=data or None,
            )
            response = await asyncio.to_thread(
                messaging.send_each_for_multicast, message, app=self._app,
            )
            result.success_count += response.success_count
            result.failure_count += response.failure_count
            for token, resp in zip(batch, response.responses):
                if resp.success:
                    continue
                if isinstance(resp.exception, _INVALID_TOKEN_ERRORS):
                    result.invalid_tokens.append(token)
                else:
                    logger.warning("Push to token %s… failed: %s", token[:12], resp.exception)
        return result


def build_push_channel() -> FCMPush | None:
    """FCMPush from configured credentials, or None when push is not set up."""
    from swung.config import settings

    service_account = load_service_account(
        settings.FIREBASE_SERVICE_ACCOUNT_BASE64, settings.FIREBASE_CREDENTIALS_PATH,
    )
    if service_account is None:
        logger.warning("No Firebase credentials; push notifications disabled")
        return None
    try:
        return FCMPush.from_service_account(service_account)
    except (ValueError, exceptions.FirebaseError) as exc:
        logger.error("Failed to initialize Firebase: %s", exc)
        return None

"""Group-robot webhook implementation of the NotificationChannel protocol."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from typing import Any

import aiohttp

from src.config import settings

logger = logging.getLogger(__name__)


def sign_request(secret: str, timestamp_ms: int) -> str:
    """HMAC-SHA256 signature of ``"{timestamp}\\n{secret}"``, base64 encoded."""
    string_to_sign = f"{timestamp_ms}\n{secret}".encode()
    digest = hmac.new(secret.encode(), string_to_sign, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def build_payload(
    target: str, title: str, body: str, mentions: list[str] | None
) -> dict[str, Any]:
    """Markdown message payload with an at-list of person IDs."""
    text = body
    if mentions:
        # Robots only highlight mentions that also appear in the text
        text = f"{body}\n\n" + " ".join(f"@{person_id}" for person_id in mentions)
    return {
        "chatid": target,
        "msgtype": "markdown",
        "markdown": {"title": title, "text": text},
        "at": {"atUserIds": list(mentions or []), "isAtAll": False},
    }


class WebhookChannel:
    """Posts reminders to a group robot webhook (DingTalk-style JSON API)."""

    def __init__(
        self,
        url: str | None = None,
        secret: str | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._url = url if url is not None else settings.webhook_url
        self._secret = secret if secret is not None else settings.webhook_secret
        self._session = session

    @property
    def name(self) -> str:
        return "webhook"

    def _get_session(self) -> aiohttp.ClientSession:
        """Return (and lazily create) the shared aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    def _signed_params(self) -> dict[str, str]:
        if not self._secret:
            return {}
        timestamp_ms = int(time.time() * 1000)
        return {
            "timestamp": str(timestamp_ms),
            "sign": sign_request(self._secret, timestamp_ms),
        }

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        session = self._get_session()
        async with session.post(
            self._url, json=payload, params=self._signed_params()
        ) as resp:
            resp.raise_for_status()
            return await resp.json(content_type=None)

    async def send(
        self,
        target: str,
        title: str,
        body: str,
        *,
        mentions: list[str] | None = None,
    ) -> bool:
        """Post a markdown reminder. Returns True when the robot accepts it."""
        if not self._url:
            logger.error("Webhook not configured: missing WEBHOOK_URL")
            return False

        payload = build_payload(target, title, body, mentions)
        try:
            result = await self._post(payload)
        except Exception:
            logger.exception("WebhookChannel.send failed for target=%s", target)
            return False

        errcode = result.get("errcode", 0)
        if errcode != 0:
            logger.error(
                "Webhook rejected message for target=%s: errcode=%s errmsg=%s",
                target,
                errcode,
                result.get("errmsg", ""),
            )
            return False
        logger.info(
            "Webhook message sent to %s (%d chars, %d mention(s))",
            target,
            len(payload["markdown"]["text"]),
            len(mentions or []),
        )
        return True

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

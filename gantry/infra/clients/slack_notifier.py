"""Slack incoming-webhook notifier.

Posts a colored attachment to a Slack incoming webhook with aiohttp.
Retries 5xx responses, timeouts and connection errors with backoff, honors
Retry-After on 429, and fails fast on other 4xx responses. Every failure is
raised as NotifyError; NotificationSink is the layer that swallows it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from gantry.core.errors import NotifyError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF_SECONDS: tuple[float, ...] = (1.0, 2.0, 4.0)
DEFAULT_TIMEOUT_SECONDS = 10.0


def build_payload(
    message: str,
    color: str,
    *,
    channel: str | None = None,
    username: str | None = None,
    icon_url: str | None = None,
) -> dict[str, Any]:
    """Build the webhook JSON body: one attachment carrying the message."""
    payload: dict[str, Any] = {
        "attachments": [
            {
                "color": color,
                "text": message,
                "fallback": message,
                "mrkdwn_in": ["text"],
            }
        ]
    }
    if channel:
        payload["channel"] = channel
    if username:
        payload["username"] = username
    if icon_url:
        payload["icon_url"] = icon_url
    return payload


class SlackWebhookNotifier:
    """ChatNotifier implementation for Slack incoming webhooks.

    Args:
        channel / username / icon_url: Message decoration.
        http_session: Shared aiohttp session. A session is created (and
            closed) per send when omitted.
        max_retries: Retries after the first attempt.
        retry_backoff: Delay before each retry; the last value repeats.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        channel: str | None = None,
        username: str | None = None,
        icon_url: str | None = None,
        http_session: aiohttp.ClientSession | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff: tuple[float, ...] = DEFAULT_RETRY_BACKOFF_SECONDS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.channel = channel
        self.username = username
        self.icon_url = icon_url
        self._http_session = http_session
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff
        self._timeout = timeout

    async def send(self, webhook: str, message: str, color: str) -> None:
        if not webhook:
            raise NotifyError("Slack webhook URL not configured")
        payload = build_payload(
            message,
            color,
            channel=self.channel,
            username=self.username,
            icon_url=self.icon_url,
        )

        session = self._http_session
        session_created = session is None
        if session is None:
            session = aiohttp.ClientSession()
        try:
            await self._send_with_retry(session, webhook, payload)
        finally:
            if session_created:
                await session.close()

    async def _send_with_retry(
        self, session: aiohttp.ClientSession, webhook: str, payload: dict[str, Any]
    ) -> None:
        last_error = "no attempt made"
        for attempt in range(self._max_retries + 1):
            try:
                async with session.post(
                    webhook,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self._timeout),
                ) as response:
                    if response.status == 200:
                        body = (await response.text()).strip()
                        if body != "ok":
                            raise NotifyError(f"Webhook error: {body[:100]}")
                        logger.debug("Slack notification delivered (attempt %d)", attempt + 1)
                        return
                    if response.status == 429:
                        last_error = "Slack rate limit (429)"
                        retry_after = response.headers.get("Retry-After")
                        logger.warning("Slack rate limited (retry_after=%s)", retry_after)
                        if retry_after and attempt < self._max_retries:
                            try:
                                delay = float(retry_after)
                            except ValueError:
                                pass
                            else:
                                await asyncio.sleep(delay)
                                continue
                    elif 400 <= response.status < 500:
                        text = await response.text()
                        raise NotifyError(f"HTTP {response.status}: {text[:100]}")
                    elif response.status >= 500:
                        text = await response.text()
                        last_error = f"HTTP {response.status}: {text[:100]}"
                        logger.warning("Slack webhook server error: %s", last_error)
                    else:
                        raise NotifyError(f"Unexpected HTTP {response.status}")
            except TimeoutError:
                last_error = "Request timeout"
                logger.warning("Slack webhook timeout (attempt %d)", attempt + 1)
            except aiohttp.ClientError as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning("Slack webhook client error: %s", last_error)

            if attempt < self._max_retries:
                backoff = self._retry_backoff[min(attempt, len(self._retry_backoff) - 1)]
                await asyncio.sleep(backoff)

        raise NotifyError(f"Slack notification failed after retries: {last_error}")

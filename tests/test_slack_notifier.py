"""Tests for the Slack webhook notifier and payload format."""

import aiohttp
import pytest

from gantry.core.errors import NotifyError
from gantry.infra.clients.slack_notifier import SlackWebhookNotifier, build_payload
from tests.fakes import FakeHttpSession, FakeResponse

WEBHOOK = "https://hooks.slack.com/services/T/B/x"


def _notifier(session: FakeHttpSession, max_retries: int = 2) -> SlackWebhookNotifier:
    return SlackWebhookNotifier(
        channel="#ci",
        username="ci-bot",
        http_session=session,  # type: ignore[arg-type]
        max_retries=max_retries,
        retry_backoff=(0.0,),
    )


class TestBuildPayload:
    def test_attachment_carries_color_and_text(self) -> None:
        payload = build_payload("p finished with status: failure.", "danger", channel="#ci")
        attachment = payload["attachments"][0]
        assert attachment["color"] == "danger"
        assert attachment["text"] == "p finished with status: failure."
        assert attachment["fallback"] == attachment["text"]
        assert payload["channel"] == "#ci"
        assert "username" not in payload


class TestSend:
    @pytest.mark.asyncio
    async def test_delivers_once(self) -> None:
        session = FakeHttpSession([FakeResponse(200, "ok")])

        await _notifier(session).send(WEBHOOK, "hello", "good")

        assert len(session.requests) == 1
        method, url, kwargs = session.requests[0]
        assert (method, url) == ("POST", WEBHOOK)
        assert kwargs["json"]["username"] == "ci-bot"

    @pytest.mark.asyncio
    async def test_missing_webhook(self) -> None:
        with pytest.raises(NotifyError, match="not configured"):
            await _notifier(FakeHttpSession()).send("", "hello", "good")

    @pytest.mark.asyncio
    async def test_retries_server_errors(self) -> None:
        session = FakeHttpSession([FakeResponse(503, "busy"), FakeResponse(200, "ok")])
        await _notifier(session).send(WEBHOOK, "hello", "good")
        assert len(session.requests) == 2

    @pytest.mark.asyncio
    async def test_retries_connection_errors_then_gives_up(self) -> None:
        session = FakeHttpSession([aiohttp.ClientConnectionError("refused")])

        with pytest.raises(NotifyError, match="after retries"):
            await _notifier(session, max_retries=2).send(WEBHOOK, "hello", "good")

        assert len(session.requests) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self) -> None:
        session = FakeHttpSession([FakeResponse(403, "invalid_token")])

        with pytest.raises(NotifyError, match="HTTP 403"):
            await _notifier(session).send(WEBHOOK, "hello", "good")

        assert len(session.requests) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_honors_retry_after(self) -> None:
        session = FakeHttpSession(
            [FakeResponse(429, "", headers={"Retry-After": "0"}), FakeResponse(200, "ok")]
        )
        await _notifier(session).send(WEBHOOK, "hello", "good")
        assert len(session.requests) == 2

    @pytest.mark.asyncio
    async def test_non_ok_body_is_error(self) -> None:
        session = FakeHttpSession([FakeResponse(200, "channel_not_found")])
        with pytest.raises(NotifyError, match="channel_not_found"):
            await _notifier(session).send(WEBHOOK, "hello", "good")

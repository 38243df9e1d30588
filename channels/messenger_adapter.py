"""
Facebook Messenger Gateway — Send API over httpx.

Every outbound message is a POST to ``{graph_api_url}/me/messages``
authenticated with the bot's page access token. Transport errors, 429
and 5xx responses are retried with exponential backoff; other 4xx
responses fail immediately.

A bot without a page access token runs in mock mode: messages are
logged instead of sent, so bots can be exercised before they are
connected to a page.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

import httpx
from tenacity import (
    AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential,
)

from channels.base import MessagingGateway
from config.settings import MessengerConfig, get_settings
from engine.errors import TransientDeliveryError
from models.schemas import Bot, OutboundButton, OutboundCard, OutboundQuickReplies

logger = structlog.get_logger()


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


class MessengerAdapter(MessagingGateway):

    name = "messenger"

    def __init__(self, config: MessengerConfig = None,
                 client: Optional[httpx.AsyncClient] = None, retry_wait=None):
        super().__init__()
        self.config = config or get_settings().messenger
        self.client = client
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, max=10)

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient(
                base_url=self.config.graph_api_url.rstrip("/"),
                timeout=self.config.timeout_seconds,
            )
        return self.client

    # ── Send hooks ────────────────────────────────────────────

    async def _do_send_text(self, bot: Bot, recipient_id: str, text: str) -> None:
        await self._call_send_api(bot, {
            "recipient": {"id": recipient_id},
            "message": {"text": text},
        }, mock_summary=f"text: {text}")

    async def _do_send_image(self, bot: Bot, recipient_id: str, image_url: str) -> None:
        await self._call_send_api(bot, {
            "recipient": {"id": recipient_id},
            "message": {
                "attachment": {
                    "type": "image",
                    "payload": {"url": image_url, "is_reusable": True},
                },
            },
        }, mock_summary=f"image: {image_url}")

    async def _do_send_card(self, bot: Bot, recipient_id: str, card: OutboundCard) -> None:
        element: dict[str, Any] = {"title": card.title}
        if card.subtitle:
            element["subtitle"] = card.subtitle
        if card.image_url:
            element["image_url"] = card.image_url
        if card.buttons:
            element["buttons"] = [self._format_button(b) for b in card.buttons]

        await self._call_send_api(bot, {
            "recipient": {"id": recipient_id},
            "message": {
                "attachment": {
                    "type": "template",
                    "payload": {"template_type": "generic", "elements": [element]},
                },
            },
        }, mock_summary=f"card: {card.title}")

    async def _do_send_quick_replies(self, bot: Bot, recipient_id: str,
                                     replies: OutboundQuickReplies) -> None:
        await self._call_send_api(bot, {
            "recipient": {"id": recipient_id},
            "message": {
                "text": replies.message,
                "quick_replies": [
                    {"content_type": "text", "title": b.title, "payload": b.payload}
                    for b in replies.buttons
                ],
            },
        }, mock_summary=f"quick replies: {replies.message}")

    async def _do_send_typing(self, bot: Bot, recipient_id: str, on: bool) -> None:
        await self._call_send_api(bot, {
            "recipient": {"id": recipient_id},
            "sender_action": "typing_on" if on else "typing_off",
        }, mock_summary=f"typing {'on' if on else 'off'}")

    @staticmethod
    def _format_button(button: OutboundButton) -> dict[str, Any]:
        if button.kind == "url":
            return {"type": "web_url", "url": button.url, "title": button.title}
        return {"type": "postback", "title": button.title,
                "payload": button.payload or button.title}

    # ── Transport ─────────────────────────────────────────────

    async def _call_send_api(self, bot: Bot, body: dict[str, Any],
                             mock_summary: str = "") -> None:
        recipient_id = body["recipient"]["id"]
        if not bot.page_access_token:
            logger.info("messenger_mock_send", bot_id=bot.id,
                        recipient_id=recipient_id, message=mock_summary)
            return

        client = await self._get_client()
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(self.config.max_retries, 1)),
                wait=self._retry_wait,
                retry=retry_if_exception(_is_retryable),
                reraise=True,
            ):
                with attempt:
                    response = await client.post(
                        "/me/messages",
                        params={"access_token": bot.page_access_token},
                        json=body,
                    )
                    response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("messenger_api_error", bot_id=bot.id, recipient_id=recipient_id,
                         status=e.response.status_code, body=e.response.text[:500])
            raise TransientDeliveryError(
                f"Facebook API error {e.response.status_code}",
                recipient_id=recipient_id, retryable=_is_retryable(e), bot_id=bot.id,
            ) from e
        except httpx.TransportError as e:
            logger.error("messenger_transport_error", bot_id=bot.id,
                         recipient_id=recipient_id, error=str(e))
            raise TransientDeliveryError(
                f"Facebook API unreachable: {e}", recipient_id=recipient_id, bot_id=bot.id,
            ) from e

    async def shutdown(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

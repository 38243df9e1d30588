"""
Console Gateway — prints outbound messages to a text stream.

Used by scripts/chat_console.py to chat with a bot in the terminal.
Quick replies and card buttons are listed with their payloads so the
tester can type a payload back to simulate a tap.
"""
from __future__ import annotations

import sys
from typing import TextIO

from channels.base import MessagingGateway
from models.schemas import Bot, OutboundCard, OutboundQuickReplies


class ConsoleGateway(MessagingGateway):

    name = "console"

    def __init__(self, stream: TextIO = None, prefix: str = "bot> "):
        super().__init__()
        self._stream = stream or sys.stdout
        self._prefix = prefix

    def _write(self, line: str) -> None:
        self._stream.write(f"{self._prefix}{line}\n")
        self._stream.flush()

    async def _do_send_text(self, bot: Bot, recipient_id: str, text: str) -> None:
        self._write(text)

    async def _do_send_image(self, bot: Bot, recipient_id: str, image_url: str) -> None:
        self._write(f"[image] {image_url}")

    async def _do_send_card(self, bot: Bot, recipient_id: str, card: OutboundCard) -> None:
        self._write(f"[card] {card.title}")
        if card.subtitle:
            self._write(f"       {card.subtitle}")
        if card.image_url:
            self._write(f"       {card.image_url}")
        for button in card.buttons:
            target = button.url if button.kind == "url" else button.payload
            self._write(f"  ({button.title}) → {target}")

    async def _do_send_quick_replies(self, bot: Bot, recipient_id: str,
                                     replies: OutboundQuickReplies) -> None:
        self._write(replies.message)
        for button in replies.buttons:
            self._write(f"  [{button.title}] → {button.payload}")

    async def _do_send_typing(self, bot: Bot, recipient_id: str, on: bool) -> None:
        if on:
            self._write("...")

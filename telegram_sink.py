"""
Telegram Bot API client (HTML parse mode) used for alerts, tracking messages
and command replies.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from config import REQUEST_TIMEOUT, TELEGRAM_TOKEN
from state_store import StateStore

logger = logging.getLogger(__name__)

API_URL = "https://api.telegram.org/bot{token}/{method}"


class DeliveryError(Exception):
    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class RecipientUnreachable(DeliveryError):
    """User blocked the bot or deleted the chat (HTTP 403)."""


class MessageNotEditable(DeliveryError):
    """The message to edit is gone or can no longer be edited."""


_NOT_EDITABLE = ("message to edit not found", "message can't be edited")


class TelegramSink:
    def __init__(self, session: aiohttp.ClientSession, store: StateStore,
                 token: str = TELEGRAM_TOKEN, timeout: float = REQUEST_TIMEOUT):
        self.session = session
        self.store = store
        self.token = token
        self.timeout = timeout

    async def _call(self, method: str, payload: dict, timeout: float | None = None) -> Any:
        url = API_URL.format(token=self.token, method=method)
        try:
            async with self.session.post(
                url, json=payload,
                timeout=aiohttp.ClientTimeout(total=timeout or self.timeout),
            ) as r:
                try:
                    body = await r.json(content_type=None)
                except ValueError:
                    body = {}
                status = r.status
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise DeliveryError(f"{method}: {e!r}") from e

        if status == 200 and isinstance(body, dict) and body.get("ok"):
            return body.get("result")

        description = str((body or {}).get("description", "")) if isinstance(body, dict) else ""
        if status == 403:
            raise RecipientUnreachable(description or "Forbidden", status)
        if status == 400 and any(s in description for s in _NOT_EDITABLE):
            raise MessageNotEditable(description, status)
        raise DeliveryError(f"{method}: HTTP {status} {description}", status)

    async def send(self, chat_id: int, text: str, reply_markup: dict | None = None) -> int:
        """Send a message; returns its message_id."""
        payload = {"chat_id": chat_id, "text": text, "parse_mode": "HTML",
                   "disable_web_page_preview": True}
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        result = await self._call("sendMessage", payload)
        return result["message_id"]

    async def edit(self, chat_id: int, message_id: int, text: str) -> None:
        try:
            await self._call("editMessageText", {
                "chat_id": chat_id, "message_id": message_id,
                "text": text, "parse_mode": "HTML",
            })
        except MessageNotEditable:
            raise
        except DeliveryError as e:
            if "message is not modified" in str(e):
                return
            raise

    async def edit_reply_markup(self, chat_id: int, message_id: int, reply_markup: dict) -> None:
        await self._call("editMessageReplyMarkup", {
            "chat_id": chat_id, "message_id": message_id, "reply_markup": reply_markup,
        })

    async def answer_callback(self, callback_id: str, text: str) -> None:
        await self._call("answerCallbackQuery", {"callback_query_id": callback_id, "text": text})

    async def set_commands(self, commands: list[tuple[str, str]]) -> None:
        await self._call("setMyCommands", {
            "commands": [{"command": c, "description": d} for c, d in commands],
        })

    async def get_updates(self, offset: int | None, timeout: int = 30) -> list[dict]:
        payload: dict = {"timeout": timeout, "allowed_updates": ["message", "callback_query"]}
        if offset is not None:
            payload["offset"] = offset
        result = await self._call("getUpdates", payload, timeout=timeout + self.timeout)
        return result or []

    async def reply(self, chat_id: int, text: str, reply_markup: dict | None = None) -> None:
        """Best-effort send for command replies."""
        try:
            await self.send(chat_id, text, reply_markup)
        except DeliveryError as e:
            logger.error("Error sending message to %s: %s", chat_id, e)

    async def broadcast(self, text: str, location_id: str | None = None) -> int:
        """Send to every subscriber (with that market enabled). Returns delivered count."""
        users = (self.store.users_for_market(location_id) if location_id
                 else self.store.all_users())
        if not users:
            logger.info("No users to broadcast to%s", f" for {location_id}" if location_id else "")
            return 0

        sent = 0
        for user in users:
            chat_id = user["chat_id"]
            try:
                await self.send(chat_id, text)
                sent += 1
            except RecipientUnreachable:
                logger.info("User %s blocked the bot, removing...", chat_id)
                self.store.remove_user(chat_id)
            except DeliveryError as e:
                logger.error("Error sending to %s: %s", chat_id, e)
        return sent

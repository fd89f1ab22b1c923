from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

import httpx

from .errors import NotificationError

log = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"
MESSAGE_LIMIT = 4096  # Telegram limit

Dispatch = Callable[["Chat", str, List[str]], Awaitable[None]]


def parse_command(text: str) -> Optional[Tuple[str, List[str]]]:
    """
    "/remove_wallet@MyBot 0xabc" -> ("remove_wallet", ["0xabc"]).
    Returns None for anything that is not a slash command.
    """
    parts = (text or "").split()
    if not parts or not parts[0].startswith("/") or len(parts[0]) < 2:
        return None
    name = parts[0][1:].split("@", 1)[0].lower()
    return name, parts[1:]


class TelegramBot:
    """Minimal Bot API client: long polling, text messages, documents."""

    def __init__(
        self,
        token: str,
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = f"{API_BASE}/bot{token}"
        self.client = httpx.AsyncClient(timeout=timeout_s, transport=transport)
        self._pending: Set[asyncio.Task] = set()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _call(self, method: str, timeout_s: float | None = None, **kwargs: Any) -> Any:
        request_kwargs: Dict[str, Any] = dict(kwargs)
        if timeout_s is not None:
            request_kwargs["timeout"] = timeout_s
        try:
            resp = await self.client.post(f"{self.base_url}/{method}", **request_kwargs)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise NotificationError(f"{method} failed: {e}") from e
        if not data.get("ok"):
            raise NotificationError(
                f"{method} failed: {data.get('description', resp.status_code)}"
            )
        return data.get("result")

    async def get_updates(self, offset: Optional[int], poll_timeout: int = 30) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {"timeout": poll_timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset
        # The HTTP timeout has to outlast the server-side long poll.
        return await self._call("getUpdates", timeout_s=poll_timeout + 10, json=payload) or []

    async def send_message(self, chat_id: int, text: str) -> None:
        await self._call("sendMessage", json={"chat_id": chat_id, "text": text[:MESSAGE_LIMIT]})

    async def send_document(self, chat_id: int, path: Path, filename: str) -> None:
        content = Path(path).read_bytes()
        await self._call(
            "sendDocument",
            data={"chat_id": str(chat_id)},
            files={"document": (filename, content, "text/csv")},
        )

    async def run_polling(self, dispatch: Dispatch, poll_timeout: int = 30, retry_delay_s: float = 5.0) -> None:
        """Serves commands until cancelled. Each command runs in its own task."""
        offset: Optional[int] = None
        while True:
            try:
                updates = await self.get_updates(offset, poll_timeout)
            except NotificationError as e:
                log.warning("Polling Telegram failed: %s", e)
                await asyncio.sleep(retry_delay_s)
                continue

            for update in updates:
                offset = int(update["update_id"]) + 1
                self.handle_update(update, dispatch)

    def handle_update(self, update: Dict[str, Any], dispatch: Dispatch) -> Optional[asyncio.Task]:
        message = update.get("message") or {}
        parsed = parse_command(message.get("text", ""))
        chat_id = (message.get("chat") or {}).get("id")
        if parsed is None or chat_id is None:
            return None

        name, args = parsed
        log.debug("Command /%s %s from chat %s", name, args, chat_id)
        task = asyncio.get_running_loop().create_task(dispatch(Chat(self, chat_id), name, args))
        self._pending.add(task)
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("Command handler crashed", exc_info=task.exception())


class Chat:
    """One operator chat; replies and watcher notifications go here."""

    def __init__(self, bot: TelegramBot, chat_id: int) -> None:
        self.bot = bot
        self.chat_id = chat_id

    async def send(self, text: str) -> bool:
        try:
            await self.bot.send_message(self.chat_id, text)
        except NotificationError as e:
            log.warning("Telegram send failed: %s", e)
            return False
        return True

    async def send_document(self, path: Path, filename: str) -> None:
        await self.bot.send_document(self.chat_id, path, filename)

from __future__ import annotations

from collections.abc import Awaitable, Callable


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_checkpoint: Callable[[str], Awaitable[None]],
        on_usage: Callable[[], Awaitable[None]],
        on_new: Callable[[], Awaitable[None]],
        on_retry: Callable[[], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_checkpoint = on_checkpoint
        self._on_usage = on_usage
        self._on_new = on_new
        self._on_retry = on_retry
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        if trimmed == "/help":
            await self._on_help()
            return True
        if trimmed == "/checkpoint" or trimmed.startswith("/checkpoint "):
            await self._on_checkpoint(trimmed)
            return True
        if trimmed == "/usage":
            await self._on_usage()
            return True
        if trimmed == "/new":
            await self._on_new()
            return True
        if trimmed == "/retry":
            await self._on_retry()
            return True

        self._on_unknown(trimmed)
        return True

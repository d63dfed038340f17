"""
provisioner.orchestration.session - Interactive Session Waiter
==============================================================

Userland work is meaningless until a person is logged in, so the
orchestrator blocks on `SessionWaiter.block()` before the userland phase.

The console owner is polled on a fixed interval until it is a real account.
Placeholder and system accounts never count:

    ""               nobody at the console yet
    "loginwindow"    pre-login placeholder
    "_mbsetupuser"   Setup Assistant placeholder
    "root"
    "_<anything>"    service accounts

There is no timeout. The wait only ends when a user logs in.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from provisioner.infrastructure.host import ConsoleUser, read_console_user

logger = structlog.get_logger()

EXCLUDED_CONSOLE_USERS = frozenset({"loginwindow", "_mbsetupuser", "root"})


def is_interactive_user(name: Optional[str]) -> bool:
    """True if `name` is a real, interactive account."""
    if not name:
        return False
    return name not in EXCLUDED_CONSOLE_USERS and not name.startswith("_")


class SessionWaiter:
    """Polls for an interactive console user.

    Attributes:
        _provider: Returns the current console user (or None).
        _interval: Seconds between polls.
        _sleep: Awaitable sleep (injected in tests).
    """

    def __init__(
        self,
        provider: Callable[[], Optional[ConsoleUser]] = read_console_user,
        interval: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._interval = interval
        self._sleep = sleep
        self._logger = logger.bind(component="session_waiter")

    async def block(self) -> ConsoleUser:
        """Return once an interactive user owns the console."""
        polls = 0
        while True:
            user = self._provider()
            if user is not None and is_interactive_user(user.name):
                self._logger.info("session_ready", user=user.name, uid=user.uid, polls=polls)
                return user
            if polls == 0:
                self._logger.info(
                    "session_waiting",
                    console_user=user.name if user else None,
                    interval=self._interval,
                )
            polls += 1
            await self._sleep(self._interval)

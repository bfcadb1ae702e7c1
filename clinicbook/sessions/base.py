"""
Base session class for the clinic booking client.

A session is one screen's worth of state: a booking flow or a staff
dashboard. It owns its topic subscriptions and background tasks, and
closing it releases both. The shared push channel is left running.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, List, Optional, Set

from loguru import logger

from clinicbook.config import Settings, get_settings
from clinicbook.services.channel import RealtimeChannel, Subscription
from clinicbook.services.notifications import Notifier


class BaseSession:
    """
    Base session class with subscription and task bookkeeping.

    Provides:
    - Topic subscriptions that are dropped on close
    - Background tasks that are cancelled on close
    - Handlers that become no-ops once the session is closed
    - Common logging utilities
    """

    def __init__(
        self,
        channel: Optional[RealtimeChannel],
        notifier: Notifier,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.channel = channel
        self.notifier = notifier
        self.closed = False
        self._subscriptions: List[Subscription] = []
        self._tasks: Set[asyncio.Task] = set()

    def listen(self, topic: str, handler: Callable[[Any], Any]) -> Optional[Subscription]:
        """
        Subscribe ``handler`` to ``topic`` for the lifetime of this session.

        Returns None when the session has no channel (push disabled) or is closed.
        """
        if self.channel is None or self.closed:
            return None

        async def guarded(payload: Any) -> None:
            if self.closed:
                return
            result = handler(payload)
            if inspect.isawaitable(result):
                await result

        subscription = self.channel.subscribe(topic, guarded)
        self._subscriptions.append(subscription)
        return subscription

    def spawn(self, coro: Awaitable[Any]) -> Optional[asyncio.Task]:
        """Run ``coro`` in the background; it is cancelled when the session closes."""
        if self.closed:
            if inspect.iscoroutine(coro):
                coro.close()
            return None
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"{self.__class__.__name__} background task failed: {task.exception()}")

    async def drain(self) -> None:
        """Wait for every background task started so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Unsubscribe and cancel background work. Safe to call twice."""
        if self.closed:
            return
        self.closed = True
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.log_session_action("closed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def log_session_action(self, action: str, details: Optional[dict] = None) -> None:
        """Log session actions for monitoring and debugging."""
        extra = {"session": self.__class__.__name__, "action": action}
        if details:
            extra.update(details)
        logger.bind(**extra).info(f"{self.__class__.__name__}: {action}")

"""
autotab/cdp/monitors/console_relay.py

Console message relay for CDP.
Forwards Console.messageAdded to a single user handler running on its own worker task.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from autotab.cdp.monitors.abstract_async_monitor import AbstractAsyncMonitor
from autotab.data_models.page import ConsoleMessage
from autotab.utils.logger import get_logger

logger = get_logger(name=__name__)

ConsoleMessageHandler = Callable[[ConsoleMessage], Awaitable[None]]


class ConsoleRelay(AbstractAsyncMonitor):
    """
    Relays console messages to at most one handler at a time.
    Messages are queued and delivered by a worker task owned by the current subscription,
    so a slow handler never stalls the session's event delivery.
    """

    CONSOLE_MESSAGE_ADDED = "Console.messageAdded"


    # Abstract method implementations ______________________________________________________________________________________

    @classmethod
    def get_event_methods(cls) -> list[str]:
        return [cls.CONSOLE_MESSAGE_ADDED]

    async def handle_event(self, method: str, params: dict[str, Any]) -> None:
        """
        Queue a console message for the current handler; no-op without one.
        """
        if self._queue is None:
            return
        try:
            message = ConsoleMessage.model_validate(params.get("message"))
        except ValidationError as e:
            self.dropped_message_count += 1
            logger.warning("⚠️ Dropping malformed console message: %s", e.errors(include_url=False))
            return
        self._queue.put_nowait(message)


    # Magic methods ________________________________________________________________________________________________________

    def __init__(self) -> None:
        self._handler: ConsoleMessageHandler | None = None
        self._queue: asyncio.Queue[ConsoleMessage] | None = None
        self._worker_task: asyncio.Task | None = None

        # tracking
        self.relayed_message_count: int = 0
        self.dropped_message_count: int = 0


    # Properties ___________________________________________________________________________________________________________

    @property
    def has_handler(self) -> bool:
        return self._handler is not None


    # Private methods ______________________________________________________________________________________________________

    async def _worker(self, handler: ConsoleMessageHandler, queue: asyncio.Queue[ConsoleMessage]) -> None:
        """Deliver queued messages to handler until cancelled."""
        while True:
            message = await queue.get()
            try:
                await handler(message)
                self.relayed_message_count += 1
            except Exception as e:
                logger.error("❌ Console message handler failed: %s", e, exc_info=True)
            finally:
                queue.task_done()


    # Public methods _______________________________________________________________________________________________________

    async def set_handler(self, handler: ConsoleMessageHandler) -> None:
        """
        Install handler, replacing (and stopping) any previous one.
        Args:
            handler: Coroutine function invoked once per console message.
        """
        await self.clear_handler()
        self._handler = handler
        self._queue = asyncio.Queue()
        self._worker_task = asyncio.create_task(coro=self._worker(handler, self._queue))
        logger.debug("📝 Console handler installed")

    async def clear_handler(self) -> None:
        """Stop the current handler's worker. Queued messages not yet delivered are discarded."""
        worker_task = self._worker_task
        self._handler = None
        self._queue = None
        self._worker_task = None
        if worker_task is None:
            return
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass
        logger.debug("📝 Console handler removed")

    async def drain(self) -> None:
        """Wait until every message queued so far has been handled."""
        if self._queue is not None:
            await self._queue.join()

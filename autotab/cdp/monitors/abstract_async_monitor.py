"""
autotab/cdp/monitors/abstract_async_monitor.py

Abstract base class for asynchronous CDP event consumers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from autotab.utils.logger import get_logger

if TYPE_CHECKING:  # avoid circular import
    from autotab.cdp.async_cdp_session import AsyncCDPSession, EventHandler

logger = get_logger(name=__name__)


class AbstractAsyncMonitor(ABC):
    """
    Abstract base class for asynchronous CDP monitors.
    All monitors (NavigationTracker, DomMirror, ConsoleRelay) inherit from this.
    A monitor names the CDP events it consumes and receives them, in arrival order,
    once attached to a session.
    """

    # Class methods ________________________________________________________________________________________________________

    @classmethod
    def get_monitor_category(cls) -> str:
        """
        Return the category name for this monitor class.
        Returns:
            The class name (e.g., "DomMirror").
        """
        return cls.__name__

    @classmethod
    @abstractmethod
    def get_event_methods(cls) -> list[str]:
        """
        Return the CDP event names this monitor consumes.
        Returns:
            Event names, e.g. ["Page.loadEventFired"].
        """
        # not raising UnimplementedError here because this is an abstract method
        pass


    # Abstract methods _____________________________________________________________________________________________________

    @abstractmethod
    async def handle_event(self, method: str, params: dict[str, Any]) -> None:
        """
        Consume one CDP event. Runs on the session's receiver task: must not await CDP commands.
        Args:
            method: The CDP event name.
            params: The raw event params.
        """
        pass


    # Public methods _______________________________________________________________________________________________________

    def attach(self, cdp_session: AsyncCDPSession) -> None:
        """
        Subscribe this monitor to every event it consumes on the given session.
        Args:
            cdp_session: The CDP session delivering the events.
        """
        handlers: dict[str, EventHandler] = getattr(self, "_attached_handlers", {})
        for method in self.get_event_methods():
            if method in handlers:
                continue

            async def handler(params: dict[str, Any], _method: str = method) -> None:
                await self.handle_event(_method, params)

            handlers[method] = handler
            cdp_session.subscribe(method, handler)
        self._attached_handlers = handlers
        logger.debug("📡 %s attached to %d events", self.get_monitor_category(), len(handlers))

    def detach(self, cdp_session: AsyncCDPSession) -> None:
        """
        Remove this monitor's subscriptions from the given session.
        """
        handlers: dict[str, EventHandler] = getattr(self, "_attached_handlers", {})
        for method, handler in handlers.items():
            cdp_session.unsubscribe(method, handler)
        self._attached_handlers = {}
        logger.debug("📡 %s detached", self.get_monitor_category())

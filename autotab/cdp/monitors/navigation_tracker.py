"""
autotab/cdp/monitors/navigation_tracker.py

Navigation tracker for CDP.
Turns Page lifecycle events into an awaitable, single-completion navigate() call and
tracks whether the top frame is loading on its own.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import ValidationError

from autotab.cdp.monitors.abstract_async_monitor import AbstractAsyncMonitor
from autotab.data_models.page import Frame, NavigationState
from autotab.utils.exceptions import ConcurrentNavigationError, NavigationTimeoutError
from autotab.utils.logger import get_logger

if TYPE_CHECKING:  # avoid circular import
    from autotab.cdp.async_cdp_session import AsyncCDPSession

logger = get_logger(name=__name__)


class NavigationTracker(AbstractAsyncMonitor):
    """
    Tracks page navigation for one tab.

    Two independent flags:
    - is_navigating: an explicit navigate() call is outstanding; Page.loadEventFired completes it.
    - is_transitioning: the top frame is between frameStartedLoading and frameStoppedLoading.
      Only updated while no explicit navigation is outstanding.
    """

    # Class attributes _____________________________________________________________________________________________________

    LOAD_EVENT_FIRED: ClassVar[str] = "Page.loadEventFired"
    FRAME_STARTED_LOADING: ClassVar[str] = "Page.frameStartedLoading"
    FRAME_STOPPED_LOADING: ClassVar[str] = "Page.frameStoppedLoading"
    FRAME_NAVIGATED: ClassVar[str] = "Page.frameNavigated"


    # Abstract method implementations ______________________________________________________________________________________

    @classmethod
    def get_event_methods(cls) -> list[str]:
        return [
            cls.LOAD_EVENT_FIRED,
            cls.FRAME_STARTED_LOADING,
            cls.FRAME_STOPPED_LOADING,
            cls.FRAME_NAVIGATED,
        ]

    async def handle_event(self, method: str, params: dict[str, Any]) -> None:
        """
        Handle Page lifecycle events.
        Args:
            method: The CDP event name.
            params: The raw event params.
        """
        if method == self.LOAD_EVENT_FIRED:
            self._on_load_event_fired(params)
        elif method == self.FRAME_STARTED_LOADING:
            self._on_frame_loading(params, transitioning=True)
        elif method == self.FRAME_STOPPED_LOADING:
            self._on_frame_loading(params, transitioning=False)
        elif method == self.FRAME_NAVIGATED:
            self._on_frame_navigated(params)


    # Magic methods ________________________________________________________________________________________________________

    def __init__(self, cdp_session: AsyncCDPSession) -> None:
        """
        Initialize NavigationTracker.
        Args:
            cdp_session: The CDP session used to issue Page.navigate.
        """
        self.cdp_session = cdp_session
        self.top_frame_id: str | None = None

        self._is_navigating = False
        self._is_transitioning = False
        self._load_waiter: asyncio.Future | None = None  # one-shot, only set while navigating


    # Properties ___________________________________________________________________________________________________________

    @property
    def is_navigating(self) -> bool:
        return self._is_navigating

    @property
    def is_transitioning(self) -> bool:
        return self._is_transitioning

    @property
    def state(self) -> NavigationState:
        return NavigationState(
            is_navigating=self._is_navigating,
            is_transitioning=self._is_transitioning,
            top_frame_id=self.top_frame_id,
        )


    # Private methods ______________________________________________________________________________________________________

    def _on_load_event_fired(self, params: dict[str, Any]) -> None:
        waiter = self._load_waiter
        if waiter is None or waiter.done():
            logger.debug("📄 Page.loadEventFired with no navigation outstanding")
            return
        waiter.set_result(params.get("timestamp"))

    def _on_frame_loading(self, params: dict[str, Any], transitioning: bool) -> None:
        # the explicit navigation's load event is authoritative while it is outstanding
        if self._is_navigating:
            return
        frame_id = params.get("frameId")
        if not isinstance(frame_id, str):
            logger.warning("⚠️ Dropping frame loading event without frameId: %s", params)
            return
        if frame_id == self.top_frame_id:
            self._is_transitioning = transitioning
            logger.debug("🔄 Top frame %s transitioning=%s", frame_id, transitioning)

    def _on_frame_navigated(self, params: dict[str, Any]) -> None:
        try:
            frame = Frame.model_validate(params.get("frame"))
        except ValidationError as e:
            logger.warning("⚠️ Dropping malformed Page.frameNavigated: %s", e)
            return
        # the top frame is the one without a parent
        if frame.parent_id is None and frame.id != self.top_frame_id:
            logger.debug("📍 Top frame is now %s (%s)", frame.id, frame.url)
            self.top_frame_id = frame.id


    # Public methods _______________________________________________________________________________________________________

    def set_top_frame_id(self, frame_id: str) -> None:
        """Seed the top frame, e.g. from Page.getResourceTree."""
        self.top_frame_id = frame_id

    async def navigate(self, url: str, timeout: float | None = None) -> str:
        """
        Navigate the tab and wait for Page.loadEventFired.
        Args:
            url: The URL to navigate to.
            timeout: Seconds to wait for the load event. None waits indefinitely.
        Returns:
            The frame id reported by Page.navigate.
        Raises:
            ConcurrentNavigationError: If another navigation is outstanding on this tab.
            CommandFailedError: If Page.navigate fails.
            NavigationTimeoutError: If the load event does not arrive within timeout.
        """
        if self._is_navigating:
            raise ConcurrentNavigationError(f"Cannot navigate to {url}: a navigation is already in progress")
        self._is_navigating = True

        # the waiter must exist before the command is sent; the load event can beat the reply
        waiter = asyncio.get_running_loop().create_future()
        self._load_waiter = waiter
        try:
            logger.info("🧭 Navigating to %s", url)
            frame_id = await self.cdp_session.navigate(url)
            if timeout is None:
                await waiter
            else:
                try:
                    await asyncio.wait_for(fut=waiter, timeout=timeout)
                except asyncio.TimeoutError as e:
                    raise NavigationTimeoutError(
                        f"Page.loadEventFired not received within {timeout} seconds for {url}"
                    ) from e
        finally:
            self._is_navigating = False
            self._load_waiter = None

        self.top_frame_id = frame_id
        logger.info("✅ Navigation to %s complete (frame %s)", url, frame_id)
        return frame_id

"""
autotab/cdp/tab.py

Tab: automation API over one CDP page session.
Composes the navigation tracker, the DOM mirror, the element registry and the console relay.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from autotab.cdp.async_cdp_session import AsyncCDPSession
from autotab.cdp.connection import cdp_close_tab, cdp_new_tab
from autotab.cdp.element_registry import Element, ElementRegistry
from autotab.cdp.monitors.console_relay import ConsoleMessageHandler, ConsoleRelay
from autotab.cdp.monitors.dom_mirror import DomMirror
from autotab.cdp.monitors.navigation_tracker import NavigationTracker
from autotab.config import Config
from autotab.data_models.dom import DOMNode
from autotab.data_models.page import NavigationState
from autotab.utils.exceptions import ElementNotFoundError, SessionUnusableError
from autotab.utils.logger import get_logger

logger = get_logger(name=__name__)


class Tab:
    """
    One controlled browser tab.

    Queries go to the browser for authoritative node ids and resolve them through the
    element registry; navigate() is the only operation that waits on page events.
    """

    # Magic methods ________________________________________________________________________________________________________

    def __init__(self, cdp_session: AsyncCDPSession) -> None:
        """
        Initialize Tab.
        Args:
            cdp_session: A session for a page target. Call setup() once it is connected.
        """
        self.cdp_session = cdp_session
        self.navigation_tracker = NavigationTracker(cdp_session=cdp_session)
        self.dom_mirror = DomMirror()
        self.element_registry = ElementRegistry(mirror=self.dom_mirror, cdp_session=cdp_session)
        self.console_relay = ConsoleRelay()
        self._closed = False


    # Properties ___________________________________________________________________________________________________________

    @property
    def navigation_state(self) -> NavigationState:
        return self.navigation_tracker.state

    @property
    def is_navigating(self) -> bool:
        return self.navigation_tracker.is_navigating

    @property
    def is_transitioning(self) -> bool:
        return self.navigation_tracker.is_transitioning


    # Private methods ______________________________________________________________________________________________________

    def _ensure_usable(self) -> None:
        if self._closed or not self.cdp_session.is_connected:
            raise SessionUnusableError("Tab is closed or its CDP session is not connected")

    async def _document_root_id(self) -> int:
        """Root node id of the mirrored document; fetches the document only if none is loaded."""
        root_id = self.dom_mirror.root_id
        if root_id:
            return root_id
        return (await self.get_document()).node_id


    # Public methods _______________________________________________________________________________________________________

    async def setup(self) -> None:
        """
        Enable the Page, DOM and Console domains, subscribe the monitors,
        seed the top frame and load the document into the mirror.
        """
        self._ensure_usable()
        logger.info("🔧 Setting up tab...")

        self.navigation_tracker.attach(self.cdp_session)
        self.dom_mirror.attach(self.cdp_session)
        self.console_relay.attach(self.cdp_session)

        await self.cdp_session.enable_domain("Page")
        await self.cdp_session.enable_domain("DOM")
        await self.cdp_session.enable_domain("Console")

        resource_tree = await self.cdp_session.get_resource_tree()
        self.navigation_tracker.set_top_frame_id(resource_tree.frame.id)
        await self.get_document()
        logger.info("✅ Tab setup complete (top frame %s)", resource_tree.frame.id)

    async def close(self) -> None:
        """Detach the monitors and stop console relaying. Further calls raise SessionUnusableError."""
        if self._closed:
            return
        self._closed = True
        await self.console_relay.clear_handler()
        self.navigation_tracker.detach(self.cdp_session)
        self.dom_mirror.detach(self.cdp_session)
        self.console_relay.detach(self.cdp_session)

    async def navigate(self, url: str, timeout: float | None = None) -> str:
        """
        Navigate to a URL and wait for Page.loadEventFired.
        Args:
            url: The URL to navigate to.
            timeout: Seconds to wait for the load event; None waits indefinitely.
        Returns:
            The frame id of the navigated frame.
        """
        self._ensure_usable()
        return await self.navigation_tracker.navigate(url, timeout=timeout)

    async def get_document(self) -> DOMNode:
        """
        Fetch the whole document tree and load it into the mirror.
        The tree is loaded on the receiver task, ahead of any DOM event delivered after the reply.
        Replacing a loaded tree starts a new generation: earlier element handles become stale.
        """
        self._ensure_usable()
        return await self.cdp_session.get_document(depth=-1, on_document=self.dom_mirror.load_document)

    async def get_page_source(self) -> str:
        """Returns the top window document's source, as currently rendered."""
        self._ensure_usable()
        return await self.cdp_session.get_outer_html(await self._document_root_id())

    async def get_elements_by_selector(self, selector: str) -> list[Element]:
        """
        Get all elements of the top level document matching a CSS selector.
        Returns:
            Handles in the order the browser returned them; empty if nothing matches.
        """
        self._ensure_usable()
        if not selector:
            return []
        root_id = await self._document_root_id()
        node_ids = await self.cdp_session.query_selector_all(root_id, selector)
        return [self.element_registry.resolve(node_id) for node_id in node_ids]

    async def get_element_by_id(self, attribute_id: str) -> Element:
        """
        Returns the element of the top level document whose id attribute is attribute_id.
        Does not search frames.
        Raises:
            ElementNotFoundError: If no element has that id.
        """
        self._ensure_usable()
        root_id = await self._document_root_id()
        node_id = await self.cdp_session.query_selector(root_id, f"#{attribute_id}")
        if not node_id:
            raise ElementNotFoundError(f"no element with id '{attribute_id}'")
        return self.element_registry.resolve(node_id)

    async def get_element_by_node_id(self, node_id: int) -> Element:
        """
        Returns the element for a node id of the current document.
        Raises:
            ElementNotFoundError: If the node id is not in the document.
        """
        self._ensure_usable()
        await self._document_root_id()
        return self.element_registry.resolve(node_id)

    async def get_element_source(self, node_id: int) -> str:
        """Returns the outer HTML of the node."""
        self._ensure_usable()
        return await self.cdp_session.get_outer_html(node_id)

    async def get_frame_resources(self) -> dict[str, str]:
        """Gets all frame ids and urls, the top frame and every nested frame."""
        self._ensure_usable()
        resource_tree = await self.cdp_session.get_resource_tree()
        return resource_tree.frame_urls()

    async def get_frame_source(self, frame_id: str, url: str) -> tuple[str, bool]:
        """
        Returns the raw (non-serialized DOM) source of a frame resource.
        Returns:
            Tuple of (content, is_base64).
        """
        self._ensure_usable()
        return await self.cdp_session.get_resource_content(frame_id, url)

    async def click(self, x: int, y: int) -> None:
        """
        Issues a left button mousePressed then mouseReleased at (x, y).
        If the press fails the release is not sent.
        """
        self._ensure_usable()
        await self.cdp_session.dispatch_mouse_event("mousePressed", x, y)
        await self.cdp_session.dispatch_mouse_event("mouseReleased", x, y)

    async def get_console_messages(self, handler: ConsoleMessageHandler) -> None:
        """
        Start relaying console messages to handler, replacing any previous handler.
        Args:
            handler: Coroutine function called once per message.
        """
        self._ensure_usable()
        await self.console_relay.set_handler(handler)

    async def stop_console_messages(self) -> None:
        """Stop relaying console messages."""
        await self.console_relay.clear_handler()

    # Bootstrap

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        remote_debugging_address: str = Config.REMOTE_DEBUGGING_ADDRESS,
        url: str = "about:blank",
        close_tab_when_done: bool = True,
    ) -> AsyncIterator[Tab]:
        """
        Open a new browser tab, connect to it and set it up.

        Usage:
            async with Tab.open("http://127.0.0.1:9222") as tab:
                await tab.navigate("https://example.com")

        Args:
            remote_debugging_address: Chrome debugging server address.
            url: Initial URL of the new tab.
            close_tab_when_done: Close the browser tab on exit.
        """
        target_id, ws_url = cdp_new_tab(remote_debugging_address=remote_debugging_address, url=url)
        cdp_session = AsyncCDPSession(ws_url=ws_url)
        await cdp_session.connect()
        tab = cls(cdp_session)
        try:
            await tab.setup()
            yield tab
        finally:
            await tab.close()
            await cdp_session.close()
            if close_tab_when_done:
                cdp_close_tab(remote_debugging_address, target_id)

"""
autotab/cdp/async_cdp_session.py

Asynchronous CDP session for a single page target.
Owns the WebSocket, the command/response bookkeeping and the named-event subscriptions.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable

from pydantic import ValidationError
from websockets.asyncio.client import connect, ClientConnection
from websockets.exceptions import ConnectionClosed

from autotab.config import Config
from autotab.data_models.dom import DOMNode
from autotab.data_models.page import FrameResourceTree
from autotab.utils.exceptions import CommandFailedError, SessionUnusableError
from autotab.utils.logger import get_logger

logger = get_logger(name=__name__)

EventHandler = Callable[[dict[str, Any]], Awaitable[None]]
ResultHandler = Callable[[dict[str, Any] | None], None]


class AsyncCDPSession:
    """
    CDP session bound to one page-level WebSocket.
    A single receiver task reads the socket, resolves pending command futures and
    delivers events to subscribers in arrival order.
    """

    # Magic methods ________________________________________________________________________________________________________

    def __init__(
        self,
        ws_url: str,
        command_timeout: float = Config.CDP_COMMAND_TIMEOUT,
    ) -> None:
        """
        Initialize AsyncCDPSession.
        Args:
            ws_url: Page-level WebSocket URL (webSocketDebuggerUrl of a page target).
            command_timeout: Default timeout in seconds for send_and_wait.
        """
        self.ws_url = ws_url
        self.command_timeout = command_timeout
        self.ws: ClientConnection | None = None
        self.seq = 0  # sequence ID for CDP commands

        # response tracking for CDP commands
        self.pending_responses: dict[int, tuple[str, asyncio.Future, ResultHandler | None]] = {}  # command ID -> (method, future, on_result)

        # track enabled CDP domains to avoid duplicate enables
        self._enabled_domains: set[str] = set()  # e.g., {"Page", "DOM", "Console"}

        # event subscriptions, in subscription order
        self._subscribers: dict[str, list[EventHandler]] = {}  # event method -> handlers

        self._receiver_task: asyncio.Task | None = None
        self._closed = False
        self.message_count = 0

    async def __aenter__(self) -> "AsyncCDPSession":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


    # Properties ___________________________________________________________________________________________________________

    @property
    def is_connected(self) -> bool:
        return self.ws is not None and not self._closed


    # Private methods ______________________________________________________________________________________________________

    async def _message_receiver(self) -> None:
        """Receive and process WebSocket messages until the socket closes."""
        assert self.ws is not None
        try:
            async for message in self.ws:
                self.message_count += 1
                if self.message_count % 500 == 0:
                    logger.info("📊 Processed %d messages total", self.message_count)
                try:
                    msg = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("⚠️ Dropping non-JSON message: %s", str(message)[:250])
                    continue
                await self.handle_message(msg)
        except asyncio.CancelledError:
            logger.info("🛑 Message receiver cancelled (processed %d messages)", self.message_count)
            raise
        except ConnectionClosed as e:
            logger.warning("🔌 WebSocket closed: %s", e)
        finally:
            self._closed = True
            self._fail_pending(SessionUnusableError("CDP session closed"))

    def _fail_pending(self, error: Exception) -> None:
        """Fail every command still waiting for a reply."""
        pending, self.pending_responses = self.pending_responses, {}
        for _, future, _ in pending.values():
            if not future.done():
                future.set_exception(error)

    def _handle_command_reply(self, msg: dict) -> None:
        """Resolve the future of a CDP command reply."""
        cmd_id = msg.get("id")
        pending = self.pending_responses.pop(cmd_id, None)
        if pending is None:
            logger.debug("📥 Command reply not handled: id=%s", cmd_id)
            return
        method, future, on_result = pending
        if future.done():
            return

        if "error" in msg:
            logger.debug("📥 Command id=%s failed: %s", cmd_id, msg["error"])
            future.set_exception(CommandFailedError(method=method, error=msg["error"]))
            return

        result = msg.get("result")
        if on_result is not None:
            # runs before the next message is dispatched
            try:
                on_result(result)
            except Exception as e:
                logger.warning("⚠️ Result handler for %s failed: %s", method, e)
                future.set_exception(e)
                return
        future.set_result(result)

    async def _dispatch_event(self, method: str, params: dict[str, Any]) -> None:
        """Deliver an event to its subscribers, one after another."""
        for handler in list(self._subscribers.get(method, [])):
            try:
                await handler(params)
            except Exception as e:
                logger.error("❌ Handler for %s failed: %s", method, e, exc_info=True)

    def _next_command_id(self, method: str) -> int:
        """Allocate a command sequence ID; fails if the session cannot carry commands."""
        if not self.is_connected:
            raise SessionUnusableError(f"Cannot send {method}: CDP session is not connected")
        self.seq += 1
        return self.seq

    async def _send_message(self, cmd_id: int, method: str, params: dict | None) -> None:
        msg = {
            "id": cmd_id,
            "method": method,
            "params": params or {},
        }
        try:
            await self.ws.send(json.dumps(msg))
        except ConnectionClosed as e:
            raise CommandFailedError(method=method, error=str(e)) from e

    @staticmethod
    def _require(method: str, result: dict | None, key: str) -> Any:
        """Return result[key] or raise CommandFailedError for a malformed response."""
        if not isinstance(result, dict) or key not in result:
            raise CommandFailedError(method=method, error=f"response missing '{key}': {result}")
        return result[key]


    # Public methods _______________________________________________________________________________________________________

    async def connect(self) -> None:
        """Open the WebSocket and start the receiver task."""
        if self._closed:
            raise SessionUnusableError("CDP session already closed")
        logger.info("🔌 Connecting to CDP: %s", self.ws_url)
        self.ws = await connect(uri=self.ws_url, max_size=None)
        self._receiver_task = asyncio.create_task(coro=self._message_receiver())
        logger.info("✅ WebSocket connected")

    async def close(self) -> None:
        """Stop the receiver, close the WebSocket and fail outstanding commands."""
        self._closed = True
        if self._receiver_task is not None:
            self._receiver_task.cancel()
            try:
                await self._receiver_task
            except asyncio.CancelledError:
                pass
            self._receiver_task = None
        if self.ws is not None:
            await self.ws.close()
        self._fail_pending(SessionUnusableError("CDP session closed"))
        logger.info("✅ CDP session closed")

    def subscribe(self, method: str, handler: EventHandler) -> None:
        """
        Register an async handler for a CDP event.
        Args:
            method: The CDP event name, e.g. "Page.loadEventFired".
            handler: Coroutine function taking the event params. Runs on the receiver task, so it must
                not await CDP commands (their replies are delivered by the same task).
        """
        self._subscribers.setdefault(method, []).append(handler)

    def unsubscribe(self, method: str, handler: EventHandler | None = None) -> None:
        """
        Remove a handler for a CDP event, or every handler for it when handler is None.
        """
        if handler is None:
            self._subscribers.pop(method, None)
            return
        handlers = self._subscribers.get(method, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self._subscribers.pop(method, None)

    async def handle_message(self, msg: dict) -> None:
        """Handle an incoming CDP message: command reply or event."""
        if "id" in msg:
            self._handle_command_reply(msg)
            return

        method = msg.get("method")
        if method:
            params = msg.get("params")
            await self._dispatch_event(method, params if isinstance(params, dict) else {})

    async def send(self, method: str, params: dict | None = None) -> int:
        """
        Send CDP command and return sequence ID.
        Args:
            method (str): The CDP method to send. For example, "DOM.getDocument".
            params (dict | None): The parameters to send with the command.
        Returns:
            int: The sequence ID of the command.
        """
        cmd_id = self._next_command_id(method)
        await self._send_message(cmd_id, method, params)
        return cmd_id

    async def send_and_wait(
        self,
        method: str,
        params: dict | None = None,
        timeout: float | None = None,
        on_result: ResultHandler | None = None,
    ) -> dict | None:
        """
        Send CDP command and wait for its reply.
        Args:
            method: The CDP method to send.
            params: The parameters to send with the command.
            timeout: Timeout in seconds, defaults to self.command_timeout.
            on_result: Called with the result on the receiver task, in order with events,
                before the caller resumes. An exception it raises fails the command.
        Returns:
            The result from the CDP command.
        Raises:
            CommandFailedError: On an error reply, a timeout or a transport fault.
            SessionUnusableError: If the session is not connected.
        """
        cmd_id = self._next_command_id(method)
        timeout = timeout or self.command_timeout

        # register the future before sending so a fast reply cannot be missed
        future = asyncio.get_running_loop().create_future()
        self.pending_responses[cmd_id] = (method, future, on_result)
        try:
            await self._send_message(cmd_id, method, params)
            return await asyncio.wait_for(fut=future, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise CommandFailedError(method=method, error=f"timed out after {timeout} seconds") from e
        finally:
            self.pending_responses.pop(cmd_id, None)

    async def enable_domain(
        self,
        domain: str,
        params: dict | None = None,
    ) -> None:
        """
        Enable a CDP domain idempotently (skip if already enabled).
        Args:
            domain: The CDP domain name (e.g., "Page", "DOM", "Console").
            params: Optional parameters for the enable command.
        """
        if domain in self._enabled_domains:
            logger.debug("⏭️ Domain %s already enabled, skipping", domain)
            return

        await self.send_and_wait(method=f"{domain}.enable", params=params)
        self._enabled_domains.add(domain)
        logger.debug("✅ Domain %s enabled", domain)

    ## Domain commands

    async def navigate(self, url: str) -> str:
        """Page.navigate; returns the frame id. A reply carrying errorText is a failure."""
        result = await self.send_and_wait(method="Page.navigate", params={"url": url})
        frame_id = self._require("Page.navigate", result, "frameId")
        if result.get("errorText"):
            raise CommandFailedError(method="Page.navigate", error=result["errorText"])
        return frame_id

    async def get_document(
        self,
        depth: int = -1,
        pierce: bool = False,
        on_document: Callable[[DOMNode], None] | None = None,
    ) -> DOMNode:
        """
        DOM.getDocument; depth=-1 returns the entire subtree.
        Args:
            depth: Subtree depth to return, -1 for all of it.
            pierce: Whether iframes and shadow roots are traversed.
            on_document: Called with the root on the receiver task, ahead of any event
                delivered after the reply.
        Returns:
            The document node.
        """
        documents: list[DOMNode] = []

        def parse_root(result: dict[str, Any] | None) -> None:
            root = self._require("DOM.getDocument", result, "root")
            try:
                document = DOMNode.model_validate(root)
            except ValidationError as e:
                raise CommandFailedError(method="DOM.getDocument", error=str(e)) from e
            documents.append(document)
            if on_document is not None:
                on_document(document)

        await self.send_and_wait(
            method="DOM.getDocument",
            params={"depth": depth, "pierce": pierce},
            on_result=parse_root,
        )
        return documents[0]

    async def request_child_nodes(self, node_id: int, depth: int = 1) -> None:
        """DOM.requestChildNodes; the children arrive later as DOM.setChildNodes events."""
        await self.send_and_wait(
            method="DOM.requestChildNodes",
            params={"nodeId": node_id, "depth": depth},
        )

    async def query_selector(self, node_id: int, selector: str) -> int:
        """DOM.querySelector; returns 0 when nothing matches."""
        result = await self.send_and_wait(
            method="DOM.querySelector",
            params={"nodeId": node_id, "selector": selector},
        )
        return self._require("DOM.querySelector", result, "nodeId")

    async def query_selector_all(self, node_id: int, selector: str) -> list[int]:
        result = await self.send_and_wait(
            method="DOM.querySelectorAll",
            params={"nodeId": node_id, "selector": selector},
        )
        return list(self._require("DOM.querySelectorAll", result, "nodeIds"))

    async def get_outer_html(self, node_id: int) -> str:
        result = await self.send_and_wait(
            method="DOM.getOuterHTML",
            params={"nodeId": node_id},
        )
        return self._require("DOM.getOuterHTML", result, "outerHTML")

    async def get_resource_tree(self) -> FrameResourceTree:
        result = await self.send_and_wait(method="Page.getResourceTree")
        frame_tree = self._require("Page.getResourceTree", result, "frameTree")
        try:
            return FrameResourceTree.model_validate(frame_tree)
        except ValidationError as e:
            raise CommandFailedError(method="Page.getResourceTree", error=str(e)) from e

    async def get_resource_content(self, frame_id: str, url: str) -> tuple[str, bool]:
        """Page.getResourceContent; returns (content, is_base64)."""
        result = await self.send_and_wait(
            method="Page.getResourceContent",
            params={"frameId": frame_id, "url": url},
        )
        content = self._require("Page.getResourceContent", result, "content")
        return content, bool(result.get("base64Encoded", False))

    async def dispatch_mouse_event(
        self,
        event_type: str,
        x: int,
        y: int,
        modifiers: int = 0,
        timestamp: float | None = None,
        button: str = "left",
        click_count: int = 1,
    ) -> None:
        """
        Input.dispatchMouseEvent.
        Args:
            event_type: "mousePressed", "mouseReleased" or "mouseMoved".
            button: "none", "left", "middle" or "right".
        """
        params: dict[str, Any] = {
            "type": event_type,
            "x": x,
            "y": y,
            "modifiers": modifiers,
            "button": button,
            "clickCount": click_count,
        }
        if timestamp is not None:
            params["timestamp"] = timestamp
        await self.send_and_wait(method="Input.dispatchMouseEvent", params=params)

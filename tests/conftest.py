"""
tests/conftest.py

Configuration for pytest.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from autotab.cdp.async_cdp_session import AsyncCDPSession


@pytest.fixture(scope="session")
def tests_root() -> Path:
    """
    Root directory for tests.
    Returns:
        Path to the tests directory.
    """
    return Path(__file__).parent.resolve()


def make_node(
    node_id: int,
    node_name: str = "DIV",
    children: list[dict[str, Any]] | None = None,
    attributes: dict[str, str] | None = None,
    node_type: int = 1,
    node_value: str = "",
) -> dict[str, Any]:
    """
    Build a CDP DOM.Node payload.
    """
    node: dict[str, Any] = {
        "nodeId": node_id,
        "backendNodeId": node_id + 1000,
        "nodeType": node_type,
        "nodeName": node_name,
        "localName": node_name.lower() if node_type == 1 else "",
        "nodeValue": node_value,
    }
    if children is not None:
        node["children"] = children
        node["childNodeCount"] = len(children)
    if attributes:
        node["attributes"] = [item for pair in attributes.items() for item in pair]
    return node


def make_document() -> dict[str, Any]:
    """
    Build a small document:

        #document(1)
          HTML(2)
            HEAD(3)
            BODY(4)
              DIV#main.item(12)
                #text(20)
              DIV.item(13)
              DIV.item(14)
                SPAN#deep(15)
    """
    return make_node(1, "#document", node_type=9, children=[
        make_node(2, "HTML", children=[
            make_node(3, "HEAD", children=[]),
            make_node(4, "BODY", children=[
                make_node(12, "DIV", attributes={"id": "main", "class": "item"}, children=[
                    make_node(20, "#text", node_type=3, node_value="hello"),
                ]),
                make_node(13, "DIV", attributes={"class": "item"}, children=[]),
                make_node(14, "DIV", attributes={"class": "item"}, children=[
                    make_node(15, "SPAN", attributes={"id": "deep"}, children=[]),
                ]),
            ]),
        ]),
    ])


class FakeBrowser:
    """
    Stands in for the browser end of an AsyncCDPSession's WebSocket.
    Commands sent by the session are recorded and answered asynchronously through
    handle_message, the same path real replies take.
    """

    def __init__(self, cdp_session: AsyncCDPSession) -> None:
        self.cdp_session = cdp_session
        self.sent: list[dict[str, Any]] = []
        self._results: dict[str, dict[str, Any] | Callable[[dict[str, Any]], dict[str, Any]]] = {}
        self._errors: dict[str, dict[str, Any]] = {}
        self._silent: set[str] = set()
        self._reply_tasks: list[asyncio.Task] = []

        cdp_session.ws = MagicMock()
        cdp_session.ws.send = AsyncMock(side_effect=self._on_send)
        cdp_session.ws.close = AsyncMock()

    async def _on_send(self, raw: str) -> None:
        msg = json.loads(raw)
        self.sent.append(msg)
        method = msg["method"]
        if method in self._silent:
            return
        if method in self._errors:
            reply = {"id": msg["id"], "error": self._errors[method]}
        else:
            result = self._results.get(method, {})
            if callable(result):
                result = result(msg["params"])
            reply = {"id": msg["id"], "result": result}
        self._reply_tasks.append(asyncio.create_task(self.cdp_session.handle_message(reply)))

    def on(self, method: str, result: dict[str, Any] | Callable[[dict[str, Any]], dict[str, Any]]) -> None:
        """Answer method with result (or with result(params) if callable)."""
        self._results[method] = result

    def fail(self, method: str, message: str = "Internal error", code: int = -32000) -> None:
        """Answer method with a CDP error."""
        self._errors[method] = {"code": code, "message": message}

    def never_reply(self, method: str) -> None:
        self._silent.add(method)

    def sent_methods(self) -> list[str]:
        return [msg["method"] for msg in self.sent]

    async def emit(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Deliver an event to the session."""
        await self.cdp_session.handle_message({"method": method, "params": params or {}})


@pytest.fixture
def cdp_session() -> AsyncCDPSession:
    return AsyncCDPSession(ws_url="ws://127.0.0.1:9222/devtools/page/TEST", command_timeout=1.0)


@pytest.fixture
def browser(cdp_session: AsyncCDPSession) -> FakeBrowser:
    """
    A fake browser answering the usual tab commands for the document from make_document().
    """
    fake = FakeBrowser(cdp_session)
    fake.on("DOM.getDocument", {"root": make_document()})
    fake.on("Page.getResourceTree", {
        "frameTree": {
            "frame": {"id": "TOP", "loaderId": "L1", "url": "https://example.com/", "mimeType": "text/html"},
            "childFrames": [
                {
                    "frame": {"id": "CHILD1", "parentId": "TOP", "url": "https://ads.example.com/"},
                    "childFrames": [
                        {"frame": {"id": "GRANDCHILD", "parentId": "CHILD1", "url": "https://cdn.example.com/"}},
                    ],
                },
                {"frame": {"id": "CHILD2", "parentId": "TOP", "url": "about:blank"}},
            ],
            "resources": [],
        }
    })
    fake.on("DOM.getOuterHTML", lambda params: {"outerHTML": f"<node id={params['nodeId']}>"})
    return fake


async def settle(rounds: int = 5) -> None:
    """Let pending reply tasks and event handlers run."""
    for _ in range(rounds):
        await asyncio.sleep(0)

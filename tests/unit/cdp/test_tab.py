"""
tests/unit/cdp/test_tab.py

Tests for the Tab facade against a fake browser.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from autotab.cdp.async_cdp_session import AsyncCDPSession
from autotab.cdp.tab import Tab
from autotab.utils.exceptions import (
    CommandFailedError,
    ElementNotFoundError,
    SessionUnusableError,
    StaleElementError,
)
from tests.conftest import FakeBrowser, make_document, make_node, settle


@pytest_asyncio.fixture
async def tab(browser: FakeBrowser, cdp_session: AsyncCDPSession) -> Tab:
    browser_tab = Tab(cdp_session)
    await browser_tab.setup()
    browser.sent.clear()
    return browser_tab


class TestSetup:
    """
    Tests for Tab.setup / Tab.close.
    """

    @pytest.mark.asyncio
    async def test_setup(self, browser: FakeBrowser, cdp_session: AsyncCDPSession) -> None:
        """Enables the domains, seeds the top frame and mirrors the document."""
        tab = Tab(cdp_session)
        await tab.setup()
        assert browser.sent_methods() == [
            "Page.enable",
            "DOM.enable",
            "Console.enable",
            "Page.getResourceTree",
            "DOM.getDocument",
        ]
        assert tab.navigation_state.top_frame_id == "TOP"
        assert len(tab.dom_mirror) == 10

    @pytest.mark.asyncio
    async def test_setup_not_connected(self) -> None:
        tab = Tab(AsyncCDPSession(ws_url="ws://test"))
        with pytest.raises(SessionUnusableError):
            await tab.setup()

    @pytest.mark.asyncio
    async def test_closed_tab_unusable(self, tab: Tab, browser: FakeBrowser) -> None:
        await tab.close()
        with pytest.raises(SessionUnusableError):
            await tab.get_page_source()
        with pytest.raises(SessionUnusableError):
            await tab.navigate("https://example.com")
        with pytest.raises(SessionUnusableError):
            await tab.click(1, 1)
        assert browser.sent == []

    @pytest.mark.asyncio
    async def test_close_detaches_monitors(self, tab: Tab, cdp_session: AsyncCDPSession) -> None:
        await tab.close()
        await tab.close()
        assert cdp_session._subscribers == {}


class TestQueries:
    """
    Tests for the DOM query operations.
    """

    @pytest.mark.asyncio
    async def test_get_elements_by_selector(self, tab: Tab, browser: FakeBrowser) -> None:
        """Handles come back in browser order and their source matches DOM.getOuterHTML."""
        browser.on("DOM.querySelectorAll", {"nodeIds": [12, 13, 14]})
        elements = await tab.get_elements_by_selector(".item")

        assert [element.node_id for element in elements] == [12, 13, 14]
        assert [await element.get_source() for element in elements] == [
            "<node id=12>",
            "<node id=13>",
            "<node id=14>",
        ]
        query = next(msg for msg in browser.sent if msg["method"] == "DOM.querySelectorAll")
        assert query["params"] == {"nodeId": 1, "selector": ".item"}

    @pytest.mark.asyncio
    async def test_get_elements_no_match(self, tab: Tab, browser: FakeBrowser) -> None:
        browser.on("DOM.querySelectorAll", {"nodeIds": []})
        assert await tab.get_elements_by_selector("table") == []

    @pytest.mark.asyncio
    async def test_empty_selector(self, tab: Tab, browser: FakeBrowser) -> None:
        assert await tab.get_elements_by_selector("") == []
        assert browser.sent == []

    @pytest.mark.asyncio
    async def test_invalid_selector(self, tab: Tab, browser: FakeBrowser) -> None:
        browser.fail("DOM.querySelectorAll", message="DOM Error while querying")
        with pytest.raises(CommandFailedError):
            await tab.get_elements_by_selector("div[")

    @pytest.mark.asyncio
    async def test_get_element_by_id(self, tab: Tab, browser: FakeBrowser) -> None:
        browser.on("DOM.querySelector", {"nodeId": 12})
        element = await tab.get_element_by_id("main")
        assert element.node_id == 12
        assert element.get_attribute("id") == "main"
        query = next(msg for msg in browser.sent if msg["method"] == "DOM.querySelector")
        assert query["params"]["selector"] == "#main"

    @pytest.mark.asyncio
    async def test_get_element_by_id_not_found(self, tab: Tab, browser: FakeBrowser) -> None:
        browser.on("DOM.querySelector", {"nodeId": 0})
        with pytest.raises(ElementNotFoundError, match="missing"):
            await tab.get_element_by_id("missing")

    @pytest.mark.asyncio
    async def test_get_element_by_node_id(self, tab: Tab) -> None:
        element = await tab.get_element_by_node_id(15)
        assert element.node_name == "SPAN"

    @pytest.mark.asyncio
    async def test_get_element_by_node_id_not_found(self, tab: Tab) -> None:
        with pytest.raises(ElementNotFoundError):
            await tab.get_element_by_node_id(404)

    @pytest.mark.asyncio
    async def test_get_page_source(self, tab: Tab, browser: FakeBrowser) -> None:
        """Reads the mirrored root's outer HTML without re-fetching the document."""
        assert await tab.get_page_source() == "<node id=1>"
        assert browser.sent_methods() == ["DOM.getOuterHTML"]
        assert browser.sent[0]["params"] == {"nodeId": 1}

    @pytest.mark.asyncio
    async def test_queries_reuse_mirrored_document(self, tab: Tab, browser: FakeBrowser) -> None:
        """Handles from an earlier query stay valid across later queries."""
        browser.on("DOM.querySelectorAll", {"nodeIds": [12, 13, 14]})
        browser.on("DOM.querySelector", {"nodeId": 12})
        first = (await tab.get_elements_by_selector(".item"))[0]
        await tab.get_element_by_id("main")
        await tab.get_element_by_node_id(15)

        assert "DOM.getDocument" not in browser.sent_methods()
        assert not first.is_stale
        assert await first.get_source() == "<node id=12>"

    @pytest.mark.asyncio
    async def test_refetch_makes_earlier_handles_stale(self, tab: Tab, browser: FakeBrowser) -> None:
        """A full fetch re-issues node ids; handles from before it raise StaleElementError."""
        browser.on("DOM.querySelectorAll", {"nodeIds": [12]})
        first = (await tab.get_elements_by_selector("#main"))[0]

        browser.on("DOM.getDocument", {"root": make_node(101, "#document", node_type=9, children=[
            make_node(102, "HTML", children=[make_node(112, "DIV", attributes={"id": "main"}, children=[])]),
        ])})
        await tab.get_document()

        assert first.is_stale
        with pytest.raises(StaleElementError):
            first.node
        with pytest.raises(StaleElementError):
            await first.get_source()

        browser.on("DOM.querySelectorAll", {"nodeIds": [112]})
        fresh = (await tab.get_elements_by_selector("#main"))[0]
        assert fresh.generation == first.generation + 1
        assert fresh.get_attribute("id") == "main"

    @pytest.mark.asyncio
    async def test_event_right_after_document_reply_is_kept(
        self, tab: Tab, browser: FakeBrowser, cdp_session: AsyncCDPSession
    ) -> None:
        """An insert delivered back-to-back with the DOM.getDocument reply lands in the new tree."""
        browser.never_reply("DOM.getDocument")
        task = asyncio.create_task(tab.get_document())
        await settle()
        request = next(msg for msg in browser.sent if msg["method"] == "DOM.getDocument")

        await cdp_session.handle_message({"id": request["id"], "result": {"root": make_document()}})
        await cdp_session.handle_message({
            "method": "DOM.childNodeInserted",
            "params": {"parentNodeId": 4, "previousNodeId": 14, "node": make_node(99, "P")},
        })
        await task

        assert 99 in tab.dom_mirror
        assert tab.dom_mirror.get_node(4).children == [12, 13, 14, 99]

    @pytest.mark.asyncio
    async def test_element_stale_after_document_updated(self, tab: Tab, browser: FakeBrowser) -> None:
        """An element taken before DOM.documentUpdated raises StaleElementError."""
        browser.on("DOM.querySelector", {"nodeId": 12})
        element = await tab.get_element_by_id("main")
        await browser.emit("DOM.documentUpdated", {})
        with pytest.raises(StaleElementError):
            await element.get_source()

        fresh = await tab.get_element_by_id("main")
        assert fresh.generation == 1
        assert await fresh.get_source() == "<node id=12>"

    @pytest.mark.asyncio
    async def test_mutation_events_reach_mirror(self, tab: Tab, browser: FakeBrowser) -> None:
        await browser.emit("DOM.attributeModified", {"nodeId": 13, "name": "hidden", "value": ""})
        assert tab.dom_mirror.get_node(13).attributes["hidden"] == ""


class TestFrames:
    """
    Tests for the frame operations.
    """

    @pytest.mark.asyncio
    async def test_get_frame_resources(self, tab: Tab) -> None:
        """Nested frames are included."""
        assert await tab.get_frame_resources() == {
            "TOP": "https://example.com/",
            "CHILD1": "https://ads.example.com/",
            "GRANDCHILD": "https://cdn.example.com/",
            "CHILD2": "about:blank",
        }

    @pytest.mark.asyncio
    async def test_get_frame_source(self, tab: Tab, browser: FakeBrowser) -> None:
        browser.on("Page.getResourceContent", {"content": "<html></html>", "base64Encoded": False})
        assert await tab.get_frame_source("CHILD1", "https://ads.example.com/") == ("<html></html>", False)

    @pytest.mark.asyncio
    async def test_get_frame_source_failure(self, tab: Tab, browser: FakeBrowser) -> None:
        browser.fail("Page.getResourceContent", message="No resource with given URL found")
        with pytest.raises(CommandFailedError):
            await tab.get_frame_source("TOP", "https://example.com/missing.js")


class TestClick:
    """
    Tests for Tab.click.
    """

    @pytest.mark.asyncio
    async def test_press_then_release(self, tab: Tab, browser: FakeBrowser) -> None:
        await tab.click(100, 200)
        assert [(msg["params"]["type"], msg["params"]["x"], msg["params"]["y"]) for msg in browser.sent] == [
            ("mousePressed", 100, 200),
            ("mouseReleased", 100, 200),
        ]
        assert all(msg["params"]["button"] == "left" for msg in browser.sent)

    @pytest.mark.asyncio
    async def test_failed_press_skips_release(self, tab: Tab, browser: FakeBrowser) -> None:
        browser.fail("Input.dispatchMouseEvent")
        with pytest.raises(CommandFailedError):
            await tab.click(1, 2)
        assert len(browser.sent) == 1


class TestNavigate:
    """
    Tests for Tab.navigate.
    """

    @pytest.mark.asyncio
    async def test_navigate(self, tab: Tab, browser: FakeBrowser) -> None:
        browser.on("Page.navigate", {"frameId": "TOP", "loaderId": "L2"})
        task = asyncio.create_task(tab.navigate("https://example.com/next"))
        await settle()
        assert tab.is_navigating
        await browser.emit("Page.loadEventFired", {"timestamp": 5.0})
        assert await task == "TOP"
        assert not tab.is_navigating


class TestConsole:
    """
    Tests for console relaying through the tab.
    """

    @pytest.mark.asyncio
    async def test_relay_and_stop(self, tab: Tab, browser: FakeBrowser) -> None:
        handler = AsyncMock()
        await tab.get_console_messages(handler)
        await browser.emit("Console.messageAdded", {"message": {"level": "error", "text": "oops"}})
        await tab.console_relay.drain()
        await tab.stop_console_messages()
        await browser.emit("Console.messageAdded", {"message": {"level": "log", "text": "later"}})
        await settle()

        handler.assert_awaited_once()
        assert handler.await_args.args[0].text == "oops"


class TestOpen:
    """
    Tests for Tab.open.
    """

    @pytest.mark.asyncio
    async def test_open_creates_connects_and_closes(self) -> None:
        session = MagicMock(spec=AsyncCDPSession)
        session.connect = AsyncMock()
        session.close = AsyncMock()

        with patch("autotab.cdp.tab.cdp_new_tab", return_value=("T1", "ws://x/devtools/page/T1")) as new_tab, \
                patch("autotab.cdp.tab.cdp_close_tab") as close_tab, \
                patch("autotab.cdp.tab.AsyncCDPSession", return_value=session) as session_cls, \
                patch.object(Tab, "setup", new=AsyncMock()), \
                patch.object(Tab, "close", new=AsyncMock()):
            async with Tab.open("http://127.0.0.1:9222", url="about:blank") as tab:
                assert tab.cdp_session is session

        new_tab.assert_called_once_with(remote_debugging_address="http://127.0.0.1:9222", url="about:blank")
        session_cls.assert_called_once_with(ws_url="ws://x/devtools/page/T1")
        session.connect.assert_awaited_once()
        session.close.assert_awaited_once()
        close_tab.assert_called_once_with("http://127.0.0.1:9222", "T1")

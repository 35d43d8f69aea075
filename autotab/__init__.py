"""
autotab - drive a browser tab over the Chrome DevTools Protocol.

Usage:
    from autotab import Tab

    async with Tab.open("http://127.0.0.1:9222") as tab:
        await tab.navigate("https://example.com")
        for element in await tab.get_elements_by_selector("a"):
            print(element.get_attribute("href"))
"""

__version__ = "0.1.0"

# Public API
from .cdp.tab import Tab
from .cdp.element_registry import Element, ElementRegistry
from .cdp.async_cdp_session import AsyncCDPSession

# Exceptions
from .utils.exceptions import (
    AutotabError,
    BrowserConnectionError,
    CommandFailedError,
    ConcurrentNavigationError,
    ElementNotFoundError,
    NavigationTimeoutError,
    SessionUnusableError,
    StaleElementError,
)

__all__ = [
    # High-level API
    "Tab",
    "Element",
    "ElementRegistry",
    "AsyncCDPSession",
    # Exceptions
    "AutotabError",
    "BrowserConnectionError",
    "CommandFailedError",
    "ConcurrentNavigationError",
    "ElementNotFoundError",
    "NavigationTimeoutError",
    "SessionUnusableError",
    "StaleElementError",
]

"""
autotab/cdp/__init__.py

CDP (Chrome DevTools Protocol) tab session package.

Primary classes:
- AsyncCDPSession: WebSocket transport, commands and event subscriptions
- Tab: automation API for one browser tab
- Element, ElementRegistry: generation-stamped handles onto mirrored DOM nodes
"""

from autotab.cdp.async_cdp_session import AsyncCDPSession
from autotab.cdp.element_registry import Element, ElementRegistry
from autotab.cdp.tab import Tab

__all__ = [
    "AsyncCDPSession",
    "Element",
    "ElementRegistry",
    "Tab",
]

"""
autotab/cdp/monitors/__init__.py

Async CDP monitors consuming tab events.
"""

from autotab.cdp.monitors.abstract_async_monitor import AbstractAsyncMonitor
from autotab.cdp.monitors.console_relay import ConsoleRelay
from autotab.cdp.monitors.dom_mirror import DomArena, DomMirror
from autotab.cdp.monitors.navigation_tracker import NavigationTracker

__all__ = [
    "AbstractAsyncMonitor",
    "ConsoleRelay",
    "DomArena",
    "DomMirror",
    "NavigationTracker",
]

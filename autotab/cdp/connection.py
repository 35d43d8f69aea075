"""
autotab/cdp/connection.py

CDP connection and tab management utilities.

This module provides the bootstrap around a tab session:
- WebSocket URL discovery over the DevTools HTTP endpoint
- Tab creation and disposal
"""

from typing import Any
from urllib.parse import urlparse, urlunparse

import requests

from autotab.utils.exceptions import BrowserConnectionError
from autotab.utils.logger import get_logger

logger = get_logger(name=__name__)


# WebSocket URL helpers ___________________________________________________________________________


def _normalize_ws_url(raw_ws: str, remote_debugging_address: str) -> str:
    """Rewrite the netloc of a DevTools WebSocket URL to the address we reached the browser on."""
    parsed = urlparse(raw_ws)
    base_parsed = urlparse(remote_debugging_address)
    fixed_netloc = f"{base_parsed.hostname}:{base_parsed.port}"
    return urlunparse(parsed._replace(netloc=fixed_netloc))


def get_browser_websocket_url(remote_debugging_address: str) -> str:
    """Get the normalized WebSocket URL for browser connection.

    Args:
        remote_debugging_address: The Chrome debugging server address (e.g., 'http://127.0.0.1:9222').

    Returns:
        The WebSocket URL for connecting to the browser.

    Raises:
        BrowserConnectionError: If unable to get the WebSocket URL from the browser.
    """
    base = remote_debugging_address.rstrip("/")
    try:
        ver = requests.get(f"{base}/json/version", timeout=5)
        ver.raise_for_status()
        raw_ws = ver.json().get("webSocketDebuggerUrl")
    except (requests.RequestException, ValueError) as e:
        raise BrowserConnectionError(f"Failed to get browser WebSocket URL: {e}") from e
    if not raw_ws:
        raise BrowserConnectionError("/json/version missing webSocketDebuggerUrl")

    ws_url = _normalize_ws_url(raw_ws, base)
    logger.debug("Raw WebSocket URL: %s, normalized: %s", raw_ws, ws_url)
    return ws_url


# Tab management __________________________________________________________________________________


def list_page_targets(remote_debugging_address: str) -> list[dict[str, Any]]:
    """
    List the page targets (tabs) of the browser.

    Args:
        remote_debugging_address: Chrome debugging server address.

    Returns:
        Target descriptors from /json/list whose type is "page", with
        webSocketDebuggerUrl normalized to the debugging address.

    Raises:
        BrowserConnectionError: If the endpoint cannot be reached.
    """
    base = remote_debugging_address.rstrip("/")
    try:
        resp = requests.get(f"{base}/json/list", timeout=5)
        resp.raise_for_status()
        targets = resp.json()
    except (requests.RequestException, ValueError) as e:
        raise BrowserConnectionError(f"Failed to list targets: {e}") from e

    pages = []
    for target in targets:
        if target.get("type") != "page":
            continue
        if target.get("webSocketDebuggerUrl"):
            target["webSocketDebuggerUrl"] = _normalize_ws_url(target["webSocketDebuggerUrl"], base)
        pages.append(target)
    return pages


def cdp_new_tab(
    remote_debugging_address: str = "http://127.0.0.1:9222",
    url: str = "about:blank",
) -> tuple[str, str]:
    """
    Create a new browser tab.

    Args:
        remote_debugging_address: Chrome debugging server address.
        url: Initial URL for the new tab.

    Returns:
        Tuple of (target_id, ws_url) where ws_url is the tab's page-level WebSocket URL.

    Raises:
        BrowserConnectionError: If failed to create the tab.
    """
    base = remote_debugging_address.rstrip("/")
    try:
        # newer Chrome builds reject GET on /json/new
        resp = requests.put(f"{base}/json/new?{url}", timeout=10)
        resp.raise_for_status()
        target = resp.json()
    except (requests.RequestException, ValueError) as e:
        raise BrowserConnectionError(f"Failed to create target: {e}") from e

    target_id = target.get("id")
    raw_ws = target.get("webSocketDebuggerUrl")
    if not target_id or not raw_ws:
        raise BrowserConnectionError(f"Unexpected /json/new response: {target}")

    logger.info("Created tab %s (%s)", target_id, url)
    return target_id, _normalize_ws_url(raw_ws, base)


def cdp_close_tab(remote_debugging_address: str, target_id: str) -> None:
    """
    Close a browser tab.

    Args:
        remote_debugging_address: Chrome debugging server address.
        target_id: The target ID of the tab to close.

    Raises:
        BrowserConnectionError: If the tab could not be closed.
    """
    base = remote_debugging_address.rstrip("/")
    try:
        resp = requests.get(f"{base}/json/close/{target_id}", timeout=5)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise BrowserConnectionError(f"Failed to close target {target_id}: {e}") from e
    logger.info("Closed tab %s", target_id)

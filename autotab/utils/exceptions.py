"""
autotab/utils/exceptions.py

Custom exceptions for autotab.

Contains:
- AutotabError: Base for everything below
- ElementNotFoundError, StaleElementError: DOM lookup failures
- SessionUnusableError, CommandFailedError: CDP transport failures
- ConcurrentNavigationError, NavigationTimeoutError: Page navigation failures
- BrowserConnectionError: Tab bootstrap failures
"""

from typing import Any


class AutotabError(Exception):
    """
    Base exception for all autotab errors.
    """


class ElementNotFoundError(AutotabError):
    """
    Raised when a selector, attribute id or node id does not resolve in the current document.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Unable to find element: {message}")


class StaleElementError(AutotabError):
    """
    Raised when an element handle or node id belongs to a document generation that has been superseded.
    Callers must re-resolve the element against the new document.
    """

    def __init__(self, node_id: int, generation: int, current_generation: int) -> None:
        self.node_id = node_id
        self.generation = generation
        self.current_generation = current_generation
        super().__init__(
            f"Node {node_id} belongs to document generation {generation}, "
            f"current generation is {current_generation}"
        )


class SessionUnusableError(AutotabError):
    """
    Raised when an operation is invoked on a closed or detached session.
    """


class CommandFailedError(AutotabError):
    """
    Raised when a CDP command fails: error reply, malformed response or transport fault.
    """

    def __init__(self, method: str, error: Any = None) -> None:
        self.method = method
        self.error = error
        super().__init__(f"CDP command {method} failed: {error}")


class ConcurrentNavigationError(AutotabError):
    """
    Raised when navigate() is called while another navigation is outstanding on the same tab.
    """


class NavigationTimeoutError(AutotabError):
    """
    Raised when the load event for a navigation does not arrive before the caller's deadline.
    """


class BrowserConnectionError(AutotabError):
    """
    Exception raised when unable to connect to the browser or create a browser tab.
    """

"""
autotab/cdp/element_registry.py

Element handles onto DOM mirror nodes.
A handle is stamped with the document generation it was issued in; once the mirror
moves to a new generation every use of the handle raises StaleElementError.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from autotab.data_models.dom import MirrorNode
from autotab.utils.exceptions import StaleElementError
from autotab.utils.logger import get_logger

if TYPE_CHECKING:  # avoid circular import
    from autotab.cdp.async_cdp_session import AsyncCDPSession
    from autotab.cdp.monitors.dom_mirror import DomMirror

logger = get_logger(name=__name__)


class Element:
    """
    Handle onto a mirrored DOM node, identified by (generation, node_id).
    Owns no node state: every accessor reads the mirror after checking the generation.
    """

    def __init__(self, registry: ElementRegistry, generation: int, node_id: int) -> None:
        self._registry = registry
        self.generation = generation
        self.node_id = node_id

    def __repr__(self) -> str:
        return f"Element(node_id={self.node_id}, generation={self.generation})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Element):
            return NotImplemented
        return (self.generation, self.node_id) == (other.generation, other.node_id)

    def __hash__(self) -> int:
        return hash((self.generation, self.node_id))

    @property
    def is_stale(self) -> bool:
        return self.generation != self._registry.mirror.generation

    @property
    def node(self) -> MirrorNode:
        """Copy of the mirrored node. Raises StaleElementError after a document reset."""
        return self._registry.mirror.get_node(self.node_id, generation=self.generation)

    @property
    def node_name(self) -> str:
        return self.node.node_name

    @property
    def attributes(self) -> dict[str, str]:
        return self.node.attributes

    @property
    def character_data(self) -> str:
        return self.node.node_value

    def get_attribute(self, name: str) -> str | None:
        return self.node.attributes.get(name)

    def children(self) -> list[Element]:
        """Handles for the materialized children, in mirror order."""
        return [self._registry.resolve_in_generation(child_id, self.generation) for child_id in self.node.children]

    def parent(self) -> Element | None:
        parent_id = self.node.parent_id
        if parent_id == 0:
            return None
        return self._registry.resolve_in_generation(parent_id, self.generation)

    async def get_source(self) -> str:
        """
        Fetch the element's outer HTML from the browser.
        Raises:
            StaleElementError: If the document was reset since the handle was issued.
            CommandFailedError: If DOM.getOuterHTML fails.
        """
        self._registry.check(self)
        return await self._registry.cdp_session.get_outer_html(self.node_id)


class ElementRegistry:
    """
    Issues Element handles for node ids of the mirrored document.
    Cached handles are dropped when the mirror resets; staleness itself is decided
    by generation comparison at use time.
    """

    def __init__(self, mirror: DomMirror, cdp_session: AsyncCDPSession) -> None:
        """
        Initialize ElementRegistry.
        Args:
            mirror: The DOM mirror handles point into.
            cdp_session: The session used by handles that fetch fresh data (outer HTML).
        """
        self.mirror = mirror
        self.cdp_session = cdp_session
        self._lock = threading.RLock()
        self._elements: dict[int, Element] = {}  # node_id -> handle, current generation only
        mirror.add_reset_listener(self._on_document_reset)

    def __len__(self) -> int:
        with self._lock:
            return len(self._elements)

    def _on_document_reset(self, generation: int) -> None:
        with self._lock:
            dropped = len(self._elements)
            self._elements = {}
        logger.debug("🧹 Dropped %d element handles for generation %d", dropped, generation)

    def _handle_for(self, node_id: int, generation: int) -> Element:
        with self._lock:
            element = self._elements.get(node_id)
            if element is None or element.generation != generation:
                element = Element(registry=self, generation=generation, node_id=node_id)
                self._elements[node_id] = element
            return element

    def resolve(self, node_id: int) -> Element:
        """
        Return a handle for node_id, stamped with the mirror's current generation.
        Raises:
            ElementNotFoundError: If the node cannot be found in the mirrored document.
        """
        generation = self.mirror.generation
        node = self.mirror.find(node_id)
        if node.generation != generation:
            # the document was reset between the two reads
            raise StaleElementError(node_id, node.generation, generation)
        return self._handle_for(node_id, generation)

    def resolve_in_generation(self, node_id: int, generation: int) -> Element:
        """
        Return a handle for node_id, failing if generation is no longer current.
        Raises:
            StaleElementError: If generation is not the mirror's current generation.
            ElementNotFoundError: If the node is not mirrored.
        """
        self.mirror.get_node(node_id, generation=generation)
        return self._handle_for(node_id, generation)

    def check(self, element: Element) -> None:
        """
        Raise StaleElementError if the element's generation has been superseded.
        """
        current_generation = self.mirror.generation
        if element.generation != current_generation:
            raise StaleElementError(element.node_id, element.generation, current_generation)

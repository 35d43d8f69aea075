"""
autotab/cdp/monitors/dom_mirror.py

DOM mirror for CDP.
Maintains a local index of the tab's DOM tree from DOM.getDocument plus the stream
of DOM mutation events, scoped by document generation.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable

from pydantic import ValidationError

from autotab.cdp.monitors.abstract_async_monitor import AbstractAsyncMonitor
from autotab.data_models.dom import (
    AttributeModifiedEvent,
    AttributeRemovedEvent,
    CharacterDataModifiedEvent,
    ChildNodeCountUpdatedEvent,
    ChildNodeInsertedEvent,
    ChildNodeRemovedEvent,
    DocumentUpdatedEvent,
    DOMNode,
    MirrorNode,
    NodeChangeEvent,
    NodeChangeEventType,
    SetChildNodesEvent,
    parse_node_change_event,
)
from autotab.utils.exceptions import ElementNotFoundError, StaleElementError
from autotab.utils.logger import get_logger

logger = get_logger(name=__name__)


@dataclass
class DomArena:
    """
    All mirrored nodes of one document generation, keyed by node id.
    A document reset swaps in a new arena instead of clearing this one.
    """
    generation: int
    nodes: dict[int, MirrorNode] = field(default_factory=dict)
    root_id: int = 0


class DomMirror(AbstractAsyncMonitor):
    """
    Generation-scoped mirror of the remote DOM.

    Events are applied strictly in delivery order. Events that reference a node the
    mirror does not hold (removed already, or never materialized) are dropped rather
    than fabricating nodes. DOM.documentUpdated swaps in an empty arena with the next
    generation, which makes every previously issued node id stale. A full fetch that
    replaces an already loaded tree does the same, since the browser re-issues ids.

    All reads and writes go through an RLock so facade calls from other threads
    never observe a half-applied event.
    """

    # Abstract method implementations ______________________________________________________________________________________

    @classmethod
    def get_event_methods(cls) -> list[str]:
        return [event_type.value for event_type in NodeChangeEventType]

    async def handle_event(self, method: str, params: dict[str, Any]) -> None:
        """
        Translate a CDP DOM event and apply it. Malformed payloads are counted and dropped.
        Args:
            method: The CDP event name.
            params: The raw event params.
        """
        try:
            event = parse_node_change_event(method, params)
        except ValidationError as e:
            with self._lock:
                self.dropped_event_count += 1
            logger.warning("⚠️ Dropping malformed %s event: %s", method, e.errors(include_url=False))
            return
        self.apply(event)


    # Magic methods ________________________________________________________________________________________________________

    def __init__(self) -> None:
        """
        Initialize DomMirror with an empty generation-0 arena.
        """
        self._lock = threading.RLock()
        self._arena = DomArena(generation=0)
        self._reset_listeners: list[Callable[[int], None]] = []

        # tracking
        self.applied_event_count: int = 0
        self.dropped_event_count: int = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._arena.nodes)

    def __contains__(self, node_id: object) -> bool:
        with self._lock:
            return node_id in self._arena.nodes


    # Properties ___________________________________________________________________________________________________________

    @property
    def generation(self) -> int:
        with self._lock:
            return self._arena.generation

    @property
    def root_id(self) -> int:
        """Node id of the document root from the last full fetch, 0 if none."""
        with self._lock:
            return self._arena.root_id


    # Private methods ______________________________________________________________________________________________________
    # all of these expect self._lock to be held

    def _drop(self, event: NodeChangeEvent, node_id: int) -> bool:
        self.dropped_event_count += 1
        logger.debug("🗑️ Dropping %s for unknown node %d", event.type, node_id)
        return False

    def _index_subtree(self, snapshot: DOMNode, parent_id: int) -> None:
        """Index a snapshot and every descendant it carries under parent_id."""
        nodes = self._arena.nodes
        generation = self._arena.generation
        stack: list[tuple[DOMNode, int]] = [(snapshot, parent_id)]
        while stack:
            current, current_parent_id = stack.pop()
            existing = nodes.get(current.node_id)
            if existing is not None:
                # the node moved; drop the old copy and its subtree
                self._unlink(existing)
                self._remove_subtree(existing.node_id)

            node = MirrorNode.from_snapshot(current, generation=generation, parent_id=current_parent_id)
            nodes[node.node_id] = node
            if current.children is not None:
                node.children = [child.node_id for child in current.children]
                if node.child_node_count is None:
                    node.child_node_count = len(current.children)
                stack.extend((child, node.node_id) for child in current.children)

    def _remove_subtree(self, node_id: int) -> int:
        """Delete a node and all its descendants from the index. Returns the number removed."""
        nodes = self._arena.nodes
        removed = 0
        stack = [node_id]
        while stack:
            node = nodes.pop(stack.pop(), None)
            if node is None:
                continue
            removed += 1
            stack.extend(node.children)
        return removed

    def _unlink(self, node: MirrorNode) -> None:
        """Remove a node from its parent's child list."""
        parent = self._arena.nodes.get(node.parent_id)
        if parent is not None and node.node_id in parent.children:
            parent.children.remove(node.node_id)

    def _is_ancestor_or_self(self, node_id: int, descendant_id: int) -> bool:
        nodes = self._arena.nodes
        current_id = descendant_id
        while current_id != 0:
            if current_id == node_id:
                return True
            current = nodes.get(current_id)
            if current is None:
                return False
            current_id = current.parent_id
        return False

    def _insert_child(self, parent: MirrorNode, snapshot: DOMNode, previous_node_id: int | None) -> bool:
        """
        Insert snapshot into parent's children after previous_node_id.
        previous_node_id 0 inserts at the head; None, or a sibling that is not materialized, appends.
        Returns False without touching the index if snapshot's id is parent itself or one of its ancestors.
        """
        existing = self._arena.nodes.get(snapshot.node_id)
        if existing is not None and self._is_ancestor_or_self(existing.node_id, parent.node_id):
            logger.debug("🗑️ Dropping insert of node %d under its own descendant %d", existing.node_id, parent.node_id)
            return False
        if existing is not None:
            self._unlink(existing)
            self._remove_subtree(existing.node_id)

        if previous_node_id == 0:
            position = 0
        elif previous_node_id is not None and previous_node_id in parent.children:
            position = parent.children.index(previous_node_id) + 1
        else:
            position = len(parent.children)

        self._index_subtree(snapshot, parent_id=parent.node_id)
        parent.children.insert(position, snapshot.node_id)
        return True

    def _apply_set_child_nodes(self, event: SetChildNodesEvent) -> bool:
        parent = self._arena.nodes.get(event.parent_id)
        if parent is None:
            return self._drop(event, event.parent_id)
        for child_id in parent.children:
            self._remove_subtree(child_id)
        parent.children = []
        for snapshot in event.nodes:
            if not self._insert_child(parent, snapshot, previous_node_id=None):
                self.dropped_event_count += 1
        parent.child_node_count = len(parent.children)
        return True

    def _apply_child_node_inserted(self, event: ChildNodeInsertedEvent) -> bool:
        parent = self._arena.nodes.get(event.parent_node_id)
        if parent is None:
            return self._drop(event, event.parent_node_id)
        if not self._insert_child(parent, event.node, previous_node_id=event.previous_node_id):
            return self._drop(event, event.node.node_id)
        return True

    def _apply_child_node_removed(self, event: ChildNodeRemovedEvent) -> bool:
        node = self._arena.nodes.get(event.node_id)
        if node is None:
            return self._drop(event, event.node_id)
        if node.parent_id != event.parent_node_id:
            logger.debug(
                "Node %d removed from %d but mirrored under %d",
                event.node_id, event.parent_node_id, node.parent_id,
            )
        self._unlink(node)
        self._remove_subtree(node.node_id)
        return True

    def _apply_node_update(self, event: NodeChangeEvent) -> bool:
        """Attribute, character data and child count updates: touch one node, never create it."""
        node = self._arena.nodes.get(event.node_id)
        if node is None:
            return self._drop(event, event.node_id)

        if isinstance(event, AttributeModifiedEvent):
            node.attributes[event.name] = event.value
        elif isinstance(event, AttributeRemovedEvent):
            node.attributes.pop(event.name, None)
        elif isinstance(event, CharacterDataModifiedEvent):
            node.node_value = event.character_data
        elif isinstance(event, ChildNodeCountUpdatedEvent):
            node.child_node_count = event.child_node_count
        return True

    def _reset(self) -> int:
        """Swap in an empty arena for the next generation. Returns the new generation."""
        previous = self._arena
        self._arena = DomArena(generation=previous.generation + 1)
        logger.info(
            "🔁 Document replaced: generation %d -> %d (%d nodes discarded)",
            previous.generation, self._arena.generation, len(previous.nodes),
        )
        return self._arena.generation


    # Public methods _______________________________________________________________________________________________________

    def add_reset_listener(self, listener: Callable[[int], None]) -> None:
        """
        Register a callable invoked with the new generation after every document reset.
        Listeners run on the delivery path and must not block.
        """
        self._reset_listeners.append(listener)

    def apply(self, event: NodeChangeEvent) -> bool:
        """
        Apply one mutation event to the mirror.
        Args:
            event: The typed DOM mutation event.
        Returns:
            True if the event changed the mirror, False if it was dropped.
        """
        new_generation: int | None = None
        with self._lock:
            if isinstance(event, DocumentUpdatedEvent):
                new_generation = self._reset()
                applied = True
            elif isinstance(event, SetChildNodesEvent):
                applied = self._apply_set_child_nodes(event)
            elif isinstance(event, ChildNodeInsertedEvent):
                applied = self._apply_child_node_inserted(event)
            elif isinstance(event, ChildNodeRemovedEvent):
                applied = self._apply_child_node_removed(event)
            else:
                applied = self._apply_node_update(event)
            if applied:
                self.applied_event_count += 1

        # notify outside the lock; listeners may take their own locks
        if new_generation is not None:
            for listener in self._reset_listeners:
                listener(new_generation)
        return applied

    def load_document(self, root: DOMNode) -> int:
        """
        Load a full tree from DOM.getDocument.
        The browser re-issues node ids on every full fetch, so if the current generation already
        holds a tree it is replaced by a new generation (reset listeners run). An empty arena,
        as left by DOM.documentUpdated, is filled in place.
        Args:
            root: The document node, with its subtree.
        Returns:
            The generation the tree was loaded into.
        """
        new_generation: int | None = None
        with self._lock:
            if self._arena.nodes:
                new_generation = self._reset()
            self._index_subtree(root, parent_id=0)
            self._arena.root_id = root.node_id
            generation = self._arena.generation
            logger.debug(
                "🌳 Loaded document %d into generation %d (%d nodes)",
                root.node_id, generation, len(self._arena.nodes),
            )

        if new_generation is not None:
            for listener in self._reset_listeners:
                listener(new_generation)
        return generation

    def get_node(self, node_id: int, generation: int | None = None) -> MirrorNode:
        """
        Return a copy of a mirrored node.
        Args:
            node_id: The node id.
            generation: The generation the caller obtained node_id in; checked against the current one.
        Raises:
            StaleElementError: If generation is given and is not the current generation.
            ElementNotFoundError: If the node is not mirrored.
        """
        with self._lock:
            current_generation = self._arena.generation
            if generation is not None and generation != current_generation:
                raise StaleElementError(node_id, generation, current_generation)
            node = self._arena.nodes.get(node_id)
            if node is None:
                raise ElementNotFoundError(f"node id {node_id} is not in the document")
            return replace(node, children=list(node.children), attributes=dict(node.attributes))

    def find_in_tree(self, root_id: int, target_id: int) -> MirrorNode:
        """
        Search the tree under root_id for target_id, visiting every child of every node.
        Args:
            root_id: Node to start from (usually the document root).
            target_id: Node id to find.
        Returns:
            A copy of the matching node.
        Raises:
            ElementNotFoundError: If no node reachable from root_id matches.
        """
        with self._lock:
            nodes = self._arena.nodes
            if root_id not in nodes:
                raise ElementNotFoundError(f"root node id {root_id} is not in the document")
            stack = [root_id]
            while stack:
                node = nodes.get(stack.pop())
                if node is None:
                    continue
                if node.node_id == target_id:
                    return replace(node, children=list(node.children), attributes=dict(node.attributes))
                stack.extend(reversed(node.children))
        raise ElementNotFoundError(f"node id {target_id} doesn't exist under node {root_id}")

    def find(self, node_id: int) -> MirrorNode:
        """Find a node in the tree of the last full document fetch."""
        return self.find_in_tree(self.root_id, node_id)

    def subtree_size(self, node_id: int) -> int:
        """Number of mirrored nodes in the subtree rooted at node_id (0 if not mirrored)."""
        with self._lock:
            nodes = self._arena.nodes
            size = 0
            stack = [node_id]
            while stack:
                node = nodes.get(stack.pop())
                if node is None:
                    continue
                size += 1
                stack.extend(node.children)
            return size

    def get_dom_summary(self) -> dict[str, Any]:
        """
        Get summary of DOM mirror activity.
        Returns:
            Dictionary with DOM mirror statistics.
        """
        with self._lock:
            return {
                "generation": self._arena.generation,
                "node_count": len(self._arena.nodes),
                "applied_event_count": self.applied_event_count,
                "dropped_event_count": self.dropped_event_count,
            }

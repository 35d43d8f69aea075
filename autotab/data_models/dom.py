"""
autotab/data_models/dom.py

Data models for the DOM domain: node snapshots from CDP payloads,
DOM mutation events and the nodes held by the DOM mirror.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


## Node snapshots

class DOMNode(BaseModel):
    """
    Model for a CDP DOM.Node payload.
    Returned by DOM.getDocument and carried by DOM.setChildNodes / DOM.childNodeInserted.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    node_id: int = Field(
        ...,
        alias="nodeId",
        description="Node identifier, unique within the current document generation",
    )
    parent_id: int | None = Field(
        default=None,
        alias="parentId",
        description="Identifier of the parent node, if known",
    )
    node_type: int = Field(
        default=0,
        alias="nodeType",
        description="DOM node type (1 = element, 3 = text, 9 = document, ...)",
    )
    node_name: str = Field(
        default="",
        alias="nodeName",
        examples=["#document", "DIV", "#text"],
    )
    local_name: str = Field(
        default="",
        alias="localName",
    )
    node_value: str = Field(
        default="",
        alias="nodeValue",
        description="Character data for text and comment nodes",
    )
    child_node_count: int | None = Field(
        default=None,
        alias="childNodeCount",
        description="Number of children, may be known before the children are sent",
    )
    children: list[DOMNode] | None = Field(
        default=None,
        description="Child node snapshots, if they were pushed with this node",
    )
    attributes: list[str] | None = Field(
        default=None,
        description="Flat attribute list: [name1, value1, name2, value2, ...]",
    )

    def attribute_map(self) -> dict[str, str]:
        """
        Fold the flat CDP attribute list into a name -> value dict.
        Returns:
            The attributes of this node.
        """
        flat = self.attributes or []
        return {flat[i]: flat[i + 1] for i in range(0, len(flat) - 1, 2)}


## Mutation events

class NodeChangeEventType(StrEnum):
    """CDP DOM events that mutate the mirrored tree."""

    SET_CHILD_NODES = "DOM.setChildNodes"
    ATTRIBUTE_MODIFIED = "DOM.attributeModified"
    ATTRIBUTE_REMOVED = "DOM.attributeRemoved"
    CHARACTER_DATA_MODIFIED = "DOM.characterDataModified"
    CHILD_NODE_COUNT_UPDATED = "DOM.childNodeCountUpdated"
    CHILD_NODE_INSERTED = "DOM.childNodeInserted"
    CHILD_NODE_REMOVED = "DOM.childNodeRemoved"
    DOCUMENT_UPDATED = "DOM.documentUpdated"


class BaseNodeChangeEvent(BaseModel):
    """
    Base model for DOM mutation events.
    Field aliases match the CDP event params so payloads validate as-is.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SetChildNodesEvent(BaseNodeChangeEvent):
    """Children of a node were pushed (lazy subtree population)."""
    type: Literal["DOM.setChildNodes"] = "DOM.setChildNodes"
    parent_id: int = Field(..., alias="parentId")
    nodes: list[DOMNode] = Field(default_factory=list)


class AttributeModifiedEvent(BaseNodeChangeEvent):
    type: Literal["DOM.attributeModified"] = "DOM.attributeModified"
    node_id: int = Field(..., alias="nodeId")
    name: str
    value: str


class AttributeRemovedEvent(BaseNodeChangeEvent):
    type: Literal["DOM.attributeRemoved"] = "DOM.attributeRemoved"
    node_id: int = Field(..., alias="nodeId")
    name: str


class CharacterDataModifiedEvent(BaseNodeChangeEvent):
    type: Literal["DOM.characterDataModified"] = "DOM.characterDataModified"
    node_id: int = Field(..., alias="nodeId")
    character_data: str = Field(..., alias="characterData")


class ChildNodeCountUpdatedEvent(BaseNodeChangeEvent):
    """Only the count hint changes; children must be requested explicitly."""
    type: Literal["DOM.childNodeCountUpdated"] = "DOM.childNodeCountUpdated"
    node_id: int = Field(..., alias="nodeId")
    child_node_count: int = Field(..., alias="childNodeCount")


class ChildNodeInsertedEvent(BaseNodeChangeEvent):
    type: Literal["DOM.childNodeInserted"] = "DOM.childNodeInserted"
    parent_node_id: int = Field(..., alias="parentNodeId")
    previous_node_id: int = Field(
        default=0,
        alias="previousNodeId",
        description="Sibling to insert after; 0 inserts at the head",
    )
    node: DOMNode


class ChildNodeRemovedEvent(BaseNodeChangeEvent):
    type: Literal["DOM.childNodeRemoved"] = "DOM.childNodeRemoved"
    parent_node_id: int = Field(..., alias="parentNodeId")
    node_id: int = Field(..., alias="nodeId")


class DocumentUpdatedEvent(BaseNodeChangeEvent):
    """Every node id issued so far is invalid."""
    type: Literal["DOM.documentUpdated"] = "DOM.documentUpdated"


NodeChangeEvent = Annotated[
    Union[
        SetChildNodesEvent,
        AttributeModifiedEvent,
        AttributeRemovedEvent,
        CharacterDataModifiedEvent,
        ChildNodeCountUpdatedEvent,
        ChildNodeInsertedEvent,
        ChildNodeRemovedEvent,
        DocumentUpdatedEvent,
    ],
    Field(discriminator="type"),
]

_node_change_event_adapter: TypeAdapter[NodeChangeEvent] = TypeAdapter(NodeChangeEvent)


def parse_node_change_event(method: str, params: dict[str, Any] | None) -> NodeChangeEvent:
    """
    Translate a CDP DOM event into its NodeChangeEvent variant.
    Args:
        method: The CDP event name, e.g. "DOM.childNodeInserted".
        params: The raw event params.
    Returns:
        The typed event.
    Raises:
        pydantic.ValidationError: If the method is not a DOM mutation event or the params are malformed.
    """
    return _node_change_event_adapter.validate_python({**(params or {}), "type": method})


## Mirror nodes

@dataclass
class MirrorNode:
    """
    A node of the DOM mirror. Identity is (generation, node_id).
    parent_id is 0 for the document root.
    """
    generation: int
    node_id: int
    parent_id: int = 0
    children: list[int] = field(default_factory=list)
    attributes: dict[str, str] = field(default_factory=dict)
    node_type: int = 0
    node_name: str = ""
    local_name: str = ""
    node_value: str = ""
    child_node_count: int | None = None

    @classmethod
    def from_snapshot(cls, snapshot: DOMNode, generation: int, parent_id: int) -> MirrorNode:
        """Build a mirror node from a payload snapshot, without its children."""
        return cls(
            generation=generation,
            node_id=snapshot.node_id,
            parent_id=parent_id,
            attributes=snapshot.attribute_map(),
            node_type=snapshot.node_type,
            node_name=snapshot.node_name,
            local_name=snapshot.local_name,
            node_value=snapshot.node_value,
            child_node_count=snapshot.child_node_count,
        )

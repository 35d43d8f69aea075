"""
autotab/data_models/page.py

Data models for the Page and Console domains and for the navigation state of a tab.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Frame(BaseModel):
    """
    Model for a CDP Page.Frame payload.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(
        ...,
        description="Frame identifier",
    )
    parent_id: str | None = Field(
        default=None,
        alias="parentId",
        description="Parent frame identifier, None for the top frame",
    )
    loader_id: str | None = Field(
        default=None,
        alias="loaderId",
    )
    url: str = Field(
        default="",
        description="Frame document's URL",
    )
    mime_type: str | None = Field(
        default=None,
        alias="mimeType",
    )


class FrameResource(BaseModel):
    """
    Model for a resource loaded by a frame.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    url: str
    type: str = Field(
        default="Other",
        examples=["Document", "Script", "Stylesheet", "Image"],
    )
    mime_type: str = Field(
        default="",
        alias="mimeType",
    )


class FrameResourceTree(BaseModel):
    """
    Model for the CDP Page.FrameResourceTree returned by Page.getResourceTree.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    frame: Frame
    child_frames: list[FrameResourceTree] = Field(
        default_factory=list,
        alias="childFrames",
    )
    resources: list[FrameResource] = Field(
        default_factory=list,
    )

    def frame_urls(self) -> dict[str, str]:
        """
        Flatten this tree and every nested child frame into frame id -> url.
        Returns:
            Mapping of frame ids to their document URLs, top frame first.
        """
        frame_urls = {self.frame.id: self.frame.url}
        for child_frame in self.child_frames:
            frame_urls.update(child_frame.frame_urls())
        return frame_urls


class ConsoleMessage(BaseModel):
    """
    Model for the message carried by Console.messageAdded.
    Unknown fields are kept so the payload reaches handlers unchanged.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    source: str = Field(
        default="other",
        examples=["console-api", "network", "javascript"],
    )
    level: str = Field(
        default="log",
        examples=["log", "warning", "error", "debug", "info"],
    )
    text: str = Field(
        default="",
        description="Message text",
    )
    url: str | None = None
    line: int | None = None
    column: int | None = None


class NavigationState(BaseModel):
    """
    Snapshot of a tab's navigation state.
    """
    is_navigating: bool = Field(
        default=False,
        description="An explicit navigate() call is outstanding",
    )
    is_transitioning: bool = Field(
        default=False,
        description="The top frame is between frameStartedLoading and frameStoppedLoading",
    )
    top_frame_id: str | None = Field(
        default=None,
        description="Frame whose lifecycle events are authoritative; child frame events are ignored",
    )

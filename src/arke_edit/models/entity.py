"""Entity models mirroring the entity store's JSON shapes."""

from pydantic import BaseModel, Field
from typing import Dict, List, Optional


class Entity(BaseModel):
    """Snapshot of a versioned entity.

    `manifest_cid` is the entity's tip: the optimistic-concurrency token.
    The server owns `ver` and the tip; the client never recomputes them.
    """

    pi: str = Field(..., description="Stable entity identifier")
    ver: int = Field(..., ge=0, description="Current version number")
    ts: str = Field(..., description="Timestamp of the current version")
    manifest_cid: str = Field(..., description="Content address of the current manifest (the tip)")
    components: Dict[str, str] = Field(
        default_factory=dict,
        description="Component name -> CID"
    )
    children_pi: List[str] = Field(default_factory=list, description="Ordered child entity ids")
    parent_pi: Optional[str] = Field(default=None, description="Parent entity id, if any")
    note: Optional[str] = Field(default=None, description="Version note")

    model_config = {"frozen": False}  # Tip and version advance after a save

    @property
    def tip(self) -> str:
        return self.manifest_cid


class EntityUpdate(BaseModel):
    """Body for a compare-and-swap version write."""

    expect_tip: str = Field(..., description="Tip the caller last observed")
    components: Optional[Dict[str, str]] = Field(
        default=None,
        description="New or modified components (name -> CID)"
    )
    components_remove: Optional[List[str]] = Field(
        default=None,
        description="Component names to remove"
    )
    note: str = Field(..., description="Version note")


class EntityVersion(BaseModel):
    """Result of a successful version write."""

    pi: str
    tip: str
    ver: int


class UploadedFile(BaseModel):
    """One element of the upload endpoint's response list."""

    cid: str
    name: Optional[str] = None
    size: Optional[int] = None

"""Diff record models."""

from pydantic import BaseModel, Field
from typing import List, Literal, Optional


DiffType = Literal["addition", "deletion", "change", "unchanged"]


class TextDiff(BaseModel):
    """A single run of added, removed or changed text."""

    type: DiffType = Field(..., description="Kind of change")
    original: Optional[str] = Field(default=None, description="Removed or replaced text")
    modified: Optional[str] = Field(default=None, description="Added or replacement text")
    line_number: Optional[int] = Field(
        default=None,
        ge=1,
        description="1-based line in the merged view where the run starts (line diffs only)"
    )
    context: Optional[str] = None

    model_config = {"frozen": True}


class ComponentDiff(BaseModel):
    """All changes to one component plus a human-readable summary."""

    component_name: str
    diffs: List[TextDiff] = Field(default_factory=list)
    summary: str
    has_changes: bool

    model_config = {"frozen": True}

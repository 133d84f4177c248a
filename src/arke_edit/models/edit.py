"""Edit session models: modes, scope, corrections, results and status."""

from enum import Enum
from pydantic import BaseModel, Field
from typing import Callable, Dict, List, NamedTuple, Optional

from arke_edit.models.reprocess import (
    RegeneratableComponent,
    ReprocessResult,
    ReprocessStatus,
)


class EditMode(str, Enum):
    """How a session produces changes."""

    AI_PROMPT = "ai-prompt"
    MANUAL_WITH_REVIEW = "manual-with-review"
    MANUAL_ONLY = "manual-only"


class ModeRules(NamedTuple):
    """Which setters a mode accepts."""

    allows_prompts: bool
    allows_content: bool


MODE_RULES: Dict[EditMode, ModeRules] = {
    EditMode.AI_PROMPT: ModeRules(allows_prompts=True, allows_content=False),
    EditMode.MANUAL_WITH_REVIEW: ModeRules(allows_prompts=True, allows_content=True),
    EditMode.MANUAL_ONLY: ModeRules(allows_prompts=False, allows_content=True),
}


class EditSessionConfig(BaseModel):
    """Options for a new edit session."""

    mode: EditMode = EditMode.AI_PROMPT
    ai_review_enabled: bool = True

    model_config = {"frozen": True}


class EditScope(BaseModel):
    """Which components to regenerate and whether to cascade to ancestors.

    `stop_at_pi` is passed through to the reprocess service, which alone
    decides how the boundary is applied.
    """

    components: List[RegeneratableComponent] = Field(default_factory=list)
    cascade: bool = False
    stop_at_pi: Optional[str] = None

    model_config = {"frozen": True}


class Correction(BaseModel):
    """An explicit original -> corrected replacement."""

    original: str
    corrected: str
    source_file: Optional[str] = None
    context: Optional[str] = None

    model_config = {"frozen": True}


class EntityContext(BaseModel):
    """Entity facts rendered into AI prompts."""

    pi: str
    ver: int
    parent_pi: Optional[str] = None
    children_count: int = 0
    current_content: Dict[str, str] = Field(default_factory=dict)


class CascadeContext(BaseModel):
    """Cascade information rendered into preview prompts."""

    path: List[str] = Field(default_factory=list, description="Entity ids from current towards root")
    depth: int = 0
    stop_at_pi: Optional[str] = None


class SaveResult(BaseModel):
    """Outcome of the save phase."""

    pi: str
    new_version: int
    new_tip: str


class EditResult(BaseModel):
    """Outcome of submit(); either phase may be absent."""

    saved: Optional[SaveResult] = None
    reprocess: Optional[ReprocessResult] = None

    model_config = {"frozen": False}  # Filled in phase by phase


class EditPhase(str, Enum):
    """Where the session is in its submit/poll workflow."""

    IDLE = "idle"
    SAVING = "saving"
    REPROCESSING = "reprocessing"
    COMPLETE = "complete"
    ERROR = "error"


class EditStatus(BaseModel):
    """Observed status of an edit, as reported to callers and progress callbacks."""

    phase: EditPhase
    save_complete: bool = False
    reprocess_status: Optional[ReprocessStatus] = None
    error: Optional[str] = None


class PollOptions(BaseModel):
    """Polling behaviour for wait_for_completion()."""

    interval: float = Field(default=2.0, ge=0.0, description="Seconds between polls")
    timeout: float = Field(default=300.0, ge=0.0, description="Seconds before giving up")
    on_progress: Optional[Callable[[EditStatus], None]] = Field(
        default=None,
        description="Invoked with every observed status"
    )


class ChangeSummary(BaseModel):
    """Read-only projection of a session's pending changes."""

    mode: EditMode
    has_manual_edits: bool
    edited_components: List[str]
    corrections: List[Correction]
    prompts: Dict[str, str]
    scope: EditScope
    will_regenerate: List[RegeneratableComponent]
    will_cascade: bool
    will_save: bool
    will_reprocess: bool

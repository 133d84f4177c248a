"""Reprocess API request and status models."""

from enum import Enum
from pydantic import BaseModel, Field
from typing import List, Optional


class RegeneratableComponent(str, Enum):
    """Component kinds the reprocess service can regenerate."""

    PINAX = "pinax"  # Structured metadata
    DESCRIPTION = "description"
    CHEIMARROS = "cheimarros"  # Knowledge graph


class PromptTarget(str, Enum):
    """Keys a custom prompt can be attached to."""

    GENERAL = "general"
    PINAX = "pinax"
    DESCRIPTION = "description"
    CHEIMARROS = "cheimarros"
    REORGANIZATION = "reorganization"


class CustomPrompts(BaseModel):
    """Per-target instructions forwarded to the reprocess service."""

    general: Optional[str] = None
    pinax: Optional[str] = None
    description: Optional[str] = None
    cheimarros: Optional[str] = None
    reorganization: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class ReprocessOptions(BaseModel):
    """Options block of a reprocess request."""

    stop_at_pi: Optional[str] = Field(
        default=None,
        description="Cascade boundary, interpreted by the reprocess service"
    )
    custom_prompts: Optional[CustomPrompts] = None
    custom_note: Optional[str] = Field(
        default=None,
        description="Version note overriding the service's default phase notes"
    )


class ReprocessRequest(BaseModel):
    """Body for POST /api/reprocess."""

    pi: str
    phases: List[RegeneratableComponent]
    cascade: bool = False
    options: Optional[ReprocessOptions] = None

    def to_payload(self) -> dict:
        """JSON body with unset optional fields dropped."""
        return self.model_dump(mode="json", exclude_none=True)


class ReprocessResult(BaseModel):
    """Response of POST /api/reprocess."""

    batch_id: str
    entities_queued: int
    entity_pis: List[str] = Field(default_factory=list)
    status_url: str


class ReprocessPhase(str, Enum):
    """Server-side job state as reported by the status endpoint."""

    QUEUED = "QUEUED"
    DISCOVERY = "DISCOVERY"
    OCR_IN_PROGRESS = "OCR_IN_PROGRESS"
    REORGANIZATION = "REORGANIZATION"
    PINAX_EXTRACTION = "PINAX_EXTRACTION"
    CHEIMARROS_EXTRACTION = "CHEIMARROS_EXTRACTION"
    DESCRIPTION = "DESCRIPTION"
    DONE = "DONE"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self in (ReprocessPhase.DONE, ReprocessPhase.ERROR)


class ReprocessProgress(BaseModel):
    """Work units completed per sub-phase."""

    directories_total: int = 0
    directories_pinax_complete: int = 0
    directories_cheimarros_complete: int = 0
    directories_description_complete: int = 0


class ReprocessStatus(BaseModel):
    """Response of GET <status_url>."""

    batch_id: str
    status: ReprocessPhase
    progress: ReprocessProgress = Field(default_factory=ReprocessProgress)
    root_pi: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

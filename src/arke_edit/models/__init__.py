"""Pydantic data models for Arke Edit."""

from arke_edit.models.config import ClientConfig, RetryConfig
from arke_edit.models.diff import ComponentDiff, TextDiff
from arke_edit.models.edit import (
    MODE_RULES,
    CascadeContext,
    ChangeSummary,
    Correction,
    EditMode,
    EditPhase,
    EditResult,
    EditScope,
    EditSessionConfig,
    EditStatus,
    EntityContext,
    ModeRules,
    PollOptions,
    SaveResult,
)
from arke_edit.models.entity import Entity, EntityUpdate, EntityVersion, UploadedFile
from arke_edit.models.reprocess import (
    CustomPrompts,
    PromptTarget,
    RegeneratableComponent,
    ReprocessOptions,
    ReprocessPhase,
    ReprocessProgress,
    ReprocessRequest,
    ReprocessResult,
    ReprocessStatus,
)

"""Arke Edit: edit archive entities directly or through AI regeneration.

Typical use:

    sdk = ArkeEditSDK(load_config())
    session = sdk.create_session(pi, EditSessionConfig(mode=EditMode.MANUAL_WITH_REVIEW))
    await session.load()
    session.set_content("description.md", edited_text)
    session.set_scope(components=["description"], cascade=True)
    await session.submit("Fix OCR errors")
    status = await session.wait_for_completion()
"""

from arke_edit.config.loader import load_config
from arke_edit.models import (
    ChangeSummary,
    ClientConfig,
    ComponentDiff,
    Correction,
    CustomPrompts,
    EditMode,
    EditPhase,
    EditResult,
    EditScope,
    EditSessionConfig,
    EditStatus,
    Entity,
    EntityUpdate,
    EntityVersion,
    PollOptions,
    PromptTarget,
    RegeneratableComponent,
    ReprocessPhase,
    ReprocessRequest,
    ReprocessResult,
    ReprocessStatus,
    RetryConfig,
    TextDiff,
)
from arke_edit.sdk import ArkeEditSDK
from arke_edit.services.arke_client import ArkeClient
from arke_edit.services.edit_session import EditSession
from arke_edit.services.exceptions import (
    ArkeEditError,
    CASConflictError,
    EntityNotFoundError,
    RemoteError,
    ReprocessError,
    ResponseDecodeError,
    ValidationError,
)
from arke_edit.utils.logging import configure_logging

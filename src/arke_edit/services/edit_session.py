"""Edit session: stateful workflow for editing one entity.

A session loads an entity, collects prompts, edited content, corrections
and a regeneration scope, then submits in two phases:

1. Save: upload significantly changed components and write one new
   entity version, compare-and-swap on the loaded tip.
2. Reprocess: trigger regeneration of the scoped components, optionally
   cascading to ancestors, and remember the status URL for polling.

Phase 1 always finishes before phase 2 starts, so a triggered reprocess
never runs against uncommitted manual edits.
"""

import asyncio
import time
from typing import Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from arke_edit.llm import prompts
from arke_edit.models.diff import ComponentDiff
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
    PollOptions,
    SaveResult,
)
from arke_edit.models.entity import Entity, EntityUpdate
from arke_edit.models.reprocess import (
    CustomPrompts,
    PromptTarget,
    RegeneratableComponent,
    ReprocessOptions,
    ReprocessPhase,
    ReprocessRequest,
    ReprocessStatus,
)
from arke_edit.services.arke_client import ArkeClient
from arke_edit.services.diff_engine import (
    create_component_diff,
    format_component_diffs_for_prompt,
    has_significant_changes,
)
from arke_edit.services.exceptions import (
    ArkeEditError,
    EntityNotFoundError,
    ValidationError,
)
from arke_edit.utils.logging import get_logger


logger = get_logger(__name__)

# Components fetched eagerly by load()
PRIORITY_COMPONENTS = ("description.md", "pinax.json", "cheimarros.json")

TIMEOUT_MESSAGE = "Timeout waiting for reprocessing to complete"

# Prompt keys forwarded per component, in addition to "general"
_COMPONENT_PROMPT_TARGETS = (
    PromptTarget.PINAX,
    PromptTarget.DESCRIPTION,
    PromptTarget.CHEIMARROS,
    PromptTarget.REORGANIZATION,
)


class EditSession:
    """
    Manages one edit of one entity, from load to reprocess completion.

    Methods are meant to be called sequentially. submit() rejects a second
    call while one is in flight instead of queuing it.

    Example:
        >>> session = EditSession(client, "01KBGG1TEG2J0TXR1XKZ8T3TBP")
        >>> await session.load()
        >>> session.set_prompt("general", "Mention the 1892 correspondence")
        >>> session.set_scope(components=["description"])
        >>> await session.submit("Refresh description")
        >>> status = await session.wait_for_completion()
    """

    def __init__(
        self,
        client: ArkeClient,
        pi: str,
        config: Optional[EditSessionConfig] = None,
    ):
        config = config or EditSessionConfig()
        self.client = client
        self.pi = pi
        self.mode = config.mode
        self.ai_review_enabled = config.ai_review_enabled

        self._entity: Optional[Entity] = None
        self._loaded_components: Dict[str, str] = {}
        self._failed_components: Dict[str, str] = {}

        self._prompts: Dict[PromptTarget, str] = {}
        self._edited_content: Dict[str, str] = {}
        self._corrections: List[Correction] = []
        self._scope = EditScope()

        self._submitting = False
        self._result: Optional[EditResult] = None
        self._status_url: Optional[str] = None
        self._phase = EditPhase.IDLE

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """
        Load the entity and eagerly fetch its priority components.

        Component fetches run concurrently. A component that is absent is
        skipped; one that fails to fetch for another reason is skipped too
        but recorded in failed_components.

        Raises:
            ValidationError: If the session is already loaded
            EntityNotFoundError: If the entity does not exist
            RemoteError: If the entity cannot be fetched
        """
        if self._entity is not None:
            raise ValidationError("Session already loaded; create a new session to reload")

        entity = await self.client.get_entity(self.pi)

        names = [name for name in PRIORITY_COMPONENTS if name in entity.components]
        contents = await asyncio.gather(
            *(self._fetch_optional(entity, name) for name in names)
        )

        self._entity = entity
        for name, content in zip(names, contents):
            if content is not None:
                self._loaded_components[name] = content

        logger.info(
            "session_loaded",
            pi=self.pi,
            ver=entity.ver,
            mode=self.mode.value,
            components=sorted(self._loaded_components),
            failed_components=sorted(self._failed_components),
        )

    async def _fetch_optional(self, entity: Entity, name: str) -> Optional[str]:
        try:
            return await self.client.get_content(entity.components[name])
        except EntityNotFoundError:
            logger.debug("component_absent", pi=self.pi, component=name)
            return None
        except ArkeEditError as e:
            self._failed_components[name] = e.message
            logger.warning(
                "component_fetch_failed",
                pi=self.pi,
                component=name,
                error=e.message,
            )
            return None

    async def load_component(self, name: str) -> Optional[str]:
        """
        Return a component's content, fetching it on first use.

        Returns:
            Content, or None if the entity has no such component

        Raises:
            ValidationError: If the session is not loaded
            RemoteError: If the fetch fails
        """
        entity = self._require_loaded()

        if name in self._loaded_components:
            return self._loaded_components[name]

        cid = entity.components.get(name)
        if not cid:
            return None

        content = await self.client.get_content(cid)
        self._loaded_components[name] = content
        self._failed_components.pop(name, None)
        return content

    def _require_loaded(self) -> Entity:
        if self._entity is None:
            raise ValidationError("Session not loaded. Call load() first.")
        return self._entity

    def get_entity(self) -> Entity:
        """Copy of the loaded entity, with tip and version advanced after a save."""
        return self._require_loaded().model_copy(deep=True)

    def get_components(self) -> Dict[str, str]:
        """Copy of loaded component contents keyed by name."""
        self._require_loaded()
        return dict(self._loaded_components)

    @property
    def failed_components(self) -> Dict[str, str]:
        """Components that exist but could not be fetched during load, with the error."""
        return dict(self._failed_components)

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    def set_prompt(self, target: Union[PromptTarget, str], prompt: str) -> None:
        """Set an instruction for a prompt target ("general" or a component)."""
        self._require_loaded()
        if not MODE_RULES[self.mode].allows_prompts:
            raise ValidationError(f"Cannot set prompts in {self.mode.value} mode", field="prompt")
        self._prompts[self._prompt_target(target)] = prompt

    def get_prompts(self) -> Dict[str, str]:
        self._require_loaded()
        return {target.value: prompt for target, prompt in self._prompts.items()}

    def clear_prompt(self, target: Union[PromptTarget, str]) -> None:
        self._require_loaded()
        self._prompts.pop(self._prompt_target(target), None)

    @staticmethod
    def _prompt_target(target: Union[PromptTarget, str]) -> PromptTarget:
        try:
            return PromptTarget(target)
        except ValueError:
            raise ValidationError(f"Unknown prompt target: {target}", field="target") from None

    # ------------------------------------------------------------------
    # Manual edits
    # ------------------------------------------------------------------

    def set_content(self, component_name: str, content: str) -> None:
        """Replace a component's content with an edited version."""
        self._require_loaded()
        if not MODE_RULES[self.mode].allows_content:
            raise ValidationError(f"Cannot set content in {self.mode.value} mode", field="content")
        self._edited_content[component_name] = content

    def get_edited_content(self) -> Dict[str, str]:
        self._require_loaded()
        return dict(self._edited_content)

    def clear_content(self, component_name: str) -> None:
        self._require_loaded()
        self._edited_content.pop(component_name, None)

    def add_correction(
        self,
        original: str,
        corrected: str,
        source_file: Optional[str] = None,
        context: Optional[str] = None,
    ) -> None:
        """Record an explicit correction (e.g. an OCR fix)."""
        self._require_loaded()
        self._corrections.append(Correction(
            original=original,
            corrected=corrected,
            source_file=source_file,
            context=context,
        ))

    def get_corrections(self) -> List[Correction]:
        self._require_loaded()
        return list(self._corrections)

    def clear_corrections(self) -> None:
        self._require_loaded()
        self._corrections = []

    # ------------------------------------------------------------------
    # Scope
    # ------------------------------------------------------------------

    def set_scope(self, **changes) -> None:
        """
        Update the edit scope; unspecified fields keep their values.

        Args:
            components: Components to regenerate
            cascade: Propagate regeneration to ancestors
            stop_at_pi: Cascade boundary, passed through to the reprocess service
        """
        self._require_loaded()
        unknown = set(changes) - set(EditScope.model_fields)
        if unknown:
            raise ValidationError(f"Unknown scope fields: {sorted(unknown)}", field="scope")

        try:
            self._scope = EditScope.model_validate({**self._scope.model_dump(), **changes})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid scope: {e}", field="scope") from e

    def reset_scope(self) -> None:
        self._require_loaded()
        self._scope = EditScope()

    def get_scope(self) -> EditScope:
        self._require_loaded()
        return self._scope

    # ------------------------------------------------------------------
    # Preview & summary (no network, no mutation)
    # ------------------------------------------------------------------

    def get_diff(self) -> List[ComponentDiff]:
        """Diffs of edited components that differ beyond whitespace from their loaded originals."""
        self._require_loaded()
        diffs = []

        for name, edited in self._edited_content.items():
            original = self._loaded_components.get(name, "")
            if has_significant_changes(original, edited):
                diffs.append(create_component_diff(name, original, edited))

        return diffs

    def preview_prompt(self) -> Dict[RegeneratableComponent, str]:
        """Render, per scoped component, the prompt a reviewer should see."""
        entity = self._require_loaded()
        result: Dict[RegeneratableComponent, str] = {}

        entity_context = EntityContext(
            pi=entity.pi,
            ver=entity.ver,
            parent_pi=entity.parent_pi,
            children_count=len(entity.children_pi),
            current_content=dict(self._loaded_components),
        )
        general_prompt = self._prompts.get(PromptTarget.GENERAL)
        diffs = self.get_diff() if self.mode != EditMode.AI_PROMPT else []

        for component in self._scope.components:
            component_prompt = self._prompts.get(PromptTarget(component.value))

            if self.mode == EditMode.AI_PROMPT:
                combined = prompts.build_combined_prompt(general_prompt, component_prompt, component)
                prompt = prompts.build_ai_prompt(
                    combined,
                    component,
                    entity_context,
                    self._loaded_components.get(f"{component.value}.json")
                    or self._loaded_components.get(f"{component.value}.md"),
                )
            else:
                prompt = prompts.build_edit_review_prompt(
                    diffs,
                    self._corrections,
                    component,
                    general_prompt or component_prompt,
                )

            if self._scope.cascade:
                prompt = prompts.build_cascade_prompt(prompt, CascadeContext(
                    path=[entity.pi, entity.parent_pi or "root"],
                    depth=0,
                    stop_at_pi=self._scope.stop_at_pi,
                ))

            result[component] = prompt

        return result

    def preview_request(self, reprocess_note: Optional[str] = None) -> Optional[ReprocessRequest]:
        """The exact reprocess request submit() would send, or None if nothing is scoped."""
        self._require_loaded()
        return self._build_reprocess_request(reprocess_note)

    def get_change_summary(self) -> ChangeSummary:
        self._require_loaded()
        diffs = self.get_diff()
        has_manual_edits = any(d.has_changes for d in diffs)

        return ChangeSummary(
            mode=self.mode,
            has_manual_edits=has_manual_edits,
            edited_components=list(self._edited_content),
            corrections=list(self._corrections),
            prompts=self.get_prompts(),
            scope=self._scope,
            will_regenerate=list(self._scope.components),
            will_cascade=self._scope.cascade,
            will_save=has_manual_edits,
            will_reprocess=len(self._scope.components) > 0,
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @property
    def phase(self) -> EditPhase:
        return self._phase

    @property
    def result(self) -> Optional[EditResult]:
        return self._result

    @property
    def status_url(self) -> Optional[str]:
        return self._status_url

    async def submit(self, note: str, reprocess_note: Optional[str] = None) -> EditResult:
        """
        Save manual edits, then trigger regeneration.

        With no significant edits and an empty scope this is a no-op that
        returns an empty result.

        Args:
            note: Version note for the saved entity version
            reprocess_note: Optional note for versions written by the reprocess service

        Returns:
            EditResult with `saved` and/or `reprocess` filled in

        Raises:
            ValidationError: If not loaded or a submit is already in flight
            CASConflictError: If the entity changed since load; nothing is saved or triggered
            RemoteError: If an upload or the version write fails
            ReprocessError: If the reprocess API rejects the request
        """
        if self._submitting:
            raise ValidationError("Submit already in progress")
        entity = self._require_loaded()

        self._submitting = True
        self._status_url = None
        result = EditResult()
        self._result = result

        try:
            # Built before saving so review prompts describe the edits being saved
            request = self._build_reprocess_request(reprocess_note)

            if any(d.has_changes for d in self.get_diff()):
                self._phase = EditPhase.SAVING
                result.saved = await self._save(entity, note)

            if request is not None:
                self._phase = EditPhase.REPROCESSING
                reprocess_result = await self.client.reprocess(request)
                result.reprocess = reprocess_result
                self._status_url = reprocess_result.status_url
            else:
                self._phase = EditPhase.COMPLETE if result.saved else EditPhase.IDLE

            logger.info(
                "submit_completed",
                pi=self.pi,
                saved=result.saved is not None,
                batch_id=result.reprocess.batch_id if result.reprocess else None,
            )
            return result

        except ArkeEditError as e:
            self._phase = EditPhase.ERROR
            logger.error("submit_failed", pi=self.pi, code=e.code, error=e.message)
            raise

        finally:
            self._submitting = False

    async def _save(self, entity: Entity, note: str) -> SaveResult:
        saved_contents: Dict[str, str] = {}
        component_updates: Dict[str, str] = {}

        for name, content in self._edited_content.items():
            original = self._loaded_components.get(name, "")
            if has_significant_changes(original, content):
                component_updates[name] = await self.client.upload_content(content, name)
                saved_contents[name] = content

        version = await self.client.update_entity(self.pi, EntityUpdate(
            expect_tip=entity.manifest_cid,
            components=component_updates,
            note=note,
        ))

        entity.manifest_cid = version.tip
        entity.ver = version.ver
        entity.components.update(component_updates)
        self._loaded_components.update(saved_contents)

        logger.info(
            "submit_save_completed",
            pi=self.pi,
            ver=version.ver,
            tip=version.tip,
            components=sorted(component_updates),
        )
        return SaveResult(pi=version.pi, new_version=version.ver, new_tip=version.tip)

    def _build_reprocess_request(self, reprocess_note: Optional[str]) -> Optional[ReprocessRequest]:
        if not self._scope.components:
            return None

        custom_prompts = self._build_custom_prompts()
        return ReprocessRequest(
            pi=self.pi,
            phases=list(self._scope.components),
            cascade=self._scope.cascade,
            options=ReprocessOptions(
                stop_at_pi=self._scope.stop_at_pi,
                custom_prompts=None if custom_prompts.is_empty() else custom_prompts,
                custom_note=reprocess_note,
            ),
        )

    def _build_custom_prompts(self) -> CustomPrompts:
        custom: Dict[str, str] = {}

        if self.mode == EditMode.AI_PROMPT:
            general = self._prompts.get(PromptTarget.GENERAL)
            if general:
                custom["general"] = general
        elif self.ai_review_enabled:
            diffs = self.get_diff()
            if diffs or self._corrections:
                parts = [
                    format_component_diffs_for_prompt(diffs),
                    prompts.build_correction_prompt(self._corrections),
                    self._prompts.get(PromptTarget.GENERAL),
                ]
                base_prompt = "\n\n".join(part for part in parts if part)
                if base_prompt:
                    custom["general"] = base_prompt
            elif self._prompts.get(PromptTarget.GENERAL):
                custom["general"] = self._prompts[PromptTarget.GENERAL]
        elif self._prompts.get(PromptTarget.GENERAL):
            custom["general"] = self._prompts[PromptTarget.GENERAL]

        for target in _COMPONENT_PROMPT_TARGETS:
            if self._prompts.get(target):
                custom[target.value] = self._prompts[target]

        return CustomPrompts(**custom)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _edit_status(self, status: ReprocessStatus) -> EditStatus:
        if status.status == ReprocessPhase.DONE:
            phase = EditPhase.COMPLETE
        elif status.status == ReprocessPhase.ERROR:
            phase = EditPhase.ERROR
        else:
            phase = EditPhase.REPROCESSING

        return EditStatus(
            phase=phase,
            save_complete=True,
            reprocess_status=status,
            error=status.error,
        )

    async def wait_for_completion(self, options: Optional[PollOptions] = None) -> EditStatus:
        """
        Poll the reprocess status until DONE, ERROR or timeout.

        Returns immediately with a complete status if no reprocess was
        triggered. A timeout stops waiting but does not cancel the remote
        job; it is reported as phase "error" with a timeout message.

        Raises:
            RemoteError: If a status poll fails after its retries
        """
        opts = options or PollOptions()

        if not self._status_url:
            return EditStatus(phase=EditPhase.COMPLETE, save_complete=True)

        start_time = time.monotonic()
        is_first_poll = True

        while True:
            status = await self.client.get_reprocess_status(self._status_url, is_first_poll)
            is_first_poll = False

            edit_status = self._edit_status(status)
            if opts.on_progress:
                opts.on_progress(edit_status)

            if status.status.is_terminal:
                self._phase = edit_status.phase
                logger.info(
                    "reprocess_finished",
                    pi=self.pi,
                    batch_id=status.batch_id,
                    status=status.status.value,
                    error=status.error,
                )
                return edit_status

            if time.monotonic() - start_time >= opts.timeout:
                self._phase = EditPhase.ERROR
                logger.error(
                    "reprocess_wait_timeout",
                    pi=self.pi,
                    batch_id=status.batch_id,
                    last_status=status.status.value,
                    timeout=opts.timeout,
                )
                return EditStatus(
                    phase=EditPhase.ERROR,
                    save_complete=True,
                    reprocess_status=status,
                    error=TIMEOUT_MESSAGE,
                )

            await asyncio.sleep(opts.interval)

    async def get_status(self) -> EditStatus:
        """Current status from a single poll, without waiting."""
        if not self._status_url:
            saved = bool(self._result and self._result.saved)
            return EditStatus(
                phase=EditPhase.COMPLETE if saved else EditPhase.IDLE,
                save_complete=saved,
            )

        status = await self.client.get_reprocess_status(self._status_url)
        return self._edit_status(status)

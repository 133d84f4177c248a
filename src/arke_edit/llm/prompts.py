"""Prompt templates and builders for the reprocess service.

This module contains the canonical prompt text sent to the regeneration
service. All builders are pure: the same inputs always give the same
text, so a preview always matches what a submit sends.
"""

from datetime import datetime
from typing import List, Optional

from arke_edit.models.diff import ComponentDiff
from arke_edit.models.edit import CascadeContext, Correction, EntityContext
from arke_edit.models.reprocess import RegeneratableComponent
from arke_edit.services.diff_engine import format_component_diffs_for_prompt


# Current content is cut to this many characters in AI prompts
CONTENT_PREVIEW_LIMIT = 2000

_EDIT_REVIEW_GUIDANCE = {
    RegeneratableComponent.PINAX: (
        "Update metadata fields to reflect any corrections. Pay special attention to dates, "
        "names, and other factual information that may have been corrected."
    ),
    RegeneratableComponent.DESCRIPTION: (
        "Regenerate the description incorporating the changes. Maintain the overall tone "
        "and structure while ensuring accuracy based on the corrections."
    ),
    RegeneratableComponent.CHEIMARROS: (
        "Update the knowledge graph to reflect any new or corrected entities, relationships, "
        "and facts identified in the changes."
    ),
}

_COMPONENT_GUIDANCE = {
    RegeneratableComponent.PINAX: (
        "Extract and structure metadata including: institution, creator, title, "
        "date range, subjects, type, and other relevant fields. Ensure accuracy "
        "based on the source content."
    ),
    RegeneratableComponent.DESCRIPTION: (
        "Generate a clear, informative description that summarizes the entity content. "
        "Focus on what the material contains, its historical significance, and context. "
        "Write for a general audience unless otherwise specified."
    ),
    RegeneratableComponent.CHEIMARROS: (
        "Extract entities (people, places, organizations, events) and their relationships. "
        "Build a knowledge graph that captures the key facts and connections in the content."
    ),
}


def _name(component: RegeneratableComponent) -> str:
    return RegeneratableComponent(component).value


def build_ai_prompt(
    user_prompt: str,
    component: RegeneratableComponent,
    entity_context: EntityContext,
    current_content: Optional[str] = None,
    requested_at: Optional[datetime] = None,
) -> str:
    """Build a prompt for AI-first mode (user provides instructions).

    Args:
        user_prompt: Instructions from the user (already combined)
        component: Component being regenerated
        entity_context: Entity facts to include
        current_content: Current component content, shown for reference and
            cut at CONTENT_PREVIEW_LIMIT characters with a "[truncated]" marker
        requested_at: Optional timestamp line for the entity context

    Returns:
        Prompt text
    """
    name = _name(component)
    sections = []

    sections.append(f"## Instructions for {name}")
    sections.append(user_prompt)
    sections.append("")

    sections.append("## Entity Context")
    sections.append(f"- PI: {entity_context.pi}")
    sections.append(f"- Current version: {entity_context.ver}")
    if entity_context.parent_pi:
        sections.append(f"- Parent: {entity_context.parent_pi}")
    if entity_context.children_count > 0:
        sections.append(f"- Children: {entity_context.children_count}")
    if requested_at is not None:
        sections.append(f"- Requested at: {requested_at.isoformat()}")
    sections.append("")

    if current_content:
        sections.append(f"## Current {name} content for reference:")
        sections.append("```")
        sections.append(current_content[:CONTENT_PREVIEW_LIMIT])
        if len(current_content) > CONTENT_PREVIEW_LIMIT:
            sections.append("... [truncated]")
        sections.append("```")

    return "\n".join(sections)


def build_edit_review_prompt(
    component_diffs: List[ComponentDiff],
    corrections: List[Correction],
    component: RegeneratableComponent,
    user_instructions: Optional[str] = None,
) -> str:
    """Build a prompt describing manual edits for the service to review.

    Without user instructions a default instruction for the component is
    used. Component-specific guidance always closes the prompt.
    """
    name = _name(component)
    sections = []

    sections.append("## Manual Edits Made")
    sections.append("")
    sections.append("The following manual edits were made to this entity:")
    sections.append("")

    diff_content = format_component_diffs_for_prompt(component_diffs)
    if diff_content:
        sections.append(diff_content)

    if corrections:
        sections.append("## Corrections Identified")
        sections.append("")
        for correction in corrections:
            source = f" (in {correction.source_file})" if correction.source_file else ""
            sections.append(f'- "{correction.original}" → "{correction.corrected}"{source}')
        sections.append("")

    sections.append("## Instructions")
    if user_instructions:
        sections.append(user_instructions)
    else:
        sections.append(
            f"Update the {name} to accurately reflect these changes. "
            "Ensure any corrections are incorporated and the content is consistent."
        )
    sections.append("")

    sections.append("## Guidance")
    guidance = _EDIT_REVIEW_GUIDANCE.get(RegeneratableComponent(component))
    if guidance:
        sections.append(guidance)

    return "\n".join(sections)


def build_cascade_prompt(base_prompt: str, cascade_context: CascadeContext) -> str:
    """Append a cascade-context section to a prompt.

    The section tells the reader that parent entities will be updated
    afterwards, and lists the path and stop boundary when known.
    """
    sections = [base_prompt]

    sections.append("")
    sections.append("## Cascade Context")
    sections.append("")
    sections.append(
        "This edit is part of a cascading update. After updating this entity, "
        "parent entities will also be updated to reflect these changes."
    )
    sections.append("")

    if len(cascade_context.path) > 1:
        sections.append(f"Cascade path: {' → '.join(cascade_context.path)}")
        sections.append(f"Depth: {cascade_context.depth}")

    if cascade_context.stop_at_pi:
        sections.append(f"Cascade will stop at: {cascade_context.stop_at_pi}")

    sections.append("")
    sections.append(
        "Ensure the content accurately represents the source material so parent "
        "aggregations will be correct."
    )

    return "\n".join(sections)


def build_combined_prompt(
    general_prompt: Optional[str],
    component_prompt: Optional[str],
    component: RegeneratableComponent,
) -> str:
    """Combine general and component-specific instructions into one block."""
    name = _name(component)
    sections = []

    if general_prompt:
        sections.append("## General Instructions")
        sections.append(general_prompt)
        sections.append("")

    if component_prompt:
        sections.append(f"## Specific Instructions for {name}")
        sections.append(component_prompt)
        sections.append("")

    if not sections:
        return f"Regenerate the {name} based on the current entity content."

    return "\n".join(sections)


def build_correction_prompt(corrections: List[Correction]) -> str:
    """Describe explicit corrections; returns "" when there are none."""
    if not corrections:
        return ""

    sections = []
    sections.append("## Corrections Applied")
    sections.append("")
    sections.append("The following corrections were made to the source content:")
    sections.append("")

    for correction in corrections:
        source = f" in {correction.source_file}" if correction.source_file else ""
        sections.append(
            f'- "{correction.original}" was corrected to "{correction.corrected}"{source}'
        )
        if correction.context:
            sections.append(f"  Context: {correction.context}")

    sections.append("")
    sections.append(
        "Update the metadata and description to reflect these corrections. "
        "Previous content may have contained errors based on the incorrect text."
    )

    return "\n".join(sections)


def get_component_guidance(component: RegeneratableComponent) -> str:
    """Default regeneration guidance for a component ("" if unknown)."""
    try:
        return _COMPONENT_GUIDANCE.get(RegeneratableComponent(component), "")
    except ValueError:
        return ""

"""Text comparison and diff formatting for component edits.

Line diffs drive change summaries and prompt payloads; word diffs drive
correction extraction. The prompt renderers produce plain text that the
reprocess service reads as-is, so their exact phrasing is part of the
wire contract.
"""

import difflib
import re
from typing import List, Optional

from arke_edit.models.diff import ComponentDiff, TextDiff
from arke_edit.models.edit import Correction


_WHITESPACE_RUN = re.compile(r"\s+")
_WORD_TOKEN = re.compile(r"\w+|\s+|[^\w\s]")


def _split_lines(text: str) -> List[str]:
    """Split into lines, each ending with a newline.

    A missing final newline is not treated as a difference.
    """
    lines = text.splitlines(keepends=True)
    return [line if line.endswith("\n") else line + "\n" for line in lines]


def diff_lines(original: str, modified: str) -> List[TextDiff]:
    """Compute a line-level diff.

    Each contiguous run of added lines becomes one ``addition`` record and
    each run of removed lines one ``deletion`` record, holding the block
    with trailing whitespace trimmed. ``line_number`` is the 1-based line
    in the merged view where the run starts: unchanged and added lines
    advance the counter, removed lines do not. A replaced run yields the
    deletion before the addition.

    Args:
        original: Original text
        modified: Modified text

    Returns:
        Diff records in document order (empty if the texts match)
    """
    original_lines = _split_lines(original)
    modified_lines = _split_lines(modified)

    matcher = difflib.SequenceMatcher(None, original_lines, modified_lines, autojunk=False)
    diffs: List[TextDiff] = []
    line_number = 1

    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            line_number += i2 - i1
            continue

        if tag in ("delete", "replace"):
            diffs.append(TextDiff(
                type="deletion",
                original="".join(original_lines[i1:i2]).rstrip(),
                line_number=line_number,
            ))

        if tag in ("insert", "replace"):
            diffs.append(TextDiff(
                type="addition",
                modified="".join(modified_lines[j1:j2]).rstrip(),
                line_number=line_number,
            ))
            line_number += j2 - j1

    return diffs


def diff_words(original: str, modified: str) -> List[TextDiff]:
    """Compute a word-level diff without line numbers.

    Text is tokenized into words, whitespace runs and single punctuation
    characters. Removed and added token runs keep their whitespace so
    callers can decide how to trim.
    """
    original_tokens = _WORD_TOKEN.findall(original)
    modified_tokens = _WORD_TOKEN.findall(modified)

    matcher = difflib.SequenceMatcher(None, original_tokens, modified_tokens, autojunk=False)
    diffs: List[TextDiff] = []

    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag in ("delete", "replace"):
            diffs.append(TextDiff(type="deletion", original="".join(original_tokens[i1:i2])))
        if tag in ("insert", "replace"):
            diffs.append(TextDiff(type="addition", modified="".join(modified_tokens[j1:j2])))

    return diffs


def extract_corrections(
    original: str,
    modified: str,
    source_file: Optional[str] = None,
) -> List[Correction]:
    """Extract explicit replacements from a word-level diff.

    Scans the word diff left to right. A deletion immediately followed by
    an addition is a replacement: when both trimmed texts are non-empty and
    differ, it yields one correction. The pair is consumed together; any
    other record is skipped on its own.

    Args:
        original: Original text
        modified: Modified text
        source_file: Component the text came from, recorded on each correction

    Returns:
        Corrections in document order
    """
    word_diffs = diff_words(original, modified)
    corrections: List[Correction] = []

    i = 0
    while i < len(word_diffs):
        current = word_diffs[i]

        if (
            current.type == "deletion"
            and i + 1 < len(word_diffs)
            and word_diffs[i + 1].type == "addition"
        ):
            removed = (current.original or "").strip()
            added = (word_diffs[i + 1].modified or "").strip()

            if removed and added and removed != added:
                corrections.append(Correction(
                    original=removed,
                    corrected=added,
                    source_file=source_file,
                ))
            i += 2
        else:
            i += 1

    return corrections


def has_significant_changes(original: str, modified: str) -> bool:
    """Whether two texts differ once whitespace runs are collapsed and ends trimmed."""
    normalized_original = _WHITESPACE_RUN.sub(" ", original).strip()
    normalized_modified = _WHITESPACE_RUN.sub(" ", modified).strip()
    return normalized_original != normalized_modified


def _summarize(diffs: List[TextDiff]) -> str:
    if not diffs:
        return "No changes"

    additions = sum(1 for d in diffs if d.type == "addition")
    deletions = sum(1 for d in diffs if d.type == "deletion")

    parts = []
    if additions > 0:
        parts.append(f"{additions} addition{'s' if additions > 1 else ''}")
    if deletions > 0:
        parts.append(f"{deletions} deletion{'s' if deletions > 1 else ''}")
    return ", ".join(parts)


def create_component_diff(component_name: str, original: str, modified: str) -> ComponentDiff:
    """Build a ComponentDiff with a summary like "2 additions, 1 deletion"."""
    diffs = diff_lines(original, modified)
    return ComponentDiff(
        component_name=component_name,
        diffs=diffs,
        summary=_summarize(diffs),
        has_changes=len(diffs) > 0,
    )


def format_for_prompt(diffs: List[TextDiff]) -> str:
    """Render diff records as plain text for a prompt."""
    if not diffs:
        return "No changes detected."

    lines = []
    for diff in diffs:
        line_prefix = f"Line {diff.line_number}: " if diff.line_number else ""

        if diff.type == "addition":
            lines.append(f"{line_prefix}+ {diff.modified}")
        elif diff.type == "deletion":
            lines.append(f"{line_prefix}- {diff.original}")
        elif diff.type == "change":
            lines.append(f'{line_prefix}"{diff.original}" → "{diff.modified}"')

    return "\n".join(lines)


def format_component_diffs_for_prompt(component_diffs: List[ComponentDiff]) -> str:
    """Render per-component diffs under "## Changes to <name>:" headings.

    Components without changes are left out; returns "" if none changed.
    """
    sections = []

    for component_diff in component_diffs:
        if not component_diff.has_changes:
            continue

        sections.append(f"## Changes to {component_diff.component_name}:")
        sections.append(format_for_prompt(component_diff.diffs))
        sections.append("")

    return "\n".join(sections)


def unified_diff(
    original: str,
    modified: str,
    filename: str = "content",
    context_lines: int = 3,
) -> str:
    """Generate a unified diff between original and modified content.

    Lines that differ only by the presence/absence of a trailing newline
    are treated as identical.

    Args:
        original: Original content
        modified: Modified content
        filename: Label used for both sides of the diff header
        context_lines: Number of context lines to show

    Returns:
        Unified diff as string ("" when nothing changed)
    """
    diff = difflib.unified_diff(
        _split_lines(original),
        _split_lines(modified),
        fromfile=filename,
        tofile=filename,
        n=context_lines,
    )

    # Header lines from unified_diff lack a trailing newline
    return "".join(line if line.endswith("\n") else line + "\n" for line in diff)

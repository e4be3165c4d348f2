"""
Change-set resolution: which citation markers get renumbered and which are orphaned.
"""

from typing import Dict, List

from .common import (
    ORDINAL_PATTERN,
    ChangeSet,
    CitationOccurrence,
    ReferenceEntry,
    format_text_preview,
    sort_references,
)


def build_citation_numbers(references: List[ReferenceEntry]) -> Dict[str, int]:
    """Map citation id -> new 1-based reference number (position in sort_key order)"""
    numbers: Dict[str, int] = {}
    for position, ref in enumerate(sort_references(references), 1):
        for citation_id in ref.citation_ids or []:
            numbers[citation_id] = position
    return numbers


def renumber_marker(raw_text: str, new_number: int) -> str:
    """Replace the first integer run of a marker: ("[3]", 1) -> "[1]" """
    match = ORDINAL_PATTERN.search(raw_text)
    if not match:
        return raw_text
    return raw_text[:match.start()] + str(new_number) + raw_text[match.end():]


def resolve_change_set(citations: List[CitationOccurrence],
                       references: List[ReferenceEntry],
                       verbose: bool = False) -> ChangeSet:
    """
    Compute renumbering and orphan edits for a document.

    Matching downstream is by literal marker text, so two occurrences sharing
    a raw_text collapse into one edit. When one of them is renumbered and
    another orphaned, the renumbering wins and the text is recorded in
    ChangeSet.collisions.

    Args:
        citations: Citation occurrences as currently rendered
        references: Reference entries (any order; sorted by sort_key here)
        verbose: Print resolution details

    Returns:
        ChangeSet with disjoint renumberings and orphans
    """
    citation_numbers = build_citation_numbers(references)
    change_set = ChangeSet()

    for citation in citations:
        raw_text = (citation.raw_text or '').strip()
        if not raw_text:
            continue
        match = ORDINAL_PATTERN.search(raw_text)
        if not match:
            # No embedded ordinal, nothing to compare against
            continue

        old_number = int(match.group())
        new_number = citation_numbers.get(citation.id)

        if new_number is None:
            if raw_text not in change_set.orphans:
                change_set.orphans.append(raw_text)
            continue

        if new_number == old_number:
            continue

        new_text = renumber_marker(raw_text, new_number)
        existing = change_set.renumberings.get(raw_text)
        if existing is None:
            change_set.renumberings[raw_text] = new_text
        elif existing != new_text:
            if raw_text not in change_set.collisions:
                change_set.collisions.append(raw_text)
            if verbose:
                print(f"  [Resolver] Ambiguous marker '{raw_text}': keeping "
                      f"'{existing}', ignoring '{new_text}'")

    kept_orphans = []
    for orphan in change_set.orphans:
        if orphan in change_set.renumberings:
            if orphan not in change_set.collisions:
                change_set.collisions.append(orphan)
            if verbose:
                print(f"  [Resolver] Marker '{format_text_preview(orphan)}' is both orphaned "
                      f"and renumbered; renumbering wins")
        else:
            kept_orphans.append(orphan)
    change_set.orphans = kept_orphans

    if verbose:
        print(f"[Resolver] {len(change_set.renumberings)} renumbered, "
              f"{len(change_set.orphans)} orphaned, {len(change_set.collisions)} collisions")
    return change_set

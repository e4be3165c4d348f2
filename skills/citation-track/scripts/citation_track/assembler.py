"""
Document assembly: split document.xml, run both patchers, verify, recombine.
"""

import re
from typing import List, Optional, Tuple

from utils import unescape_xml

from .body_patcher import BodyPatcher
from .common import (
    PARAGRAPH_START_PATTERN,
    REFERENCE_HEADINGS,
    TEXT_PATTERN,
    AssemblyResult,
    ChangeSet,
    PatchSummary,
    ReferenceEntry,
    revision_timestamp,
)
from .reference_patcher import (
    FamilyNameMatcher,
    LeadingFamilyNameMatcher,
    ReferenceListPatcher,
)
from .revisions import RevisionCounter, document_namespaces
from .verify import assert_balance_preserved, verify_document_xml

_TRACK_REVISIONS_PATTERN = re.compile(r'<w:trackRevisions(?=[\s>/])')
_SETTINGS_CLOSE = '</w:settings>'


def find_reference_heading(document_xml: str) -> int:
    """
    Offset of the last <w:t> whose whole text is a reference heading, or -1.

    The last occurrence wins so a table of contents entry that repeats the
    heading text earlier in the document does not start the region.
    """
    headings = {h.lower() for h in REFERENCE_HEADINGS}
    found = -1
    for t in TEXT_PATTERN.finditer(document_xml):
        if unescape_xml(t.group(2)).strip().lower() in headings:
            found = t.start()
    return found


def split_regions(document_xml: str) -> Tuple[str, str]:
    """
    Split document.xml into (body_xml, references_xml).

    references_xml starts at the paragraph holding the reference heading and
    runs to the end of the document; body_xml + references_xml == document_xml.
    """
    heading_pos = find_reference_heading(document_xml)
    if heading_pos < 0:
        return document_xml, ''

    split_at = -1
    for m in PARAGRAPH_START_PATTERN.finditer(document_xml, 0, heading_pos):
        split_at = m.start()
    if split_at < 0:
        return document_xml, ''
    return document_xml[:split_at], document_xml[split_at:]


def enable_track_revisions(settings_xml: str) -> Tuple[str, bool]:
    """
    Turn on Word's "Track Changes" toggle.

    Returns:
        (settings_xml, changed); unchanged when the toggle is already present
        or the settings element is missing
    """
    if not settings_xml or _TRACK_REVISIONS_PATTERN.search(settings_xml):
        return settings_xml, False
    pos = settings_xml.rfind(_SETTINGS_CLOSE)
    if pos < 0:
        return settings_xml, False
    return settings_xml[:pos] + '<w:trackRevisions/>' + settings_xml[pos:], True


class DocumentAssembler:
    """
    Applies a ChangeSet and a reference list to a complete document.xml.

    Args:
        author: w:author on every revision marker
        accept_changes: Apply edits as plain text (no revision markup)
        strict_match: Use LeadingFamilyNameMatcher for the reference list
        highlight: Highlight deleted citation runs red and inserted ones cyan
        verbose: Print progress
    """

    def __init__(self, author: str, accept_changes: bool = False,
                 strict_match: bool = False, highlight: bool = False,
                 verbose: bool = False):
        self.author = author
        self.accept_changes = accept_changes
        self.verbose = verbose
        matcher = LeadingFamilyNameMatcher() if strict_match else FamilyNameMatcher()
        self.body_patcher = BodyPatcher(
            accept_changes=accept_changes, highlight=highlight, verbose=verbose
        )
        self.reference_patcher = ReferenceListPatcher(
            matcher, accept_changes=accept_changes, verbose=verbose
        )

    def assemble(self, document_xml: str, change_set: ChangeSet,
                 references: Optional[List[ReferenceEntry]] = None,
                 timestamp: Optional[str] = None,
                 start_revision_id: Optional[int] = None) -> AssemblyResult:
        """
        Patch document_xml.

        Raises:
            XmlBalanceError: If either patcher broke structural balance or the
                recombined document is not well-formed
        """
        timestamp = timestamp or revision_timestamp()
        if start_revision_id is None:
            start_revision_id = RevisionCounter.after_existing([document_xml]).value

        namespaces = document_namespaces(document_xml)
        body_xml, references_xml = split_regions(document_xml)
        summary = PatchSummary(references_found=bool(references_xml))
        if self.verbose:
            if references_xml:
                print(f"[Assembler] References section found at offset {len(body_xml)}")
            else:
                print("[Assembler] No references section found; reference list left unchanged")

        body_result = self.body_patcher.patch(
            body_xml, change_set, self.author, timestamp, start_revision_id, namespaces
        )
        assert_balance_preserved(body_xml, body_result.xml, 'Body')
        next_id = body_result.next_revision_id

        for match in body_result.matches:
            if match.count == 0:
                summary.unmatched.append(match)
            elif match.is_orphan:
                summary.orphaned.append(match)
            else:
                summary.changed.append(match)
        summary.total_citations = sum(m.count for m in body_result.matches)

        patched_references = references_xml
        if references_xml and references:
            ref_result = self.reference_patcher.patch(
                references_xml, references, self.author, timestamp, next_id, namespaces
            )
            assert_balance_preserved(references_xml, ref_result.xml, 'References')
            patched_references = ref_result.xml
            next_id = ref_result.next_revision_id
            summary.references_reordered = ref_result.reordered
            summary.references_deleted = ref_result.deleted
            summary.references_failed = ref_result.failed
            summary.references_swapped = ref_result.swapped

        patched = body_result.xml + patched_references
        verify_document_xml(patched)

        if self.verbose:
            print(f"[Assembler] {len(summary.changed)} changed, {len(summary.orphaned)} orphaned, "
                  f"{len(summary.unmatched)} unmatched, next revision id {next_id}")
        return AssemblyResult(xml=patched, summary=summary, next_revision_id=next_id)

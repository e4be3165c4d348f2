"""
Reference-list patching: reorder, relabel and delete bibliography paragraphs.

The references region starts at the heading paragraph. Paragraphs following
it form the entry block until a table, section properties, the end of the
enclosing container or a back-matter paragraph ("Correspondence:",
"Funding", ...). Markup between entry paragraphs keeps its place while the
paragraphs move; anything after the block is carried over verbatim.
"""

import re
import sys
from typing import Dict, List, Optional, Protocol, Tuple

from utils import escape_xml, unescape_xml

from .common import (
    LABEL_PATTERN,
    NESTED_RUN_PATTERN,
    NON_REFERENCE_MARKERS,
    PARAGRAPH_PATTERN,
    REVISION_SPAN_PATTERN,
    RUN_PATTERN,
    TEXT_PATTERN,
    ReferenceEntry,
    ReferencePatchResult,
    format_text_preview,
    sort_references,
)
from .revisions import RevisionCounter, wrap_run_in_del

# Leading label as printed before the first author: "12. ", "12 ", "[12] "
_LEADING_LABEL_PATTERN = re.compile(r'^\s*\[?\d+[\].]?\s*')

# Markup between entry paragraphs that ends the entry block
_BLOCK_END_PATTERN = re.compile(r'<w:(?:tbl|sectPr)[\s>/]|</w:(?:body|sdtContent|tc)>')


def paragraph_text(paragraph_xml: str) -> str:
    """Concatenated, unescaped <w:t> text of one paragraph"""
    return ''.join(unescape_xml(m.group(2)) for m in TEXT_PATTERN.finditer(paragraph_xml))


# ============================================================
# Matchers
# ============================================================

class ReferenceMatcher(Protocol):
    def match(self, text: str, candidates: List[ReferenceEntry]) -> Optional[str]:
        ...


class FamilyNameMatcher:
    """
    Match a paragraph to the first candidate whose first author's family
    name occurs anywhere in the paragraph text.

    The family name is the part of the first author string before the first
    comma or whitespace ("Smith, J." -> "Smith", "Smith J" -> "Smith").
    """

    def family_name(self, entry: ReferenceEntry) -> Optional[str]:
        if not entry.authors:
            return None
        first_author = (entry.authors[0] or '').strip()
        token = re.split(r'[,\s]', first_author, maxsplit=1)[0]
        return token or None

    def match(self, text: str, candidates: List[ReferenceEntry]) -> Optional[str]:
        for entry in candidates:
            name = self.family_name(entry)
            if name and name in text:
                return entry.id
        return None


class LeadingFamilyNameMatcher(FamilyNameMatcher):
    """Stricter variant: the family name must open the entry (after its label)."""

    def match(self, text: str, candidates: List[ReferenceEntry]) -> Optional[str]:
        body = _LEADING_LABEL_PATTERN.sub('', text, count=1)
        for entry in candidates:
            name = self.family_name(entry)
            if name and body.startswith(name):
                return entry.id
        return None


# ============================================================
# Patcher
# ============================================================

def is_non_reference(text: str) -> bool:
    """Back matter such as "Correspondence:" or "Funding" that ends a reference list"""
    lowered = text.strip().lower()
    return any(lowered.startswith(marker) for marker in NON_REFERENCE_MARKERS)


class ReferenceListPatcher:
    """
    Reorders matched entries into sort_key order and marks unmatched ones deleted.

    Args:
        matcher: Paragraph-to-entry matcher (default FamilyNameMatcher)
        accept_changes: Drop unmatched paragraphs instead of tracking deletion
        verbose: Print per-paragraph progress
    """

    def __init__(self, matcher: Optional[ReferenceMatcher] = None,
                 accept_changes: bool = False, verbose: bool = False):
        self.matcher = matcher or FamilyNameMatcher()
        self.accept_changes = accept_changes
        self.verbose = verbose

    def patch(self, references_xml: str, references: List[ReferenceEntry], author: str,
              timestamp: str, start_revision_id: int,
              namespaces: Optional[Dict[str, str]] = None) -> ReferencePatchResult:
        """
        Patch the references region.

        Never raises: on any failure the original XML is returned with zero
        counts, next_revision_id == start_revision_id and failed=True.
        """
        try:
            return self._patch(references_xml, references, author, timestamp,
                               start_revision_id, namespaces)
        except Exception as e:
            print(f"  [References] Update failed, keeping original list: {e}", file=sys.stderr)
            return ReferencePatchResult(
                xml=references_xml,
                reordered=0,
                deleted=0,
                next_revision_id=start_revision_id,
                failed=True,
                error_message=str(e),
            )

    def _entry_block(self, xml: str) -> Tuple[int, int, List[str], List[str]]:
        """
        Locate the entry block after the heading.

        The block ends before a table, section properties or the end of the
        enclosing container, and before the first back-matter paragraph.
        Other markup between paragraphs (bookmark, permission and comment
        range ends) stays inside the block.

        Returns:
            (start, end, paragraphs, gaps) where gaps[i] is the markup between
            paragraphs[i] and paragraphs[i + 1]
        """
        matches = list(PARAGRAPH_PATTERN.finditer(xml))
        block = []
        prev_end = matches[0].end() if matches else 0
        for m in matches[1:]:
            if _BLOCK_END_PATTERN.search(xml, prev_end, m.start()):
                break
            text = paragraph_text(m.group(0))
            if is_non_reference(text):
                if self.verbose:
                    print(f"  [References] Back matter, list ends before: '{format_text_preview(text)}'")
                break
            block.append(m)
            prev_end = m.end()

        if not block:
            return -1, -1, [], []
        gaps = [xml[a.end():b.start()] for a, b in zip(block, block[1:])]
        return block[0].start(), block[-1].end(), [m.group(0) for m in block], gaps

    def _original_number(self, paragraph_xml: str, fallback: int) -> int:
        """Printed label of an entry, or its position in the block when unlabelled"""
        for t in TEXT_PATTERN.finditer(paragraph_xml):
            text = unescape_xml(t.group(2))
            if not text.strip():
                continue
            label = LABEL_PATTERN.match(text)
            return int(label.group(2)) if label else fallback
        return fallback

    def _find_swaps(self, moves: List[Tuple[ReferenceEntry, int, int]]) -> List[Tuple[str, str]]:
        """Pairs whose original and new numbers are exchanged: (entry, old, new) triples"""
        swaps = []
        for i, (ref_a, old_a, new_a) in enumerate(moves):
            for ref_b, old_b, new_b in moves[i + 1:]:
                if old_a != new_a and old_a == new_b and old_b == new_a:
                    name_a = ref_a.authors[0] if ref_a.authors else f'Ref {old_a}'
                    name_b = ref_b.authors[0] if ref_b.authors else f'Ref {old_b}'
                    swaps.append((name_a, name_b))
                    if self.verbose:
                        print(f"  [References] Swapped: {old_a} ({name_a}) <-> {old_b} ({name_b})")
        return swaps

    def _patch(self, xml: str, references: List[ReferenceEntry], author: str,
               timestamp: str, start_revision_id: int,
               namespaces: Optional[Dict[str, str]]) -> ReferencePatchResult:
        counter = RevisionCounter(start_revision_id)
        block_start, block_end, paragraphs, gaps = self._entry_block(xml or '')
        if not paragraphs:
            return ReferencePatchResult(xml, 0, 0, counter.value)

        ordered = sort_references(references)
        position_of = {ref.id: pos for pos, ref in enumerate(ordered, 1)}

        # Paragraph-outer matching: each paragraph claims at most one entry
        claimed = {}  # entry id -> paragraph index
        for idx, para in enumerate(paragraphs):
            text = paragraph_text(para)
            if not text.strip():
                continue
            candidates = [ref for ref in ordered if ref.id not in claimed]
            entry_id = self.matcher.match(text, candidates)
            if entry_id in position_of and entry_id not in claimed:
                claimed[entry_id] = idx
                if self.verbose:
                    print(f"  [References] Matched '{format_text_preview(text)}' -> {entry_id}")

        matched_order = sorted(claimed.values())
        output = []
        moves = []
        reordered = 0
        for ref in ordered:
            idx = claimed.get(ref.id)
            if idx is None:
                continue
            if matched_order[len(output)] != idx:
                reordered += 1
            new_number = position_of[ref.id]
            moves.append((ref, self._original_number(paragraphs[idx], idx + 1), new_number))
            output.append(self._relabel(paragraphs[idx], new_number))

        claimed_indexes = set(claimed.values())
        deleted = 0
        for idx, para in enumerate(paragraphs):
            if idx in claimed_indexes:
                continue
            text = paragraph_text(para)
            if not text.strip():
                output.append(para)
                continue
            deleted += 1
            if self.verbose:
                print(f"  [References] Unmatched, deleting: '{format_text_preview(text)}'")
            if self.accept_changes:
                continue
            output.append(self._mark_deleted(para, author, timestamp, counter, namespaces))

        # Paragraphs move; the markup between them stays where it was
        pieces = []
        for idx, para in enumerate(output):
            pieces.append(para)
            if idx < len(gaps):
                pieces.append(gaps[idx])
        pieces.extend(gaps[len(output):])

        swapped = self._find_swaps(moves)
        patched = xml[:block_start] + ''.join(pieces) + xml[block_end:]
        if self.verbose:
            print(f"[References] {len(claimed)} matched, {reordered} reordered, {deleted} deleted, "
                  f"{len(swapped)} swapped")
        return ReferencePatchResult(patched, reordered, deleted, counter.value, swapped=swapped)

    def _relabel(self, paragraph_xml: str, position: int) -> str:
        """Rewrite a leading "N. " / "N " / "[N]" label in the first non-empty <w:t>"""
        for t in TEXT_PATTERN.finditer(paragraph_xml):
            text = unescape_xml(t.group(2))
            if not text.strip():
                continue
            label = LABEL_PATTERN.match(text)
            if not label or int(label.group(2)) == position:
                return paragraph_xml
            new_text = label.group(1) + str(position) + text[label.end():]
            replacement = f'{t.group(1)}{escape_xml(new_text)}</w:t>'
            return paragraph_xml[:t.start()] + replacement + paragraph_xml[t.end():]
        return paragraph_xml

    def _mark_deleted(self, paragraph_xml: str, author: str, timestamp: str,
                      counter: RevisionCounter, namespaces: Optional[Dict[str, str]]) -> str:
        """Wrap each live run of the paragraph in its own <w:del>"""
        spans = [(m.start(), m.end()) for m in REVISION_SPAN_PATTERN.finditer(paragraph_xml)]

        def replace_run(run: re.Match) -> str:
            run_xml = run.group(0)
            content = run.group(2)
            if '<w:delText' in content or NESTED_RUN_PATTERN.search(content):
                return run_xml
            if any(start <= run.start() < end for start, end in spans):
                return run_xml
            return wrap_run_in_del(run_xml, counter.next(), author, timestamp, namespaces)

        return RUN_PATTERN.sub(replace_run, paragraph_xml)


def patch_references(references_xml: str, references: List[ReferenceEntry], author: str,
                     timestamp: str, start_revision_id: int, strict_match: bool = False,
                     accept_changes: bool = False, verbose: bool = False) -> ReferencePatchResult:
    """Functional form of ReferenceListPatcher.patch()"""
    matcher = LeadingFamilyNameMatcher() if strict_match else FamilyNameMatcher()
    patcher = ReferenceListPatcher(matcher, accept_changes=accept_changes, verbose=verbose)
    return patcher.patch(references_xml, references, author, timestamp, start_revision_id)

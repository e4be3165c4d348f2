"""
Body patching: renumber and delete citation markers with track changes.

Works in two passes over the body XML string:
1. locate  - scan the untouched runs, join the <w:t> texts of neighbouring
             runs into chains and record every marker occurrence as a
             LocatedEdit made of one EditPiece per <w:t> it touches. Nothing
             is written in this pass, so matching only ever sees original runs.
2. inject  - rebuild each affected run (parsed with lxml) as prefix run +
             w:del/w:ins runs + suffix run, consuming revision ids in
             document order.

A marker split over several runs ("[", superscript "3", "]") is deleted run
by run; the new text is inserted once, next to the piece holding the
marker's number so it picks up that piece's formatting.
"""

import bisect
import copy
import re
from dataclasses import dataclass, field
from itertools import groupby
from typing import Dict, List, Optional, Tuple

from lxml import etree

from .common import (
    DELETION_HIGHLIGHT,
    INSERTION_HIGHLIGHT,
    NESTED_RUN_PATTERN,
    NS,
    ORDINAL_PATTERN,
    REVISION_SPAN_PATTERN,
    RUN_PATTERN,
    BodyPatchResult,
    ChangeSet,
    EditMatch,
    format_text_preview,
)
from .revisions import (
    RevisionCounter,
    append_text,
    build_del_run,
    build_ins_run,
    get_rpr,
    new_run,
    parse_run,
    serialize,
)

# Run children that render as visible separators; a marker never spans them
_SEPARATOR_TAGS = {f'{{{NS["w"]}}}{tag}' for tag in ('tab', 'br', 'cr', 'ptab')}

# Markup between two runs that ends a text chain
_CHAIN_BREAK_PATTERN = re.compile(r'</w:p>|<w:p[\s>/]')

# Run content worth parsing: text or a separator that ends a chain
_TEXT_OR_SEPARATOR_PATTERN = re.compile(r'<w:(?:t|tab|br|cr|ptab)[\s>/]')


@dataclass
class TextSegment:
    """One <w:t> of an editable run"""
    run_start: int
    text_index: int     # position among the run's <w:t> children
    text: str


@dataclass
class EditPiece:
    """The part of one located marker that lies in a single <w:t>"""
    edit: EditMatch
    run_start: int
    text_index: int
    start: int          # offsets within that <w:t>'s text
    end: int
    anchor: bool        # new text is placed right after this piece


@dataclass
class LocatedEdit:
    """One marker occurrence found in the original body XML"""
    edit: EditMatch
    pieces: List[EditPiece] = field(default_factory=list)


class BodyPatcher:
    """
    Applies a ChangeSet to the body region of document.xml.

    Args:
        accept_changes: Apply edits as plain text instead of revision markup
        highlight: Highlight deleted runs red and inserted runs cyan
        verbose: Print per-edit progress
    """

    def __init__(self, accept_changes: bool = False, highlight: bool = False,
                 verbose: bool = False):
        self.accept_changes = accept_changes
        self.highlight = highlight
        self.verbose = verbose

    def patch(self, body_xml: str, change_set: ChangeSet, author: str,
              timestamp: str, start_revision_id: int,
              namespaces: Optional[Dict[str, str]] = None) -> BodyPatchResult:
        """
        Renumber and orphan-delete citation markers in body_xml.

        Marker texts are matched with surrounding whitespace trimmed. Markers
        that occur in no run, or are blank, are reported with count 0 and
        skipped.

        Args:
            namespaces: Prefix declarations of the enclosing document
                (defaults to the standard WordprocessingML prefixes)

        Returns:
            BodyPatchResult with patched xml, the next unused revision id and
            one EditMatch per edit (renumberings first, then orphans)
        """
        counter = RevisionCounter(start_revision_id)
        edits = [EditMatch(old.strip(), new) for old, new in change_set.renumberings.items()]
        edits += [EditMatch(orphan.strip(), None) for orphan in change_set.orphans]
        searchable = [edit for edit in edits if edit.old_text]

        if not body_xml or not searchable:
            self._log_matches(edits)
            return BodyPatchResult(body_xml, counter.value, edits)

        runs, chains = self._collect_segments(body_xml, namespaces)
        located = self._locate_edits(chains, searchable)
        patched = self._inject_markup(body_xml, runs, located, author, timestamp,
                                      counter, namespaces)

        self._log_matches(edits)
        return BodyPatchResult(patched, counter.value, edits)

    def _log_matches(self, edits: List[EditMatch]) -> None:
        if not self.verbose:
            return
        for edit in edits:
            if edit.count == 0:
                print(f"  [Body] No match for '{format_text_preview(edit.old_text)}'")
            elif edit.is_orphan:
                print(f"  [Body] Orphaned: {edit.old_text} ({edit.count}x)")
            else:
                print(f"  [Body] Changed: {edit.old_text} -> {edit.new_text} ({edit.count}x)")

    # ==================== Phase 1: Locate ====================

    def _revision_spans(self, xml: str) -> Tuple[List[int], List[int]]:
        starts, ends = [], []
        for m in REVISION_SPAN_PATTERN.finditer(xml):
            starts.append(m.start())
            ends.append(m.end())
        return starts, ends

    def _inside_revision(self, pos: int, spans: Tuple[List[int], List[int]]) -> bool:
        starts, ends = spans
        idx = bisect.bisect_right(starts, pos) - 1
        return idx >= 0 and pos < ends[idx]

    def _collect_segments(self, xml: str, namespaces: Optional[Dict[str, str]]
                          ) -> Tuple[Dict[int, Tuple[re.Match, etree._Element]], List[List[TextSegment]]]:
        """
        Parse every editable run and group their <w:t> texts into chains.

        A chain is broken by a paragraph boundary, by a run that may not be
        edited (inside an existing revision, or holding nested runs) and by
        visible separators such as tabs and breaks.
        """
        spans = self._revision_spans(xml)
        runs: Dict[int, Tuple[re.Match, etree._Element]] = {}
        chains: List[List[TextSegment]] = []
        chain: List[TextSegment] = []
        prev_end = 0

        def close_chain() -> None:
            nonlocal chain
            if chain:
                chains.append(chain)
                chain = []

        for run in RUN_PATTERN.finditer(xml):
            if _CHAIN_BREAK_PATTERN.search(xml, prev_end, run.start()):
                close_chain()
            prev_end = run.end()

            content = run.group(2)
            if NESTED_RUN_PATTERN.search(content) or self._inside_revision(run.start(), spans):
                # Text boxes, alternate content and earlier revisions are left alone
                close_chain()
                continue
            if not _TEXT_OR_SEPARATOR_PATTERN.search(content):
                continue

            run_elem = parse_run(run.group(0), namespaces)
            runs[run.start()] = (run, run_elem)
            text_index = 0
            for child in run_elem:
                if child.tag in _SEPARATOR_TAGS:
                    close_chain()
                elif child.tag == f'{{{NS["w"]}}}t':
                    chain.append(TextSegment(run.start(), text_index, child.text or ''))
                    text_index += 1

        close_chain()
        return runs, chains

    def _locate_edits(self, chains: List[List[TextSegment]],
                      edits: List[EditMatch]) -> List[LocatedEdit]:
        """
        Find every non-overlapping occurrence of each edit's marker text.

        Longer markers are claimed first so "[1, 2]" is not broken up by an
        edit for "[1]" inside the same chain.
        """
        ordered = sorted(edits, key=lambda e: len(e.old_text), reverse=True)
        located: List[LocatedEdit] = []

        for chain in chains:
            combined = ''.join(seg.text for seg in chain)
            if not combined:
                continue
            starts = []
            offset = 0
            for seg in chain:
                starts.append(offset)
                offset += len(seg.text)

            claimed: List[Tuple[int, int]] = []
            for edit in ordered:
                pos = combined.find(edit.old_text)
                while pos != -1:
                    end = pos + len(edit.old_text)
                    if any(pos < c_end and c_start < end for c_start, c_end in claimed):
                        pos = combined.find(edit.old_text, pos + 1)
                        continue
                    claimed.append((pos, end))
                    edit.count += 1
                    located.append(self._split_into_pieces(edit, chain, starts, pos, end))
                    pos = combined.find(edit.old_text, end)

        return located

    def _split_into_pieces(self, edit: EditMatch, chain: List[TextSegment],
                           starts: List[int], pos: int, end: int) -> LocatedEdit:
        ordinal = ORDINAL_PATTERN.search(edit.old_text)
        anchor_pos = pos + ordinal.start() if ordinal else pos

        result = LocatedEdit(edit)
        first = bisect.bisect_right(starts, pos) - 1
        last = bisect.bisect_right(starts, end - 1) - 1
        for idx in range(first, last + 1):
            seg = chain[idx]
            seg_start = starts[idx]
            piece_start = max(pos, seg_start) - seg_start
            piece_end = min(end, seg_start + len(seg.text)) - seg_start
            if piece_start >= piece_end:
                continue
            result.pieces.append(EditPiece(
                edit=edit,
                run_start=seg.run_start,
                text_index=seg.text_index,
                start=piece_start,
                end=piece_end,
                anchor=seg_start + piece_start <= anchor_pos < seg_start + piece_end,
            ))
        return result

    # ==================== Phase 2: Inject ====================

    def _inject_markup(self, xml: str, runs: Dict[int, Tuple[re.Match, etree._Element]],
                       located: List[LocatedEdit], author: str, timestamp: str,
                       counter: RevisionCounter, namespaces: Optional[Dict[str, str]]) -> str:
        if not located:
            return xml

        pieces = [piece for loc in located for piece in loc.pieces]
        pieces.sort(key=lambda p: (p.run_start, p.text_index, p.start))

        parts = []
        cursor = 0
        for run_start, group in groupby(pieces, key=lambda p: p.run_start):
            run_match, run_elem = runs[run_start]
            parts.append(xml[cursor:run_start])
            parts.append(self._rebuild_run(run_elem, list(group), author, timestamp,
                                           counter, namespaces))
            cursor = run_match.end()
        parts.append(xml[cursor:])
        return ''.join(parts)

    def _piece_markup(self, piece: EditPiece, deleted_text: str, rpr: Optional[etree._Element],
                      author: str, timestamp: str, counter: RevisionCounter,
                      namespaces: Optional[Dict[str, str]]) -> str:
        elements = [build_del_run(
            deleted_text, rpr, counter.next(), author, timestamp, namespaces,
            highlight=DELETION_HIGHLIGHT if self.highlight else None,
        )]
        if piece.anchor and not piece.edit.is_orphan:
            elements.append(build_ins_run(
                piece.edit.new_text, rpr, counter.next(), author, timestamp, namespaces,
                highlight=INSERTION_HIGHLIGHT if self.highlight else None,
            ))
        return ''.join(serialize(elem, namespaces) for elem in elements)

    def _rebuild_run(self, run_elem: etree._Element, pieces: List[EditPiece], author: str,
                     timestamp: str, counter: RevisionCounter,
                     namespaces: Optional[Dict[str, str]]) -> str:
        """
        Split one run around its edit pieces.

        Children before the first edited <w:t> stay with the prefix run and
        children after the last one with the suffix run; every emitted run
        carries the original run's attributes and <w:rPr>.
        """
        rpr = get_rpr(run_elem)
        pieces_by_text = {idx: list(group) for idx, group in groupby(pieces, key=lambda p: p.text_index)}
        output: List[str] = []
        current = new_run(rpr, namespaces, template=run_elem)
        empty_size = len(current)

        def flush() -> None:
            nonlocal current
            if len(current) > empty_size:
                output.append(serialize(current, namespaces))
            current = new_run(rpr, namespaces, template=run_elem)

        text_index = 0
        for child in run_elem:
            if child.tag == f'{{{NS["w"]}}}rPr':
                continue
            if child.tag != f'{{{NS["w"]}}}t':
                current.append(copy.deepcopy(child))
                continue

            text_pieces = pieces_by_text.get(text_index)
            text_index += 1
            if not text_pieces:
                current.append(copy.deepcopy(child))
                continue

            text = child.text or ''
            pos = 0
            if self.accept_changes:
                merged = []
                for piece in text_pieces:
                    merged.append(text[pos:piece.start])
                    if piece.anchor and not piece.edit.is_orphan:
                        merged.append(piece.edit.new_text)
                    pos = piece.end
                merged.append(text[pos:])
                append_text(current, ''.join(merged))
            else:
                for piece in text_pieces:
                    append_text(current, text[pos:piece.start])
                    flush()
                    output.append(self._piece_markup(
                        piece, text[piece.start:piece.end], rpr, author, timestamp,
                        counter, namespaces
                    ))
                    pos = piece.end
                append_text(current, text[pos:])

        flush()
        return ''.join(output)


def patch_body(body_xml: str, change_set: ChangeSet, author: str, timestamp: str,
               start_revision_id: int, accept_changes: bool = False,
               highlight: bool = False, verbose: bool = False) -> BodyPatchResult:
    """Functional form of BodyPatcher.patch()"""
    return BodyPatcher(accept_changes=accept_changes, highlight=highlight, verbose=verbose).patch(
        body_xml, change_set, author, timestamp, start_revision_id
    )

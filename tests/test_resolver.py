#!/usr/bin/env python3
"""
ABOUTME: Unit tests for the citation change-set resolver
"""

import sys
from pathlib import Path

_scripts_dir = Path(__file__).parent.parent / 'skills' / 'citation-track' / 'scripts'
sys.path.insert(0, str(_scripts_dir))

from citation_track.common import CitationOccurrence, ReferenceEntry  # noqa: E402  # type: ignore[import-not-found]
from citation_track.resolver import (  # noqa: E402  # type: ignore[import-not-found]
    build_citation_numbers,
    renumber_marker,
    resolve_change_set,
)


def _three_references():
    """Entries ordered [C, A, B] by sort_key"""
    return [
        ReferenceEntry(id='A', sort_key=2, citation_ids=['c1'], authors=['Adams, J.']),
        ReferenceEntry(id='B', sort_key=3, citation_ids=['c2'], authors=['Brown, K.']),
        ReferenceEntry(id='C', sort_key=1, citation_ids=['c3'], authors=['Clark, L.']),
    ]


def _three_citations():
    return [
        CitationOccurrence('c1', '[1]'),
        CitationOccurrence('c2', '[2]'),
        CitationOccurrence('c3', '[3]'),
    ]


class TestBuildCitationNumbers:
    def test_positions_follow_sort_key(self):
        numbers = build_citation_numbers(_three_references())
        assert numbers == {'c3': 1, 'c1': 2, 'c2': 3}

    def test_equal_sort_keys_keep_input_order(self):
        refs = [
            ReferenceEntry(id='X', sort_key=1, citation_ids=['x']),
            ReferenceEntry(id='Y', sort_key=1, citation_ids=['y']),
        ]
        assert build_citation_numbers(refs) == {'x': 1, 'y': 2}

    def test_entry_with_several_citations(self):
        refs = [ReferenceEntry(id='A', sort_key=1, citation_ids=['c1', 'c2'])]
        assert build_citation_numbers(refs) == {'c1': 1, 'c2': 1}


class TestRenumberMarker:
    def test_bracketed(self):
        assert renumber_marker('[3]', 1) == '[1]'

    def test_only_first_integer_is_replaced(self):
        assert renumber_marker('[1, 2]', 3) == '[3, 2]'

    def test_multi_digit(self):
        assert renumber_marker('(12)', 4) == '(4)'

    def test_no_integer_unchanged(self):
        assert renumber_marker('(Smith et al.)', 2) == '(Smith et al.)'


class TestResolveChangeSet:
    def test_reordered_references_renumber_all_markers(self):
        """Entries ordered [C, A, B]: C was 3, becomes 1"""
        change_set = resolve_change_set(_three_citations(), _three_references())

        assert change_set.renumberings == {'[1]': '[2]', '[2]': '[3]', '[3]': '[1]'}
        assert change_set.orphans == []
        assert change_set.collisions == []

    def test_removed_reference_orphans_its_marker(self):
        refs = _three_references()
        citations = _three_citations() + [CitationOccurrence('c4', '[4]')]

        change_set = resolve_change_set(citations, refs)

        assert change_set.orphans == ['[4]']
        assert '[4]' not in change_set.renumberings

    def test_unchanged_numbers_produce_no_edit(self):
        refs = [
            ReferenceEntry(id='A', sort_key=1, citation_ids=['c1']),
            ReferenceEntry(id='B', sort_key=2, citation_ids=['c2']),
        ]
        citations = [CitationOccurrence('c1', '[1]'), CitationOccurrence('c2', '[2]')]

        change_set = resolve_change_set(citations, refs)

        assert change_set.is_empty()

    def test_orphans_are_deduplicated(self):
        citations = [CitationOccurrence('x1', '[7]'), CitationOccurrence('x2', '[7]')]

        change_set = resolve_change_set(citations, [])

        assert change_set.orphans == ['[7]']

    def test_empty_and_non_numeric_markers_are_skipped(self):
        citations = [
            CitationOccurrence('x1', ''),
            CitationOccurrence('x2', '(Smith et al.)'),
        ]

        change_set = resolve_change_set(citations, [])

        assert change_set.is_empty()

    def test_surrounding_whitespace_is_trimmed(self):
        citations = [CitationOccurrence('c1', ' [1]\t'), CitationOccurrence('gone', '  [9] '),
                     CitationOccurrence('blank', '   ')]

        change_set = resolve_change_set(citations, _three_references())

        assert change_set.renumberings == {'[1]': '[2]'}
        assert change_set.orphans == ['[9]']

    def test_renumbering_wins_over_orphan_for_same_text(self):
        refs = _three_references()
        citations = _three_citations() + [CitationOccurrence('gone', '[1]')]

        change_set = resolve_change_set(citations, refs)

        assert change_set.renumberings['[1]'] == '[2]'
        assert '[1]' not in change_set.orphans
        assert change_set.collisions == ['[1]']

    def test_first_renumber_target_wins(self):
        refs = _three_references()
        # Same literal "[1]" cited for entries that now sit at 2 (A) and 3 (B)
        citations = [CitationOccurrence('c1', '[1]'), CitationOccurrence('c2', '[1]')]

        change_set = resolve_change_set(citations, refs)

        assert change_set.renumberings == {'[1]': '[2]'}
        assert change_set.collisions == ['[1]']

    def test_renumberings_and_orphans_are_disjoint(self):
        refs = _three_references()
        citations = _three_citations() + [
            CitationOccurrence('gone1', '[2]'),
            CitationOccurrence('gone2', '[5]'),
            CitationOccurrence('gone3', '[3]'),
        ]

        change_set = resolve_change_set(citations, refs)

        assert set(change_set.renumberings) & set(change_set.orphans) == set()
        assert change_set.orphans == ['[5]']

    def test_verbose_reports_summary(self, capsys):
        resolve_change_set(_three_citations(), _three_references(), verbose=True)

        out = capsys.readouterr().out
        assert '[Resolver] 3 renumbered, 0 orphaned, 0 collisions' in out

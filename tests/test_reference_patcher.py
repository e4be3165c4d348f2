#!/usr/bin/env python3
"""
ABOUTME: Unit tests for the reference-list patcher and its matchers
"""

from _citation_track_helpers import (  # type: ignore[import-not-found]
    AUTHOR,
    DATE,
    accepted_text,
    deleted_texts,
    heading_para,
    para,
    references_region,
    rejected_text,
    revision_ids,
    run,
    text_para,
)
from citation_track.common import ReferenceEntry  # type: ignore[import-not-found]
from citation_track.reference_patcher import (  # type: ignore[import-not-found]
    FamilyNameMatcher,
    LeadingFamilyNameMatcher,
    ReferenceListPatcher,
    is_non_reference,
    paragraph_text,
    patch_references,
)
from citation_track.verify import tag_balance  # type: ignore[import-not-found]


ADAMS = ReferenceEntry(id='A', sort_key=1, citation_ids=['c1'], authors=['Adams, J.'])
BROWN = ReferenceEntry(id='B', sort_key=2, citation_ids=['c2'], authors=['Brown K'])


def _patch(xml, references, start=1, **kwargs):
    return ReferenceListPatcher(**kwargs).patch(xml, references, AUTHOR, DATE, start)


class TestMatchers:
    def test_family_name_before_comma(self):
        assert FamilyNameMatcher().family_name(ADAMS) == 'Adams'

    def test_family_name_before_space(self):
        assert FamilyNameMatcher().family_name(BROWN) == 'Brown'

    def test_no_authors(self):
        assert FamilyNameMatcher().family_name(ReferenceEntry(id='X')) is None

    def test_substring_anywhere(self):
        matcher = FamilyNameMatcher()
        assert matcher.match('1. Zed Q, Adams J. Title.', [ADAMS, BROWN]) == 'A'

    def test_first_candidate_wins(self):
        matcher = FamilyNameMatcher()
        assert matcher.match('Brown K, Adams J. Joint work.', [ADAMS, BROWN]) == 'A'

    def test_strict_requires_leading_name(self):
        matcher = LeadingFamilyNameMatcher()
        assert matcher.match('1. Zed Q, Adams J. Title.', [ADAMS]) is None
        assert matcher.match('1. Adams J. Title.', [ADAMS]) == 'A'
        assert matcher.match('[2] Adams J. Title.', [ADAMS]) == 'A'


class TestParagraphText:
    def test_joins_runs_and_unescapes(self):
        xml = para(run('Smith & '), run('Jones'))
        assert paragraph_text(xml) == 'Smith & Jones'

    def test_ignores_deleted_text(self):
        xml = para('<w:del w:id="1"><w:r><w:delText>gone</w:delText></w:r></w:del>', run('kept'))
        assert paragraph_text(xml) == 'kept'


class TestReferenceListPatcher:
    def test_unmatched_entry_is_deleted_after_matched(self):
        """One heading, two entries, one author no longer referenced"""
        xml = references_region('1. Adams J. Title one.', '2. Zed Q. Gone paper.')

        result = _patch(xml, [ADAMS])

        assert result.deleted == 1
        assert result.reordered == 0
        assert not result.failed
        assert deleted_texts(result.xml) == ['2. Zed Q. Gone paper.']
        assert result.xml.index('Adams') < result.xml.index('<w:del ')
        assert accepted_text(result.xml) == 'References1. Adams J. Title one.'
        assert result.next_revision_id == 2

    def test_entries_reordered_and_relabelled(self):
        xml = references_region('1. Brown K. Second.', '2. Adams J. First.')

        result = _patch(xml, [BROWN, ADAMS])

        assert result.reordered == 2
        assert result.deleted == 0
        assert accepted_text(result.xml) == 'References1. Adams J. First.2. Brown K. Second.'
        assert revision_ids(result.xml) == []
        assert result.next_revision_id == 1

    def test_bracket_label_style_preserved(self):
        xml = references_region('[1] Brown K. Second.', '[2] Adams J. First.')

        result = _patch(xml, [ADAMS, BROWN])

        assert accepted_text(result.xml) == 'References[1] Adams J. First.[2] Brown K. Second.'

    def test_unlabelled_entries_only_move(self):
        xml = references_region('Brown K. Second.', 'Adams J. First.')

        result = _patch(xml, [ADAMS, BROWN])

        assert accepted_text(result.xml) == 'ReferencesAdams J. First.Brown K. Second.'

    def test_heading_is_never_modified(self):
        xml = references_region('1. Zed Q. Gone.', heading='Bibliography')

        result = _patch(xml, [ADAMS])

        assert result.xml.startswith(heading_para('Bibliography'))

    def test_heading_only_region_unchanged(self):
        xml = heading_para()

        result = _patch(xml, [ADAMS])

        assert result.xml == xml
        assert result.reordered == 0
        assert result.deleted == 0

    def test_blank_paragraphs_kept(self):
        blank = '<w:p><w:pPr><w:spacing w:after="0"/></w:pPr></w:p>'
        xml = heading_para() + text_para('1. Adams J. First.') + blank + '<w:p/>'

        result = _patch(xml, [ADAMS])

        assert result.deleted == 0
        assert blank in result.xml
        assert '<w:p/>' in result.xml

    def test_each_deleted_run_gets_own_id(self):
        gone = para(run('2. Zed Q. '), run('Gone paper.', '<w:rPr><w:i/></w:rPr>'))
        xml = heading_para() + text_para('1. Adams J. First.') + gone

        result = _patch(xml, [ADAMS], start=40)

        assert revision_ids(result.xml) == [40, 41]
        assert result.next_revision_id == 42
        assert '<w:rPr><w:i/></w:rPr><w:delText' in result.xml
        assert rejected_text(result.xml).endswith('2. Zed Q. Gone paper.')

    def test_already_deleted_runs_left_alone(self):
        existing = f'<w:del w:id="7" w:author="Other" w:date="{DATE}"><w:r><w:delText>old</w:delText></w:r></w:del>'
        gone = para(existing, run('Zed Q. Gone.'))
        xml = heading_para() + text_para('1. Adams J. First.') + gone

        result = _patch(xml, [ADAMS], start=8)

        assert result.xml.count(existing) == 1
        assert revision_ids(result.xml) == [7, 8]

    def test_content_after_entry_block_preserved(self):
        table = ('<w:tbl><w:tr><w:tc>' + text_para('Zed table cell') +
                 '</w:tc></w:tr></w:tbl>')
        xml = references_region('1. Zed Q. Gone.', '2. Adams J. First.') + table

        result = _patch(xml, [ADAMS])

        assert result.xml.endswith(table)
        assert result.deleted == 1

    def test_tag_balance_preserved(self):
        xml = references_region('1. Brown K. Second.', '2. Zed Q. Gone.', '3. Adams J. First.')

        result = _patch(xml, [ADAMS, BROWN])

        assert tag_balance(result.xml) == tag_balance(xml)

    def test_accept_changes_drops_unmatched(self):
        xml = references_region('1. Zed Q. Gone.', '2. Adams J. First.')

        result = _patch(xml, [ADAMS], accept_changes=True)

        assert result.deleted == 1
        assert '<w:del ' not in result.xml
        assert accepted_text(result.xml) == 'References1. Adams J. First.'

    def test_strict_matching(self):
        xml = references_region('1. Zed Q, Adams J. Joint.')

        loose = patch_references(xml, [ADAMS], AUTHOR, DATE, 1)
        strict = patch_references(xml, [ADAMS], AUTHOR, DATE, 1, strict_match=True)

        assert loose.deleted == 0
        assert strict.deleted == 1


class TestFailSafe:
    class _BrokenMatcher:
        def match(self, text, candidates):
            raise RuntimeError('matcher exploded')

    def test_failure_returns_original(self, capsys):
        xml = references_region('1. Adams J. First.')

        result = _patch(xml, [ADAMS], start=12, matcher=self._BrokenMatcher())

        assert result.failed
        assert result.xml == xml
        assert result.reordered == 0
        assert result.deleted == 0
        assert result.next_revision_id == 12
        assert 'matcher exploded' in result.error_message
        assert '[References]' in capsys.readouterr().err


class TestEntryBlock:
    def test_markup_between_entries_stays_in_block(self):
        bookmark_end = '<w:bookmarkEnd w:id="0"/>'
        xml = (heading_para() + text_para('1. Brown K. Second.') + bookmark_end +
               text_para('2. Adams J. First.'))

        result = _patch(xml, [ADAMS, BROWN])

        assert result.reordered == 2
        assert result.deleted == 0
        assert accepted_text(result.xml) == 'References1. Adams J. First.2. Brown K. Second.'
        # paragraphs move, the bookmark end keeps its slot between them
        assert result.xml.index('Adams') < result.xml.index(bookmark_end) < result.xml.index('Brown')

    def test_permission_and_comment_ends_do_not_stop_block(self):
        xml = (heading_para() + text_para('1. Zed Q. Gone.') + '<w:permEnd w:id="3"/>' +
               text_para('2. Adams J. First.') + '<w:commentRangeEnd w:id="4"/>' +
               text_para('3. Brown K. Second.'))

        result = _patch(xml, [ADAMS, BROWN])

        assert result.deleted == 1
        assert accepted_text(result.xml) == 'References1. Adams J. First.2. Brown K. Second.'
        assert tag_balance(result.xml) == tag_balance(xml)

    def test_back_matter_ends_block(self):
        xml = (references_region('1. Adams J. First.') +
               text_para('Correspondence: jane@example.org') +
               text_para('Acknowledgments: We thank the reviewers.'))

        result = _patch(xml, [ADAMS])

        assert result.deleted == 0
        assert deleted_texts(result.xml) == []
        assert result.xml.endswith(text_para('Correspondence: jane@example.org') +
                                   text_para('Acknowledgments: We thank the reviewers.'))

    def test_entries_after_back_matter_are_kept(self):
        xml = (references_region('1. Adams J. First.') + text_para('Funding') +
               text_para('Zed Q. Appendix note.'))

        result = _patch(xml, [ADAMS])

        assert result.deleted == 0
        assert 'Zed Q. Appendix note.' in accepted_text(result.xml)

    def test_back_matter_word_inside_entry_does_not_stop_block(self):
        xml = references_region('1. Brown K. Funding of research.', '2. Adams J. First.')

        result = _patch(xml, [ADAMS, BROWN])

        assert result.reordered == 2
        assert accepted_text(result.xml) == 'References1. Adams J. First.2. Brown K. Funding of research.'

    def test_content_control_end_stops_block(self):
        xml = ('<w:sdt><w:sdtContent>' + references_region('1. Adams J. First.') +
               '</w:sdtContent></w:sdt>' + text_para('Zed Q. Outside.'))

        result = _patch(xml, [ADAMS])

        assert result.deleted == 0
        assert result.xml == xml

    def test_is_non_reference(self):
        assert is_non_reference('  Correspondence to: J. Smith')
        assert is_non_reference('E-mail: a@b.org')
        assert not is_non_reference('1. Adams J. Conflict of interest in trials.')
        assert not is_non_reference('')


class TestSwaps:
    def test_swapped_pair_reported(self):
        xml = references_region('1. Brown K. Second.', '2. Adams J. First.')

        result = _patch(xml, [ADAMS, BROWN])

        assert result.swapped == [('Adams, J.', 'Brown K')]

    def test_rotation_is_not_a_swap(self):
        clark = ReferenceEntry(id='C', sort_key=3, citation_ids=['c3'], authors=['Clark L'])
        xml = references_region('1. Clark L. Third.', '2. Adams J. First.', '3. Brown K. Second.')

        result = _patch(xml, [ADAMS, BROWN, clark])

        assert result.reordered == 3
        assert result.swapped == []

    def test_unlabelled_entries_use_block_position(self):
        xml = references_region('Brown K. Second.', 'Adams J. First.')

        result = _patch(xml, [ADAMS, BROWN])

        assert result.swapped == [('Adams, J.', 'Brown K')]


class TestDeletedRunMarkup:
    def test_no_namespace_declarations(self):
        xml = references_region('1. Adams J. First.', '2. Zed Q. Gone.')

        result = _patch(xml, [ADAMS])

        assert 'xmlns' not in result.xml

    def test_field_instruction_becomes_deleted_instruction(self):
        field = para(run('2. Zed Q. '), '<w:r><w:instrText xml:space="preserve"> HYPERLINK </w:instrText></w:r>')
        xml = heading_para() + text_para('1. Adams J. First.') + field

        result = _patch(xml, [ADAMS])

        assert '<w:delInstrText xml:space="preserve"> HYPERLINK </w:delInstrText>' in result.xml
        assert '<w:instrText' not in result.xml

#!/usr/bin/env python3
"""
ABOUTME: Applies citation renumbering and reference-list changes to Word documents with track changes
ABOUTME: Reads a JSONL export of citations and references and writes a tracked copy of the source document
"""

import argparse
import hashlib
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from citation_track import (
    AssemblyResult,
    CitationOccurrence,
    DocumentAssembler,
    ReferenceEntry,
    enable_track_revisions,
    resolve_change_set,
)
from citation_track.common import (
    DEFAULT_AUTHOR,
    DOCUMENT_PART,
    SETTINGS_PART,
    format_text_preview,
    revision_timestamp,
)
from docx_package import DocxPackage, get_statistics, validate_docx


def _field(data: Dict, camel: str, snake: str, default=None):
    """Read a field that may be spelled in camelCase or snake_case"""
    if camel in data:
        return data[camel]
    return data.get(snake, default)


class CitationChangeApplier:
    """
    Applies one JSONL change export to its source document.

    Args:
        jsonl_path: Export with a meta line, citation lines and reference lines
        output_path: Target .docx (default: <source stem>_tracked.docx)
        author: w:author for every revision
        accept_changes: Write plain edits instead of tracked revisions
        strict_match: Require reference entries to start with the family name
        highlight: Highlight deleted citations red and inserted ones cyan
        skip_hash: Do not verify meta.source_hash against the source file
        verbose: Print progress
    """

    def __init__(self, jsonl_path: str, output_path: str = None,
                 author: str = DEFAULT_AUTHOR, accept_changes: bool = False,
                 strict_match: bool = False, highlight: bool = False,
                 skip_hash: bool = False, verbose: bool = False):
        self.jsonl_path = Path(jsonl_path)
        self.author = author
        self.accept_changes = accept_changes
        self.strict_match = strict_match
        self.highlight = highlight
        self.skip_hash = skip_hash
        self.verbose = verbose

        self.meta, self.citations, self.references = self._load_jsonl()

        self.source_path = Path(self.meta['source_file'])
        self.output_path = Path(output_path) if output_path else \
            self.source_path.with_stem(self.source_path.stem + '_tracked')

        self.package: Optional[DocxPackage] = None
        self.result: Optional[AssemblyResult] = None

    def _load_jsonl(self) -> Tuple[Dict, List[CitationOccurrence], List[ReferenceEntry]]:
        meta = {}
        citations = []
        references = []

        with open(self.jsonl_path, 'r', encoding='utf-8') as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                kind = data.get('type')

                if kind == 'meta':
                    meta = data
                elif kind == 'citation':
                    citations.append(CitationOccurrence(
                        id=str(data.get('id', '')),
                        raw_text=_field(data, 'rawText', 'raw_text', '') or '',
                    ))
                elif kind == 'reference':
                    if 'id' not in data:
                        raise ValueError(f"Reference at line {line_num} has no 'id'")
                    references.append(ReferenceEntry(
                        id=str(data['id']),
                        sort_key=_field(data, 'sortKey', 'sort_key', 0),
                        citation_ids=[str(c) for c in _field(data, 'citationIds', 'citation_ids', []) or []],
                        authors=list(data.get('authors') or []),
                        title=data.get('title') or '',
                    ))
                else:
                    raise ValueError(f"Unknown record type {kind!r} at line {line_num}")

        if not meta:
            raise ValueError("JSONL file missing meta line")
        if not meta.get('source_file'):
            raise ValueError("Meta line missing 'source_file'")

        return meta, citations, references

    def _verify_hash(self) -> bool:
        """Verify document hash matches expected value"""
        expected_hash = self.meta.get('source_hash', '')
        if not expected_hash:
            if self.verbose:
                print("No source_hash in meta line, skipping integrity check")
            return True

        sha256 = hashlib.sha256()
        with open(self.source_path, 'rb') as f:
            for chunk in iter(lambda: f.read(4096), b""):
                sha256.update(chunk)

        actual_hash = f"sha256:{sha256.hexdigest()}"
        return actual_hash == expected_hash

    def apply(self) -> AssemblyResult:
        """Patch document.xml (and settings.xml) in memory"""
        if not self.skip_hash and not self._verify_hash():
            raise ValueError(
                f"Document hash mismatch\n"
                f"Expected: {self.meta.get('source_hash', 'N/A')}\n"
                f"Document may have been modified. Use --skip-hash to bypass."
            )

        self.package = DocxPackage.open(self.source_path)
        document_xml = self.package.read_xml_part(DOCUMENT_PART)

        change_set = resolve_change_set(self.citations, self.references, verbose=self.verbose)
        assembler = DocumentAssembler(
            self.author,
            accept_changes=self.accept_changes,
            strict_match=self.strict_match,
            highlight=self.highlight,
            verbose=self.verbose,
        )
        self.result = assembler.assemble(
            document_xml, change_set, self.references, timestamp=revision_timestamp()
        )
        self.package.replace_part(DOCUMENT_PART, self.result.xml)

        if not self.accept_changes and self.package.has_part(SETTINGS_PART):
            settings_xml, changed = enable_track_revisions(self.package.read_xml_part(SETTINGS_PART))
            if changed:
                self.package.replace_part(SETTINGS_PART, settings_xml)
            self.result.summary.settings_updated = changed

        return self.result

    def save(self, dry_run: bool = False):
        """Save modified document"""
        if dry_run:
            print(f"[DRY RUN] Would save to: {self.output_path}")
            return

        self.package.save(self.output_path)
        if not validate_docx(self.output_path):
            raise ValueError(f"Saved file is not a readable Word document: {self.output_path}")
        print(f"Saved to: {self.output_path}")
        if self.verbose:
            stats = get_statistics(self.output_path)
            print(f"  {stats['word_count']} words, {stats['paragraph_count']} paragraphs, "
                  f"~{stats['page_count']} pages")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Apply citation renumbering and reference changes to a Word document"
    )
    parser.add_argument('jsonl_file', help='Citation export file (JSONL format)')
    parser.add_argument('-o', '--output', help='Output file path')
    parser.add_argument('--author', default=DEFAULT_AUTHOR,
                        help=f'Author name for track changes (default: {DEFAULT_AUTHOR})')
    parser.add_argument('--accept-changes', action='store_true',
                        help='Apply edits directly instead of as tracked revisions')
    parser.add_argument('--strict-match', action='store_true',
                        help='Match reference entries only when they start with the family name')
    parser.add_argument('--highlight', action='store_true',
                        help='Highlight deleted citations red and inserted citations cyan')
    parser.add_argument('--skip-hash', action='store_true',
                        help='Skip hash verification')
    parser.add_argument('--dry-run', action='store_true',
                        help='Validate only, do not save')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Verbose output')

    args = parser.parse_args()

    try:
        applier = CitationChangeApplier(
            args.jsonl_file,
            output_path=args.output,
            author=args.author,
            accept_changes=args.accept_changes,
            strict_match=args.strict_match,
            highlight=args.highlight,
            skip_hash=args.skip_hash,
            verbose=args.verbose
        )

        print(f"Source file: {applier.source_path}")
        print(f"Output to: {applier.output_path}")
        print(f"Citations: {len(applier.citations)}, references: {len(applier.references)}")
        if args.verbose:
            print("-" * 50)

        summary = applier.apply().summary

        if summary.unmatched:
            print("\nMarkers not found in document:")
            for match in summary.unmatched:
                print(f"  - {format_text_preview(match.old_text)}")

        if summary.references_failed:
            print("\nReference list could not be updated; it was left unchanged")
        elif not summary.references_found:
            print("\nNo references section found; reference list left unchanged")

        print("-" * 50)
        print(f"Completed: {len(summary.changed)} renumbered, {len(summary.orphaned)} orphaned, "
              f"{len(summary.unmatched)} not found ({summary.total_citations} markers edited)")
        print(f"References: {summary.references_reordered} reordered, "
              f"{summary.references_deleted} deleted")
        for name_a, name_b in summary.references_swapped:
            print(f"  Swapped: {name_a} <-> {name_b}")

        applier.save(dry_run=args.dry_run)
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())

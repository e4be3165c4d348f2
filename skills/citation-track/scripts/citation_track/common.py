#!/usr/bin/env python3
"""
ABOUTME: Shared constants, regex patterns and data classes for citation track changes
ABOUTME: Used by the resolver, both patchers, the assembler and the CLI
"""

import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple


# ============================================================
# Constants
# ============================================================

NS = {
    'w': 'http://schemas.openxmlformats.org/wordprocessingml/2006/main',
    'w14': 'http://schemas.microsoft.com/office/word/2010/wordml',
    'w15': 'http://schemas.microsoft.com/office/word/2012/wordml',
    'r': 'http://schemas.openxmlformats.org/officeDocument/2006/relationships',
    'mc': 'http://schemas.openxmlformats.org/markup-compatibility/2006',
    'wp': 'http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing',
    'a': 'http://schemas.openxmlformats.org/drawingml/2006/main',
    'pic': 'http://schemas.openxmlformats.org/drawingml/2006/picture',
    'm': 'http://schemas.openxmlformats.org/officeDocument/2006/math',
    'v': 'urn:schemas-microsoft-com:vml',
    'o': 'urn:schemas-microsoft-com:office:office',
}

DOCUMENT_PART = 'word/document.xml'
SETTINGS_PART = 'word/settings.xml'
CONTENT_TYPES_PART = '[Content_Types].xml'

DEFAULT_AUTHOR = 'Citation Tool'

# Reference section headings, matched case-insensitively against a whole <w:t>
REFERENCE_HEADINGS = ('References', 'Bibliography', 'Works Cited', 'Reference List')

# Opening words of back matter that follows a reference list; the entry block
# ends at the first paragraph starting with one of these (case-insensitive)
NON_REFERENCE_MARKERS = (
    'correspondence', 'received:', 'accepted:', 'conflict of interest',
    'acknowledgment', 'acknowledgement', 'funding', 'orcid', 'e-mail:',
    'email:', 'address:', 'affiliation', 'author contributions',
)

# Highlight colours for revision runs when highlighting is enabled
DELETION_HIGHLIGHT = 'red'
INSERTION_HIGHLIGHT = 'cyan'

# Tags whose open/close counts must stay balanced through patching
BALANCED_TAGS = ('w:r', 'w:t', 'w:p', 'w:del', 'w:ins')

# Archive limits (bytes / entries), overridable from the environment
MAX_DOCX_SIZE = int(os.getenv('CITATION_TRACK_MAX_DOCX_SIZE', str(50 * 1024 * 1024)))
MAX_XML_SIZE = int(os.getenv('CITATION_TRACK_MAX_XML_SIZE', str(10 * 1024 * 1024)))
MAX_ZIP_ENTRIES = 1000
MACRO_PARTS = ('word/vbaProject.bin', 'vbaProject.bin', 'word/vbaData.xml')

# ============================================================
# Regex Patterns
# ============================================================

# First integer run in a citation marker: "[12]" -> "12", "(Smith, 2020)" -> "2020"
ORDINAL_PATTERN = re.compile(r'\d+')

# Complete run element: group 1 = opening tag, group 2 = content.
# The lookbehind excludes self-closing <w:r/>; "\s" after the name excludes <w:rPr>.
RUN_PATTERN = re.compile(r'(<w:r(?:\s[^>]*)?(?<!/)>)(.*?)</w:r>', re.DOTALL)

# Text element inside a run: group 1 = opening tag, group 2 = escaped text
TEXT_PATTERN = re.compile(r'(<w:t(?:\s[^>]*)?(?<!/)>)([^<]*)</w:t>')

# Paragraph element (full or self-closing), never <w:pPr> / <w:proofErr>
PARAGRAPH_PATTERN = re.compile(
    r'<w:p(?:\s[^>]*)?(?<!/)>.*?</w:p>|<w:p(?:\s[^>]*)?/>',
    re.DOTALL
)

# Start token of a paragraph
PARAGRAPH_START_PATTERN = re.compile(r'<w:p(?=[\s>/])')

# Any w:id attribute (revisions, bookmarks and comments share the id space)
REVISION_ID_PATTERN = re.compile(r'\bw:id="(\d+)"')

# Visible reference label at the start of the first text run: "1. ", "1 ", "[1]"
LABEL_PATTERN = re.compile(r'^(\s*\[?)(\d+)(?=\]|\.|\s)')

# Existing revision containers; runs inside them are never edited again
REVISION_SPAN_PATTERN = re.compile(
    r'<w:(ins|del|moveFrom|moveTo)(?:\s[^>]*)?(?<!/)>.*?</w:\1>',
    re.DOTALL
)

# Run content holding another run (text boxes, alternate content)
NESTED_RUN_PATTERN = re.compile(r'<w:r[\s>]')

# ============================================================
# Exceptions
# ============================================================

class InvalidDocxError(ValueError):
    """The archive is not an acceptable DOCX container."""


class XmlBalanceError(ValueError):
    """Patched XML violates structural balance; the patcher has a bug."""

# ============================================================
# Data Classes
# ============================================================

@dataclass
class CitationOccurrence:
    """One in-text citation marker as currently rendered in the document"""
    id: str
    raw_text: str


@dataclass
class ReferenceEntry:
    """One bibliography entry; position in sort_key order is its final number"""
    id: str
    sort_key: Any = 0
    citation_ids: List[str] = field(default_factory=list)
    authors: List[str] = field(default_factory=list)
    title: str = ''


@dataclass
class ChangeSet:
    """Resolved edit plan: renumberings and orphans never share a marker text"""
    renumberings: Dict[str, str] = field(default_factory=dict)
    orphans: List[str] = field(default_factory=list)
    collisions: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.renumberings and not self.orphans


@dataclass
class EditMatch:
    """Match count for one edit; new_text is None for orphan deletions"""
    old_text: str
    new_text: Optional[str]
    count: int = 0

    @property
    def is_orphan(self) -> bool:
        return self.new_text is None


@dataclass
class BodyPatchResult:
    xml: str
    next_revision_id: int
    matches: List[EditMatch] = field(default_factory=list)


@dataclass
class ReferencePatchResult:
    xml: str
    reordered: int
    deleted: int
    next_revision_id: int
    failed: bool = False
    error_message: Optional[str] = None
    # Pairs of entries (first author or "Ref N") that traded places
    swapped: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class PatchSummary:
    """Caller-visible outcome of one document patch"""
    changed: List[EditMatch] = field(default_factory=list)
    orphaned: List[EditMatch] = field(default_factory=list)
    unmatched: List[EditMatch] = field(default_factory=list)
    total_citations: int = 0
    references_found: bool = False
    references_reordered: int = 0
    references_deleted: int = 0
    references_failed: bool = False
    references_swapped: List[Tuple[str, str]] = field(default_factory=list)
    settings_updated: bool = False


@dataclass
class AssemblyResult:
    xml: str
    summary: PatchSummary
    next_revision_id: int

# ============================================================
# Helper Functions
# ============================================================

def revision_timestamp() -> str:
    """ISO-8601 UTC timestamp shared by all revision markers of one operation"""
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def format_text_preview(text: str, max_len: int = 30) -> str:
    """
    Format text for log output: remove newlines and truncate.

    Args:
        text: Text to format
        max_len: Maximum length before truncation

    Returns:
        Clean, truncated text with "..." suffix if truncated
    """
    clean = text.replace('\n', ' ').replace('\r', '').replace('\t', ' ')
    while '  ' in clean:
        clean = clean.replace('  ', ' ')
    clean = clean.strip()
    if len(clean) > max_len:
        return clean[:max_len] + "..."
    return clean


def sort_references(references: List[ReferenceEntry]) -> List[ReferenceEntry]:
    """Return references in final order (stable sort on sort_key)"""
    return sorted(references, key=lambda ref: ref.sort_key)

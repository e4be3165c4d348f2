#!/usr/bin/env python3
"""
ABOUTME: DOCX archive access for the citation track-changes scripts
ABOUTME: Validates the ZIP container, reads/replaces XML parts and re-serializes the package
"""

import zipfile
from pathlib import Path
from typing import Dict, List, Optional

from defusedxml import ElementTree as ET
from defusedxml.common import DefusedXmlException
from docx import Document

from citation_track.common import (
    CONTENT_TYPES_PART,
    DOCUMENT_PART,
    MACRO_PARTS,
    MAX_DOCX_SIZE,
    MAX_XML_SIZE,
    MAX_ZIP_ENTRIES,
    InvalidDocxError,
)

WORDS_PER_PAGE = 250
REQUIRED_PARTS = (DOCUMENT_PART, CONTENT_TYPES_PART)


def _check_entry_name(name: str) -> None:
    normalized = name.replace('\\', '/')
    if normalized.startswith('/') or '..' in normalized.split('/'):
        raise InvalidDocxError(f"Unsafe path in archive: {name}")


class DocxPackage:
    """
    In-memory view of a DOCX archive.

    Parts are kept as raw bytes in their original order; replaced parts are
    written back in place when the package is saved.
    """

    def __init__(self, path: Path, entries: List[zipfile.ZipInfo], parts: Dict[str, bytes]):
        self.path = path
        self._entries = entries
        self._parts = parts

    @classmethod
    def open(cls, path) -> 'DocxPackage':
        """
        Open and validate a DOCX file.

        Raises:
            InvalidDocxError: Not a ZIP, too large, missing required parts,
                too many entries, unsafe entry names or macro content
        """
        path = Path(path)
        if not path.is_file():
            raise InvalidDocxError(f"File not found: {path}")
        size = path.stat().st_size
        if size > MAX_DOCX_SIZE:
            raise InvalidDocxError(
                f"File too large: {size} bytes (limit {MAX_DOCX_SIZE} bytes)"
            )

        try:
            with zipfile.ZipFile(path, 'r') as zf:
                entries = zf.infolist()
                if len(entries) > MAX_ZIP_ENTRIES:
                    raise InvalidDocxError(
                        f"Too many archive entries: {len(entries)} (limit {MAX_ZIP_ENTRIES})"
                    )
                names = set()
                for info in entries:
                    _check_entry_name(info.filename)
                    if info.filename in MACRO_PARTS or info.filename.endswith('vbaProject.bin'):
                        raise InvalidDocxError(f"Macro-enabled documents are not supported: {info.filename}")
                    names.add(info.filename)
                missing = [part for part in REQUIRED_PARTS if part not in names]
                if missing:
                    raise InvalidDocxError(f"Not a Word document, missing: {', '.join(missing)}")
                parts = {info.filename: zf.read(info.filename) for info in entries}
        except zipfile.BadZipFile as e:
            raise InvalidDocxError(f"Not a valid DOCX archive: {e}") from e

        return cls(path, entries, parts)

    def has_part(self, name: str) -> bool:
        return name in self._parts

    def read_xml_part(self, name: str) -> Optional[str]:
        """
        Return an XML part as text, or None if the part does not exist.

        Raises:
            InvalidDocxError: Part exceeds the XML size limit, is not UTF-8,
                or declares a DTD / entities
        """
        data = self._parts.get(name)
        if data is None:
            return None
        if len(data) > MAX_XML_SIZE:
            raise InvalidDocxError(
                f"{name} too large: {len(data)} bytes (limit {MAX_XML_SIZE} bytes)"
            )
        try:
            ET.fromstring(data, forbid_dtd=True)
        except DefusedXmlException as e:
            raise InvalidDocxError(f"{name} contains forbidden XML constructs: {e}") from e
        except ET.ParseError as e:
            raise InvalidDocxError(f"{name} is not well-formed XML: {e}") from e
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError as e:
            raise InvalidDocxError(f"{name} is not UTF-8 encoded: {e}") from e

    def replace_part(self, name: str, text: str) -> None:
        if name not in self._parts:
            raise KeyError(f"Part not in package: {name}")
        self._parts[name] = text.encode('utf-8')

    def save(self, output_path) -> Path:
        """Write the package with the original entry order and DEFLATE compression"""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(output_path, 'w', zipfile.ZIP_DEFLATED) as zf:
            for info in self._entries:
                entry = zipfile.ZipInfo(info.filename, date_time=info.date_time)
                entry.compress_type = zipfile.ZIP_DEFLATED
                entry.external_attr = info.external_attr
                zf.writestr(entry, self._parts[info.filename])
        return output_path


def validate_docx(path) -> bool:
    """True when python-docx can load the file as a Word document"""
    try:
        Document(str(path))
        return True
    except Exception:
        return False


def get_statistics(path) -> Dict[str, int]:
    """
    Word, paragraph and estimated page counts of a document.

    Pages are estimated at 250 words per page (minimum 1).
    """
    doc = Document(str(path))
    paragraphs = [p.text for p in doc.paragraphs]
    word_count = sum(len(text.split()) for text in paragraphs)
    return {
        'word_count': word_count,
        'paragraph_count': sum(1 for text in paragraphs if text.strip()),
        'page_count': max(1, -(-word_count // WORDS_PER_PAGE)),
    }

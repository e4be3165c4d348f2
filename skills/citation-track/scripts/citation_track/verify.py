"""
Structural checks run on patched XML before anything is written back.
"""

import re
from collections import Counter
from typing import Dict, Iterable, List

from lxml import etree

from .common import BALANCED_TAGS, XmlBalanceError

_TAG_PATTERNS: Dict[str, re.Pattern] = {}

# Content revisions only; bookmark start/end pairs legitimately share an id
_REVISION_ELEMENT_ID_PATTERN = re.compile(
    r'<w:(?:ins|del|moveFrom|moveTo)\s[^>]*?\bw:id="(\d+)"'
)


def _tag_pattern(tag: str) -> re.Pattern:
    pattern = _TAG_PATTERNS.get(tag)
    if pattern is None:
        escaped = re.escape(tag)
        pattern = re.compile(rf'<(/?){escaped}(?:\s[^>]*?)?(/?)>')
        _TAG_PATTERNS[tag] = pattern
    return pattern


def tag_balance(xml: str, tags: Iterable[str] = BALANCED_TAGS) -> Dict[str, int]:
    """
    Open-minus-close count per tag; self-closing elements count as neither.

    A complete document yields 0 for every tag. A region cut out of a
    document yields the same non-zero values before and after patching.
    """
    balance = {}
    for tag in tags:
        delta = 0
        for m in _tag_pattern(tag).finditer(xml or ''):
            if m.group(2):
                continue
            delta += -1 if m.group(1) else 1
        balance[tag] = delta
    return balance


def assert_balance_preserved(before: str, after: str, label: str) -> None:
    """Raise XmlBalanceError when patching changed the balance of any tag"""
    expected = tag_balance(before)
    actual = tag_balance(after)
    drift = [f"{tag}: {expected[tag]} -> {actual[tag]}"
             for tag in expected if expected[tag] != actual[tag]]
    if drift:
        raise XmlBalanceError(f"{label} tag balance changed ({', '.join(drift)})")


def duplicate_revision_ids(xml: str) -> List[str]:
    counts = Counter(m.group(1) for m in _REVISION_ELEMENT_ID_PATTERN.finditer(xml or ''))
    return sorted((rid for rid, n in counts.items() if n > 1), key=int)


def verify_document_xml(xml: str) -> None:
    """
    Check a complete document.xml: every tracked tag balanced, well-formed,
    and no revision id used twice.

    Raises:
        XmlBalanceError: On the first violated property
    """
    unbalanced = {tag: n for tag, n in tag_balance(xml).items() if n != 0}
    if unbalanced:
        raise XmlBalanceError(f"Unbalanced tags in document.xml: {unbalanced}")

    try:
        etree.fromstring(xml.encode('utf-8'))
    except etree.XMLSyntaxError as e:
        raise XmlBalanceError(f"document.xml is not well-formed: {e}") from e

    duplicates = duplicate_revision_ids(xml)
    if duplicates:
        raise XmlBalanceError(f"Duplicate revision ids: {', '.join(duplicates)}")


__all__ = [
    'tag_balance',
    'assert_balance_preserved',
    'duplicate_revision_ids',
    'verify_document_xml',
]

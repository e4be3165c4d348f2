#!/usr/bin/env python3
"""
ABOUTME: XML text helpers shared by the citation track-changes scripts
ABOUTME: Sanitization, escaping and unescaping of WordprocessingML text content
"""

import html


def sanitize_xml_string(text: str) -> str:
    """
    Remove control characters that are illegal in XML 1.0.

    XML 1.0 allows: #x9 (tab), #xA (LF), #xD (CR), and #x20-#xD7FF, #xE000-#xFFFD, #x10000-#x10FFFF
    This function removes all other control characters (0x00-0x08, 0x0B, 0x0C, 0x0E-0x1F).

    Args:
        text: Text that may contain control characters

    Returns:
        Sanitized text safe for XML. Returns input unchanged if not a non-empty string.
    """
    if not text or not isinstance(text, str):
        return text
    # Keep: \t (0x09), \n (0x0A), \r (0x0D)
    illegal_chars = ''.join(
        chr(c) for c in range(0x20)
        if c not in (0x09, 0x0A, 0x0D)
    )
    return text.translate(str.maketrans('', '', illegal_chars))


def escape_xml(text: str) -> str:
    """Escape XML special characters and remove illegal control characters"""
    text = sanitize_xml_string(text)
    return (text
        .replace('&', '&amp;')
        .replace('<', '&lt;')
        .replace('>', '&gt;')
        .replace('"', '&quot;'))


def unescape_xml(text: str) -> str:
    """
    Decode the character content of a text element back to plain text.

    Handles the five predefined entities and numeric character references
    (e.g. "&#91;" written by some editors for "[").
    """
    if not text or '&' not in text:
        return text
    return html.unescape(text)

"""
Revision id management and w:del / w:ins markup construction.

Each patcher builds its RevisionCounter from the start id it is given and
reports the next unused id back; the assembler hands the body patcher's next
id to the reference-list patcher so ids are never reused within a document.

Regions of document.xml stay plain strings, but every complete <w:r> that is
edited is parsed with lxml, rebuilt as elements and serialized back without
the namespace declarations the enclosing document already carries.
"""

import copy
import re
from typing import Dict, Iterable, Optional

from lxml import etree

from .common import NS, REVISION_ID_PATTERN

XML_SPACE = '{http://www.w3.org/XML/1998/namespace}space'

_NS_DECL_PATTERN = re.compile(r'\sxmlns:(\w+)="([^"]*)"')

# rPr children that the schema places after w:highlight
_AFTER_HIGHLIGHT = {
    'u', 'effect', 'bdr', 'shd', 'fitText', 'vertAlign', 'rtl', 'cs', 'em',
    'lang', 'eastAsianLayout', 'specVanish', 'oMath', 'rPrChange',
}


class RevisionCounter:
    """Monotonic sequence of w:id values for one document patch."""

    def __init__(self, start: int = 1):
        if start < 1:
            raise ValueError(f"Revision ids must be positive, got start={start}")
        self._next = start

    @classmethod
    def after_existing(cls, xml_parts: Iterable[str]) -> 'RevisionCounter':
        """Start after the largest w:id already present in the given XML parts"""
        max_id = 0
        for xml in xml_parts:
            for match in REVISION_ID_PATTERN.finditer(xml or ''):
                max_id = max(max_id, int(match.group(1)))
        return cls(max_id + 1)

    @property
    def value(self) -> int:
        """The id the next call to next() will return"""
        return self._next

    def next(self) -> str:
        """Get next revision id and increment counter"""
        cid = str(self._next)
        self._next += 1
        return cid


# ============================================================
# Parsing / serialization
# ============================================================

def document_namespaces(document_xml: str) -> Dict[str, str]:
    """Prefix -> URI declarations of the root element of a part"""
    root = re.search(r'<(?!\?)[^>]*>', document_xml or '')
    declared = dict(NS)
    if root:
        declared.update(_NS_DECL_PATTERN.findall(root.group(0)))
    return declared


def parse_run(run_xml: str, namespaces: Optional[Dict[str, str]] = None) -> etree._Element:
    """Parse one complete <w:r> fragment, resolving prefixes against namespaces"""
    declared = {**NS, **(namespaces or {})}
    decls = ' '.join(f'xmlns:{prefix}="{uri}"' for prefix, uri in declared.items())
    return etree.fromstring(f'<w:body {decls}>{run_xml}</w:body>')[0]


def serialize(elem: etree._Element, namespaces: Optional[Dict[str, str]] = None) -> str:
    """Serialize elem, dropping root declarations that repeat the document's own"""
    declared = {**NS, **(namespaces or {})}
    xml = etree.tostring(elem, encoding='unicode')
    end = xml.index('>')
    head = _NS_DECL_PATTERN.sub(
        lambda m: '' if declared.get(m.group(1)) == m.group(2) else m.group(0),
        xml[:end]
    )
    return head + xml[end:]


def get_rpr(run_elem: etree._Element) -> Optional[etree._Element]:
    return run_elem.find(f'{{{NS["w"]}}}rPr')


# ============================================================
# Element builders
# ============================================================

def new_run(rpr: Optional[etree._Element], namespaces: Optional[Dict[str, str]] = None,
            template: Optional[etree._Element] = None,
            highlight: Optional[str] = None) -> etree._Element:
    """
    Create an empty w:r carrying a copy of rpr.

    Args:
        rpr: Run properties to copy (None for none)
        namespaces: Declarations placed on the new element
        template: Existing run whose attributes (rsid etc.) are reused
        highlight: Optional w:highlight colour added to the copied properties
    """
    attrib = dict(template.attrib) if template is not None else {}
    run = etree.Element(f'{{{NS["w"]}}}r', attrib=attrib, nsmap={**NS, **(namespaces or {})})
    if rpr is not None:
        run.append(copy.deepcopy(rpr))
    if highlight:
        set_highlight(run, highlight)
    return run


def set_highlight(run: etree._Element, color: str) -> None:
    """Set w:highlight on the run's properties, keeping schema order"""
    rpr = get_rpr(run)
    if rpr is None:
        rpr = etree.SubElement(run, f'{{{NS["w"]}}}rPr')
        run.insert(0, rpr)
    existing = rpr.find(f'{{{NS["w"]}}}highlight')
    if existing is not None:
        rpr.remove(existing)

    highlight = etree.SubElement(rpr, f'{{{NS["w"]}}}highlight')
    highlight.set(f'{{{NS["w"]}}}val', color)
    for idx, child in enumerate(rpr):
        if child is highlight:
            break
        if isinstance(child.tag, str) and etree.QName(child).localname in _AFTER_HIGHLIGHT:
            rpr.insert(idx, highlight)
            break


def append_text(run: etree._Element, text: str, tag: str = 't') -> None:
    """Append <w:t> (or <w:delText>) with preserved whitespace; empty text adds nothing"""
    if not text:
        return
    t_elem = etree.SubElement(run, f'{{{NS["w"]}}}{tag}')
    t_elem.set(XML_SPACE, 'preserve')
    t_elem.text = text


def revision_element(tag: str, change_id: str, author: str, date: str,
                     namespaces: Optional[Dict[str, str]] = None) -> etree._Element:
    """Empty <w:del> / <w:ins> with id, author and date"""
    elem = etree.Element(f'{{{NS["w"]}}}{tag}', nsmap={**NS, **(namespaces or {})})
    elem.set(f'{{{NS["w"]}}}id', change_id)
    elem.set(f'{{{NS["w"]}}}author', author)
    elem.set(f'{{{NS["w"]}}}date', date)
    return elem


def build_del_run(text: str, rpr: Optional[etree._Element], change_id: str, author: str,
                  date: str, namespaces: Optional[Dict[str, str]] = None,
                  highlight: Optional[str] = None) -> etree._Element:
    """<w:del> wrapping one run whose text is carried in <w:delText>"""
    del_elem = revision_element('del', change_id, author, date, namespaces)
    run = new_run(rpr, namespaces, highlight=highlight)
    append_text(run, text, 'delText')
    del_elem.append(run)
    return del_elem


def build_ins_run(text: str, rpr: Optional[etree._Element], change_id: str, author: str,
                  date: str, namespaces: Optional[Dict[str, str]] = None,
                  highlight: Optional[str] = None) -> etree._Element:
    """<w:ins> wrapping one run with the inserted text"""
    ins_elem = revision_element('ins', change_id, author, date, namespaces)
    run = new_run(rpr, namespaces, highlight=highlight)
    append_text(run, text)
    ins_elem.append(run)
    return ins_elem


def to_deleted_text(run_elem: etree._Element) -> etree._Element:
    """Rename the run's <w:t> / <w:instrText> children to their deleted forms in place"""
    for t_elem in run_elem.findall(f'{{{NS["w"]}}}t'):
        t_elem.tag = f'{{{NS["w"]}}}delText'
    for instr in run_elem.findall(f'{{{NS["w"]}}}instrText'):
        instr.tag = f'{{{NS["w"]}}}delInstrText'
    return run_elem


def wrap_run_in_del(run_xml: str, change_id: str, author: str, date: str,
                    namespaces: Optional[Dict[str, str]] = None) -> str:
    """Wrap a complete <w:r>...</w:r> in a <w:del> element, keeping everything but text tags"""
    run_elem = to_deleted_text(parse_run(run_xml, namespaces))
    del_elem = revision_element('del', change_id, author, date, namespaces)
    del_elem.append(run_elem)
    return serialize(del_elem, namespaces)

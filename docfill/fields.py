import logging
import re
from typing import Callable, Mapping, Optional

from .archive import Archive
from .xmlutil import escape_text, escape_xml, unescape_xml

logger = logging.getLogger(__name__)

_QUOTE = r'(?:&quot;|")?'
_TEXT_NODE_RE = re.compile(r"(<w:t(?:\s[^>]*)?>)[^<]*(</w:t>)")


def _fld_char(kind: str) -> str:
    return r'<w:fldChar\b[^>]*w:fldCharType="%s"[^>]*/>' % kind


def _not_followed_by(marker: str) -> str:
    return r"(?:(?!" + marker + r")[\s\S])*?"


def build_field_patterns(names):
    """Compile the simple- and complex-field patterns for ``names``.

    One alternation covers every name so each part is scanned once per
    field form, whatever the number of properties.
    """
    alternation = "|".join(
        re.escape(escape_text(n)) for n in sorted(names, key=len, reverse=True)
    )
    simple = re.compile(
        r'(<w:fldSimple\b[^>]*\bw:instr="[^"]*DOCPROPERTY\s+(?:&quot;)?\s*)'
        r"(" + alternation + r")"
        r'(?=\s|&quot;|")'
        r'(\s*(?:&quot;)?[^"]*"[^>]*>\s*<w:r\b[^>]*>\s*'
        r"(?:<w:rPr\s*/>\s*|<w:rPr>[\s\S]*?</w:rPr>\s*)?"
        r"<w:t(?:\s[^>]*)?>)"
        r"[^<]*"
        r"(</w:t>\s*</w:r>\s*</w:fldSimple>)",
        re.IGNORECASE,
    )
    complex_ = re.compile(
        r"(" + _fld_char("begin")
        + _not_followed_by(_fld_char("begin"))
        + r"<w:instrText\b[^>]*>\s*DOCPROPERTY\s+" + _QUOTE + r"\s*)"
        r"(" + alternation + r")"
        r'(?=\s|&quot;|"|<)'
        r"(\s*" + _QUOTE + r"[^<]*</w:instrText>"
        + _not_followed_by(_fld_char("(?:begin|end)"))
        + _fld_char("separate") + r")"
        r"([\s\S]*?)"
        r"(" + _fld_char("end") + r")",
        re.IGNORECASE,
    )
    return simple, complex_


class _ValueLookup:
    def __init__(self, properties: Mapping[str, str]):
        self._exact = dict(properties)
        self._folded = {k.casefold(): v for k, v in properties.items()}

    def get(self, matched: str) -> Optional[str]:
        name = unescape_xml(matched)
        if name in self._exact:
            return self._exact[name]
        return self._folded.get(name.casefold())


def rewrite_field_codes(xml: str, properties: Mapping[str, str], patterns=None):
    """Rewrite cached DOCPROPERTY results in one part.

    Returns ``(xml, count)``. Only the display text of matched fields changes.
    """
    if not properties:
        return xml, 0
    simple, complex_ = patterns or build_field_patterns(properties)
    lookup = _ValueLookup(properties)
    count = 0

    def replace_simple(m):
        nonlocal count
        value = lookup.get(m.group(2))
        if value is None:
            return m.group(0)
        count += 1
        return m.group(1) + m.group(2) + m.group(3) + escape_xml(value) + m.group(4)

    def replace_complex(m):
        nonlocal count
        value = lookup.get(m.group(2))
        if value is None:
            return m.group(0)
        count += 1
        escaped = escape_xml(value)
        content = _TEXT_NODE_RE.sub(lambda t: t.group(1) + escaped + t.group(2), m.group(4))
        return m.group(1) + m.group(2) + m.group(3) + content + m.group(5)

    xml = simple.sub(replace_simple, xml)
    xml = complex_.sub(replace_complex, xml)
    return xml, count


def update_document_fields(
    archive: Archive,
    properties: Mapping[str, str],
    on_progress: Optional[Callable[[float], None]] = None,
) -> int:
    """Sync DOCPROPERTY fields in the body, headers and footers with ``properties``."""
    if not properties:
        return 0

    patterns = build_field_patterns(properties)
    parts = archive.document_parts()
    total = 0
    for index, part in enumerate(parts, start=1):
        xml = archive.read_text(part)
        if xml is not None:
            new_xml, count = rewrite_field_codes(xml, properties, patterns)
            if count:
                archive.write_text(part, new_xml)
                logger.debug("%s: rewrote %d DOCPROPERTY field(s)", part, count)
            total += count
        if on_progress:
            on_progress(index / len(parts) * 100)
    return total

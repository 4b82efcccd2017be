"""
Merge ``{{name}}`` markers that the word processor split over several runs.

Word closes a run and opens a new one mid-marker whenever revision or
proofing metadata changes, e.g. ``<w:t>{{na</w:t></w:r><w:r><w:t>me}}</w:t>``.
The renderer works on raw markup, so the halves have to be joined back into
one text node before rendering. The first run's properties win; the markup
between the two text nodes is dropped.

All functions here are pure ``str -> str`` transforms over one part and are
idempotent.
"""
import logging
import re
from typing import Iterable, List

from .xmlutil import escape_text

logger = logging.getLogger(__name__)

# end of one text node up to the start of the next one in the following run
RUN_BOUNDARY = (
    r"</w:t>\s*</w:r>\s*"
    r"(?:<w:(?:proofErr|bookmarkStart|bookmarkEnd|lastRenderedPageBreak)\b[^>]*/>\s*)*"
    r"<w:r(?:\s[^>]*)?>\s*"
    r"(?:<w:rPr/>\s*|<w:rPr>(?:(?!</w:rPr>)[\s\S])*</w:rPr>\s*)?"
    r"<w:t(?:\s[^>]*)?>"
)

DELIMITERS = (("{", "}"), ("{{", "}}"))


def _generic_pattern(open_: str, close: str) -> "re.Pattern[str]":
    o, c = re.escape(open_), re.escape(close)
    # an unterminated opener at the end of a text node, joined only when the
    # closer shows up later in the same paragraph
    return re.compile(
        "(" + o + "[^" + re.escape(close[0]) + "<]*)"
        + RUN_BOUNDARY
        + r"(?=(?:(?!</w:p>)[\s\S])*?" + c + ")"
    )


_GENERIC_PATTERNS = [_generic_pattern(o, c) for o, c in DELIMITERS]


def merge_generic(xml: str) -> str:
    while True:
        total = 0
        for pattern in _GENERIC_PATTERNS:
            xml, n = pattern.subn(lambda m: m.group(1), xml)
            total += n
        if not total:
            return xml


def _paragraph_start(xml: str, pos: int) -> int:
    return max(xml.rfind("<w:p>", 0, pos), xml.rfind("<w:p ", 0, pos), 0)


def inside_open_marker(xml: str, pos: int) -> bool:
    """True when an unclosed ``{{`` precedes ``pos`` in the same paragraph."""
    before = xml[_paragraph_start(xml, pos):pos]
    return before.rfind("{{") > before.rfind("}}")


def merge_targeted(xml: str, names: Iterable[str]) -> str:
    """Join ``head`` and ``tail`` of each known name across a run boundary.

    Catches splits with no brace at the split point, which ``merge_generic``
    cannot see. Only splits inside an open ``{{`` marker are joined.
    """
    for name in names:
        escaped = escape_text(name)
        for i in range(1, len(escaped)):
            head, tail = escaped[:i], escaped[i:]
            if head + "</w:t>" not in xml:
                continue
            pattern = re.compile(re.escape(head) + RUN_BOUNDARY + "(?=" + re.escape(tail) + ")")
            merged = 0

            def join(m, head=head):
                nonlocal merged
                if not inside_open_marker(m.string, m.start()):
                    return m.group(0)
                merged += 1
                return head

            xml = pattern.sub(join, xml)
            if merged:
                logger.debug("merged %d split run(s) inside %r at offset %d", merged, name, i)
    return xml


def _fixpoint(xml: str, names: List[str]) -> str:
    while True:
        repaired = merge_targeted(merge_generic(xml), names)
        if repaired == xml:
            return repaired
        xml = repaired


def repair_split_runs(xml: str, names: Iterable[str] = ()) -> str:
    """Generic pass, then a targeted pass for every known name."""
    return _fixpoint(xml, [n for n in names if n])


def _intact_re(name: str) -> "re.Pattern[str]":
    return re.compile(r"\{\{\s*" + re.escape(escape_text(name)) + r"\s*\}\}")


def missing_placeholders(xml: str, names: Iterable[str]) -> List[str]:
    return [n for n in names if not _intact_re(n).search(xml)]


def repair_split_runs_optimized(xml: str, names: Iterable[str]) -> str:
    """Like ``repair_split_runs`` but bounded by what is actually broken.

    Returns the markup untouched when there are no names or every name
    already appears whole; otherwise runs the targeted pass only for names
    still missing after the generic pass.
    """
    names = [n for n in names if n]
    if not names:
        return xml
    missing = missing_placeholders(xml, names)
    if not missing:
        return xml

    xml = merge_generic(xml)
    missing = missing_placeholders(xml, missing)
    if missing:
        logger.debug("targeted split-run repair for %s", missing)
        xml = _fixpoint(xml, missing)
    return xml

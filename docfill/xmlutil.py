import html
import re
from typing import Iterable, List

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
NS = {"w": W_NS}

DOCUMENT_PART = "word/document.xml"
CUSTOM_PROPS_PART = "docProps/custom.xml"

_HEADER_FOOTER_RE = re.compile(r"^word/(?:header|footer)\d*\.xml$")

_XML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&apos;"),
)


def escape_xml(text: str) -> str:
    for raw, entity in _XML_ESCAPES:
        text = text.replace(raw, entity)
    return text


def escape_text(text: str) -> str:
    """Escape the way Word writes character data: quotes stay literal."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def unescape_xml(text: str) -> str:
    """Decode named and numeric character references."""
    return html.unescape(text)


def is_header_or_footer(name: str) -> bool:
    return bool(_HEADER_FOOTER_RE.match(name))


def templated_parts(names: Iterable[str]) -> List[str]:
    """Main document first, then headers and footers in archive order."""
    names = list(names)
    parts = [DOCUMENT_PART] if DOCUMENT_PART in names else []
    parts.extend(n for n in names if is_header_or_footer(n))
    return parts

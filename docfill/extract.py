import re
from typing import Iterable, List, Optional

from .archive import Archive
from .backends import DOM_BACKEND, XmlBackend
from .xmlutil import DOCUMENT_PART

PLACEHOLDER_RE = re.compile(r"\{\{([^}]+)\}\}")


def find_placeholders(text: str) -> List[str]:
    """Unique, trimmed marker names in first-seen order."""
    seen = {}
    for m in PLACEHOLDER_RE.finditer(text):
        name = m.group(1).strip()
        if name:
            seen.setdefault(name, None)
    return list(seen)


def extract_placeholders(
    archive: Archive,
    backend: XmlBackend = DOM_BACKEND,
    parts: Optional[Iterable[str]] = None,
) -> List[str]:
    """Placeholder names visible in the document body, headers and footers.

    Text is reconstructed per part by joining every ``w:t`` in document order,
    so markers split over several runs are still found. Returns ``[]`` when
    the archive has no main document part.
    """
    if not archive.has(DOCUMENT_PART):
        return []

    names = {}
    for part in parts if parts is not None else archive.document_parts():
        xml = archive.read_text(part)
        if xml is None:
            continue
        for name in find_placeholders(backend.visible_text(xml, part)):
            names.setdefault(name, None)
    return list(names)

import logging
import re
from typing import Dict, Mapping

from lxml import etree

from .archive import Archive
from .backends import CUSTOM_NS, DOM_BACKEND, VT_NS, XmlBackend
from .errors import PropertyWriteError
from .xmlutil import CUSTOM_PROPS_PART, escape_xml

logger = logging.getLogger(__name__)

FMTID = "{D5CDD505-2E9C-101B-9397-08002B2CF9AE}"
FIRST_PID = 2

CONTENT_TYPES_PART = "[Content_Types].xml"
PACKAGE_RELS_PART = "_rels/.rels"
CUSTOM_PROPS_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.custom-properties+xml"
CUSTOM_PROPS_REL_TYPE = (
    "http://schemas.openxmlformats.org/officeDocument/2006/relationships/custom-properties"
)

_REL_ID_RE = re.compile(r'\bId="rId(\d+)"')


def read_custom_properties(archive: Archive, backend: XmlBackend = DOM_BACKEND) -> Dict[str, str]:
    xml = archive.read_text(CUSTOM_PROPS_PART)
    if xml is None:
        return {}
    return backend.read_properties(xml, CUSTOM_PROPS_PART)


def build_custom_properties_xml(properties: Mapping[str, str]) -> str:
    lines = [
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>',
        f'<Properties xmlns="{CUSTOM_NS}" xmlns:vt="{VT_NS}">',
    ]
    for pid, (name, value) in enumerate(properties.items(), start=FIRST_PID):
        if not name:
            raise PropertyWriteError("custom property names must not be empty")
        lines.append(f'  <property fmtid="{FMTID}" pid="{pid}" name="{escape_xml(name)}">')
        lines.append(f"    <vt:lpwstr>{escape_xml(value)}</vt:lpwstr>")
        lines.append("  </property>")
    lines.append("</Properties>")
    xml = "\n".join(lines)

    try:
        etree.fromstring(xml.encode("utf-8"))
    except etree.XMLSyntaxError as exc:
        raise PropertyWriteError(f"generated {CUSTOM_PROPS_PART} is not valid XML: {exc}") from exc
    return xml


def write_custom_properties(archive: Archive, properties: Mapping[str, str]) -> None:
    """Replace the whole custom-properties part with ``properties``.

    Values are always written as strings. The part is rebuilt from scratch
    rather than patched so a bad edit cannot leave half-written XML behind.
    """
    xml = build_custom_properties_xml(properties)
    created = not archive.has(CUSTOM_PROPS_PART)
    archive.write_text(CUSTOM_PROPS_PART, xml)
    if created:
        _register_custom_part(archive)
    logger.debug("wrote %d custom properties", len(properties))


def _register_custom_part(archive: Archive) -> None:
    content_types = archive.read_text(CONTENT_TYPES_PART)
    if content_types is not None and f'PartName="/{CUSTOM_PROPS_PART}"' not in content_types:
        override = f'<Override PartName="/{CUSTOM_PROPS_PART}" ContentType="{CUSTOM_PROPS_CONTENT_TYPE}"/>'
        archive.write_text(CONTENT_TYPES_PART, content_types.replace("</Types>", override + "</Types>"))

    rels = archive.read_text(PACKAGE_RELS_PART)
    if rels is not None and CUSTOM_PROPS_REL_TYPE not in rels:
        used = [int(n) for n in _REL_ID_RE.findall(rels)]
        rel_id = f"rId{max(used, default=0) + 1}"
        rel = f'<Relationship Id="{rel_id}" Type="{CUSTOM_PROPS_REL_TYPE}" Target="{CUSTOM_PROPS_PART}"/>'
        archive.write_text(PACKAGE_RELS_PART, rels.replace("</Relationships>", rel + "</Relationships>"))

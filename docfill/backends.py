"""
XML reading strategies.

Two interchangeable implementations read the same things out of a part:

- ``dom``: structured parse with lxml.
- ``regex``: string scanning, for contexts where building a tree is not wanted
  (batch workers).

Both return identical results on well-formed input. A backend is picked once,
when a processor is built, and reused for every call.
"""
import re
from dataclasses import dataclass
from typing import Callable, Dict

from lxml import etree

from .errors import MalformedPartError
from .xmlutil import W_NS, unescape_xml

CUSTOM_NS = "http://schemas.openxmlformats.org/officeDocument/2006/custom-properties"
VT_NS = "http://schemas.openxmlformats.org/officeDocument/2006/docPropsVTypes"

# priority order when a property carries more than one value child
VALUE_TAGS = ("lpwstr", "i4", "r8", "bool")

_TEXT_NODE_RE = re.compile(r"<w:t(?:\s[^>]*)?>([^<]*)</w:t>")
_PROPERTY_RE = re.compile(r"<property\b([^>]*)>([\s\S]*?)</property>", re.IGNORECASE)
_NAME_ATTR_RE = re.compile(r'\bname="([^"]*)"')
_VALUE_RES = {
    tag: re.compile(r"<vt:%s\b[^>]*?(?:/>|>([^<]*)</vt:%s>)" % (tag, tag), re.IGNORECASE)
    for tag in VALUE_TAGS
}

_PARSER = etree.XMLParser(resolve_entities=False, huge_tree=True)


def _parse(xml: str, part: str) -> etree._Element:
    try:
        return etree.fromstring(xml.encode("utf-8"), parser=_PARSER)
    except etree.XMLSyntaxError as exc:
        raise MalformedPartError(f"{part} is not well-formed XML: {exc}") from exc


def visible_text_dom(xml: str, part: str = "part") -> str:
    root = _parse(xml, part)
    return "".join(t.text or "" for t in root.iter(f"{{{W_NS}}}t"))


def visible_text_regex(xml: str, part: str = "part") -> str:
    return "".join(unescape_xml(m.group(1)) for m in _TEXT_NODE_RE.finditer(xml))


def properties_dom(xml: str, part: str = "part") -> Dict[str, str]:
    root = _parse(xml, part)
    properties: Dict[str, str] = {}
    for prop in root.iter():
        if not isinstance(prop.tag, str) or etree.QName(prop).localname != "property":
            continue
        name = prop.get("name")
        if name is None:
            continue
        for tag in VALUE_TAGS:
            value_el = prop.find(f".//{{{VT_NS}}}{tag}")
            if value_el is not None:
                properties[name] = value_el.text or ""
                break
    return properties


def properties_regex(xml: str, part: str = "part") -> Dict[str, str]:
    properties: Dict[str, str] = {}
    for m in _PROPERTY_RE.finditer(xml):
        name_match = _NAME_ATTR_RE.search(m.group(1))
        if not name_match:
            continue
        content = m.group(2)
        for tag in VALUE_TAGS:
            value_match = _VALUE_RES[tag].search(content)
            if value_match:
                properties[unescape_xml(name_match.group(1))] = unescape_xml(value_match.group(1) or "")
                break
    return properties


@dataclass(frozen=True)
class XmlBackend:
    name: str
    visible_text: Callable[..., str]
    read_properties: Callable[..., Dict[str, str]]


DOM_BACKEND = XmlBackend("dom", visible_text_dom, properties_dom)
REGEX_BACKEND = XmlBackend("regex", visible_text_regex, properties_regex)

_BACKENDS = {b.name: b for b in (DOM_BACKEND, REGEX_BACKEND)}


def get_backend(name: str) -> XmlBackend:
    try:
        return _BACKENDS[name]
    except KeyError:
        raise ValueError(f"unknown XML backend {name!r}, expected one of {sorted(_BACKENDS)}") from None

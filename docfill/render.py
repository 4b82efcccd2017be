"""Delimiter-based rendering of WordprocessingML parts with docxtpl and jinja2.

Word markup is not a template language, so each part is normalized before it
reaches jinja2:

1. ``{#`` and any ``{{`` / ``{%`` not closed within its paragraph are written
   as character references, so braces in body text stay text.
2. ``DocxTemplate.patch_xml`` strips the markup inside delimiters, turns
   typographic quotes back into plain ones and expands ``{%p``, ``{%tr``,
   ``{%tc`` and ``{%r`` statements to the element that holds them.
3. ``{{ name }}`` markers naming a known field become a literal-key lookup,
   which lets names like ``first name`` or ``due-date`` resolve.
"""
import io
import logging
import re
from typing import Collection, Dict, Iterable, Mapping, Optional

from docxtpl import DocxTemplate
from jinja2 import ChainableUndefined, Environment, TemplateError, Undefined
from lxml import etree
from markupsafe import Markup, escape

from .archive import Archive
from .errors import TemplateRenderError

logger = logging.getLogger(__name__)

FIELDS_VAR = "__docfill_fields__"
LINE_BREAK = Markup('</w:t><w:br/><w:t xml:space="preserve">')

# NUL cannot appear in XML text, so no comment is ever recognised
COMMENT_START = "\x00{#"
COMMENT_END = "#}\x00"

# closers may still be split over runs, so tags are allowed between their two characters
_CLOSER_GAP = r"(?:<(?!/w:p>)[^>]*>)*"
_UNCLOSED_VARIABLE_RE = re.compile(r"\{\{(?!(?:(?!\{\{|</w:p>)[\s\S])*?\}" + _CLOSER_GAP + r"\})")
_UNCLOSED_BLOCK_RE = re.compile(r"\{%(?!(?:(?!\{%|</w:p>)[\s\S])*?%" + _CLOSER_GAP + r"\})")
_VARIABLE_RE = re.compile(r"\{\{(-?)([^}]+?)(-?)\}\}")

# the mapping patch_xml applies inside delimiters
_SMART_QUOTES = {"‘": "'", "’": "'", "“": '"', "”": '"'}


def plain_quotes(text: str) -> str:
    for smart, plain in _SMART_QUOTES.items():
        text = text.replace(smart, plain)
    return text


def escape_literal_braces(xml: str) -> str:
    xml = xml.replace("{#", "{&#35;")
    xml = _UNCLOSED_VARIABLE_RE.sub("{&#123;", xml)
    return _UNCLOSED_BLOCK_RE.sub("{&#37;", xml)


def bind_known_fields(xml: str, names: Collection[str]) -> str:
    known: Dict[str, str] = {plain_quotes(n): n for n in names}
    known.update({n: n for n in names})

    def replace(m):
        name = known.get(m.group(2).strip())
        if name is None:
            return m.group(0)
        return "{{%s %s[%r] %s}}" % (m.group(1), FIELDS_VAR, name, m.group(3))

    return _VARIABLE_RE.sub(replace, xml)


def prepare_part(xml: str, names: Collection[str], template: Optional[DocxTemplate] = None) -> str:
    if template is None:
        template = DocxTemplate(io.BytesIO(xml.encode("utf-8")))
    xml = template.patch_xml(escape_literal_braces(xml))
    return bind_known_fields(xml, names)


class TemplateRenderer:
    """Renders document parts with ``{{``/``}}`` delimiters.

    Missing fields and ``None`` render as an empty string. With
    ``linebreaks`` on, newlines in values become ``<w:br/>``.
    """

    def __init__(self, linebreaks: bool = True):
        self.linebreaks = linebreaks
        self.env = Environment(
            variable_start_string="{{",
            variable_end_string="}}",
            block_start_string="{%",
            block_end_string="%}",
            comment_start_string=COMMENT_START,
            comment_end_string=COMMENT_END,
            undefined=ChainableUndefined,
            autoescape=True,
            keep_trailing_newline=True,
            finalize=self._finalize,
        )

    def _finalize(self, value):
        if value is None or isinstance(value, Undefined):
            return ""
        text = escape(value)
        if self.linebreaks:
            text = text.replace("\r\n", "\n").replace("\n", LINE_BREAK)
        return text

    def render_part(
        self,
        xml: str,
        values: Mapping[str, str],
        names: Collection[str] = (),
        part: str = "part",
        template: Optional[DocxTemplate] = None,
    ) -> str:
        source = prepare_part(xml, set(names) | set(values), template)
        context = dict(values)
        context[FIELDS_VAR] = dict(values)
        try:
            rendered = self.env.from_string(source).render(context)
        except TemplateError as exc:
            raise TemplateRenderError(f"{part}: {exc}") from exc

        try:
            etree.fromstring(rendered.encode("utf-8"))
        except etree.XMLSyntaxError as exc:
            raise TemplateRenderError(f"{part}: rendered markup is not well-formed: {exc}") from exc
        return rendered

    def render_archive(
        self,
        archive: Archive,
        values: Mapping[str, str],
        names: Collection[str] = (),
        parts: Optional[Iterable[str]] = None,
    ) -> int:
        """Render every templated part in place. Returns the number of parts rendered."""
        # patch_xml never touches the package, the archive still owns the bytes
        template = DocxTemplate(io.BytesIO(archive.source))
        rendered = 0
        for part in parts if parts is not None else archive.document_parts():
            xml = archive.read_text(part)
            if xml is None or "{" not in xml:
                continue
            archive.write_text(part, self.render_part(xml, values, names, part, template))
            rendered += 1
        logger.debug("rendered %d part(s)", rendered)
        return rendered

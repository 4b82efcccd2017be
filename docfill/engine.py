import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple, Union

from .archive import Archive
from .errors import MissingDocumentPartError, ProcessingError, TemplateRenderError
from .fields import update_document_fields
from .properties import write_custom_properties
from .render import TemplateRenderer
from .repair import repair_split_runs_optimized
from .xmlutil import DOCUMENT_PART

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, float], None]

# processing stages reported through ProgressCallback
LOADING = "loading"
PARSING = "parsing"
FIXING_PLACEHOLDERS = "fixing_placeholders"
UPDATING_FIELDS = "updating_fields"
RENDERING = "rendering"
GENERATING = "generating"


@dataclass(frozen=True)
class Placeholder:
    name: str


@dataclass(frozen=True)
class CustomProperty:
    name: str
    value: str = ""


Field = Union[Placeholder, CustomProperty]


@dataclass
class TemplateFields:
    """What a document asks the user for, fixed at extraction time."""

    placeholders: List[str] = field(default_factory=list)
    custom_properties: Dict[str, str] = field(default_factory=dict)

    def fields(self) -> List[Field]:
        out: List[Field] = [Placeholder(n) for n in self.placeholders if n not in self.custom_properties]
        out.extend(CustomProperty(n, v) for n, v in self.custom_properties.items())
        return out

    def field_names(self) -> List[str]:
        return [f.name for f in self.fields()]

    def is_custom_property(self, name: str) -> bool:
        return name in self.custom_properties

    def initial_values(self) -> Dict[str, str]:
        """Form pre-fill: empty placeholders, current custom-property values."""
        values = {n: "" for n in self.placeholders}
        values.update(self.custom_properties)
        return values

    def classify(self, values: Mapping[str, str]) -> Tuple[Dict[str, str], Dict[str, str]]:
        """Split ``values`` into ``(placeholder_values, custom_values)``."""
        placeholder_values: Dict[str, str] = {}
        custom_values: Dict[str, str] = {}
        for name, value in values.items():
            if self.is_custom_property(name):
                custom_values[name] = value
            else:
                placeholder_values[name] = value
        return placeholder_values, custom_values


def _report(on_progress: Optional[ProgressCallback], stage: str, percent: float) -> None:
    if on_progress:
        on_progress(stage, percent)


class SubstitutionEngine:
    def __init__(self, renderer: Optional[TemplateRenderer] = None, compression_level: int = 6):
        self.renderer = renderer or TemplateRenderer()
        self.compression_level = compression_level

    def apply_custom_properties(
        self,
        archive: Archive,
        fields: TemplateFields,
        custom_values: Mapping[str, str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        if not custom_values:
            return
        _report(on_progress, UPDATING_FIELDS, 0)
        merged = dict(fields.custom_properties)
        merged.update(custom_values)
        write_custom_properties(archive, merged)
        count = update_document_fields(
            archive, custom_values, lambda pct: _report(on_progress, UPDATING_FIELDS, pct)
        )
        logger.info("updated %d custom properties, %d DOCPROPERTY field(s)", len(custom_values), count)

    def _render(
        self,
        buffer: bytes,
        fields: TemplateFields,
        values: Mapping[str, str],
        repair: bool,
        on_progress: Optional[ProgressCallback],
    ) -> bytes:
        placeholder_values, custom_values = fields.classify(values)

        _report(on_progress, LOADING, 0)
        archive = Archive.open(buffer, compression_level=self.compression_level)
        if not archive.has(DOCUMENT_PART):
            raise MissingDocumentPartError(f"could not find {DOCUMENT_PART} in the Word file")
        _report(on_progress, LOADING, 100)

        self.apply_custom_properties(archive, fields, custom_values, on_progress)

        if fields.placeholders:
            parts = archive.document_parts()
            if repair:
                _report(on_progress, FIXING_PLACEHOLDERS, 0)
                for part in parts:
                    xml = archive.read_text(part)
                    repaired = repair_split_runs_optimized(xml, fields.placeholders)
                    if repaired != xml:
                        archive.write_text(part, repaired)
                        logger.debug("%s: repaired split placeholders", part)
                _report(on_progress, FIXING_PLACEHOLDERS, 100)

            _report(on_progress, RENDERING, 0)
            self.renderer.render_archive(archive, placeholder_values, fields.placeholders, parts)
            _report(on_progress, RENDERING, 100)

        _report(on_progress, GENERATING, 0)
        data = archive.serialize()
        _report(on_progress, GENERATING, 100)
        return data

    def substitute(
        self,
        buffer: bytes,
        fields: TemplateFields,
        values: Mapping[str, str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> bytes:
        """Fill ``values`` into ``buffer`` and return the new document.

        If rendering the repaired markup fails, the original buffer is
        rendered once more without split-run repair. ``ProcessingError`` is
        raised only when that fallback fails too.
        """
        try:
            return self._render(buffer, fields, values, True, on_progress)
        except TemplateRenderError as exc:
            logger.warning("primary rendering failed, retrying without split-run repair: %s", exc)

        try:
            return self._render(buffer, fields, values, False, on_progress)
        except TemplateRenderError as exc:
            raise ProcessingError(f"rendering failed on both primary and fallback paths: {exc}") from exc

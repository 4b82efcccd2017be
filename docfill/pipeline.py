import logging
import threading
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Executor, ProcessPoolExecutor, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .archive import Archive
from .backends import get_backend
from .config import EngineConfig, load_config
from .engine import GENERATING, LOADING, PARSING, ProgressCallback, SubstitutionEngine, TemplateFields
from .errors import DocumentMergeError, MissingDocumentPartError
from .extract import extract_placeholders
from .properties import read_custom_properties
from .render import TemplateRenderer
from .xmlutil import DOCUMENT_PART

logger = logging.getLogger(__name__)

BatchProgressCallback = Callable[[str, str, float], None]


@dataclass(frozen=True)
class ProcessingResult:
    filename: str
    data: bytes


class DocumentProcessor:
    """Runs one document through extraction and substitution.

    The XML backend is fixed when the processor is built.
    """

    def __init__(self, config: Optional[EngineConfig] = None, backend: Optional[str] = None):
        self.config = config or load_config()
        self.backend = get_backend(backend or self.config.xml_backend)
        self.engine = SubstitutionEngine(
            TemplateRenderer(linebreaks=self.config.linebreaks),
            compression_level=self.config.compression_level,
        )

    def open(self, buffer: bytes) -> Archive:
        return Archive.open(buffer, compression_level=self.config.compression_level)

    def extract(self, buffer: bytes, on_progress: Optional[ProgressCallback] = None) -> TemplateFields:
        if on_progress:
            on_progress(PARSING, 0)
        archive = self.open(buffer)
        if not archive.has(DOCUMENT_PART):
            raise MissingDocumentPartError(f"could not find {DOCUMENT_PART} in the Word file")
        if on_progress:
            on_progress(PARSING, 50)
        fields = TemplateFields(
            placeholders=extract_placeholders(archive, self.backend),
            custom_properties=read_custom_properties(archive, self.backend),
        )
        if on_progress:
            on_progress(PARSING, 100)
        logger.info(
            "found %d placeholder(s) and %d custom propert(ies) using %s backend",
            len(fields.placeholders), len(fields.custom_properties), self.backend.name,
        )
        return fields

    def process(
        self,
        buffer: bytes,
        values: Mapping[str, str],
        filename: str,
        fields: Optional[TemplateFields] = None,
        output_name: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ProcessingResult:
        if fields is None:
            fields = self.extract(buffer)
        data = self.engine.substitute(buffer, fields, values, on_progress)
        return ProcessingResult(filename=output_name or filename, data=data)


# ---------------------------------------------------------------------------
# batch


@dataclass(frozen=True)
class BatchDocument:
    id: str
    filename: str
    data: bytes


@dataclass
class FileFieldInfo:
    filename: str
    fields: List[str]


@dataclass
class FieldLayout:
    shared_fields: List[str] = field(default_factory=list)
    file_fields: Dict[str, FileFieldInfo] = field(default_factory=dict)
    field_to_files: Dict[str, List[str]] = field(default_factory=dict)
    is_custom_property: Dict[str, bool] = field(default_factory=dict)

    def all_fields(self) -> List[str]:
        names = list(self.shared_fields)
        for info in self.file_fields.values():
            names.extend(info.fields)
        return names


@dataclass(frozen=True)
class BatchFailure:
    id: str
    filename: str
    reason: str


@dataclass
class BatchResult:
    results: List[ProcessingResult] = field(default_factory=list)
    failures: List[BatchFailure] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures and not self.skipped


def classify_fields(fields_by_doc: Mapping[str, TemplateFields], filenames: Mapping[str, str]) -> FieldLayout:
    """Group fields into shared (in two or more documents) and per-document."""
    layout = FieldLayout()
    for doc_id, fields in fields_by_doc.items():
        for f in fields.fields():
            layout.field_to_files.setdefault(f.name, []).append(doc_id)
            if fields.is_custom_property(f.name):
                layout.is_custom_property[f.name] = True
            else:
                layout.is_custom_property.setdefault(f.name, False)

    for name, doc_ids in layout.field_to_files.items():
        if len(doc_ids) >= 2:
            layout.shared_fields.append(name)
        else:
            doc_id = doc_ids[0]
            info = layout.file_fields.setdefault(doc_id, FileFieldInfo(filenames.get(doc_id, doc_id), []))
            info.fields.append(name)
    return layout


_worker_processor: Optional[DocumentProcessor] = None


def _init_worker(config: EngineConfig) -> None:
    global _worker_processor
    _worker_processor = DocumentProcessor(config, backend=config.worker_backend)


def _process_in_worker(
    data: bytes, filename: str, fields: Optional[TemplateFields], values: Mapping[str, str]
) -> ProcessingResult:
    return _worker_processor.process(data, values, filename, fields)


class BatchProcessor:
    """Processes many documents independently, offloading to a worker pool.

    Documents share nothing: a failure is recorded against its own document
    and the rest of the batch carries on. A document whose offloaded run
    fails is processed again synchronously in the calling thread.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or load_config()
        self.processor = DocumentProcessor(self.config)

    def extract_all(
        self, documents: Iterable[BatchDocument]
    ) -> Tuple[Dict[str, TemplateFields], List[BatchFailure]]:
        fields_by_doc: Dict[str, TemplateFields] = {}
        failures: List[BatchFailure] = []
        for doc in documents:
            try:
                fields_by_doc[doc.id] = self.processor.extract(doc.data)
            except DocumentMergeError as exc:
                logger.error("failed to extract fields from %s: %s", doc.filename, exc)
                failures.append(BatchFailure(doc.id, doc.filename, str(exc)))
        return fields_by_doc, failures

    def _make_executor(self) -> Executor:
        if self.config.executor == "thread":
            return ThreadPoolExecutor(
                max_workers=self.config.max_workers, initializer=_init_worker, initargs=(self.config,)
            )
        return ProcessPoolExecutor(
            max_workers=self.config.max_workers, initializer=_init_worker, initargs=(self.config,)
        )

    def _process_sync(
        self,
        doc: BatchDocument,
        values: Mapping[str, str],
        fields: Optional[TemplateFields],
        on_progress: Optional[BatchProgressCallback],
        result: BatchResult,
    ) -> None:
        progress = (lambda stage, pct: on_progress(doc.id, stage, pct)) if on_progress else None
        try:
            result.results.append(self.processor.process(doc.data, values, doc.filename, fields, on_progress=progress))
        except DocumentMergeError as exc:
            logger.error("failed to process %s: %s", doc.filename, exc)
            result.failures.append(BatchFailure(doc.id, doc.filename, str(exc)))

    def process_all(
        self,
        documents: Iterable[BatchDocument],
        values: Mapping[str, str],
        fields_by_doc: Optional[Mapping[str, TemplateFields]] = None,
        on_progress: Optional[BatchProgressCallback] = None,
        cancel: Optional[threading.Event] = None,
    ) -> BatchResult:
        fields_by_doc = dict(fields_by_doc or {})
        result = BatchResult()
        pending = deque(documents)

        def cancelled() -> bool:
            if cancel is not None and cancel.is_set():
                result.skipped.extend(doc.id for doc in pending)
                pending.clear()
                return True
            return False

        if self.config.executor == "none":
            while pending and not cancelled():
                doc = pending.popleft()
                self._process_sync(doc, values, fields_by_doc.get(doc.id), on_progress, result)
            return result

        with self._make_executor() as pool:
            in_flight = {}
            while pending or in_flight:
                while pending and len(in_flight) < self.config.max_workers and not cancelled():
                    doc = pending.popleft()
                    if on_progress:
                        on_progress(doc.id, LOADING, 0)
                    try:
                        future = pool.submit(
                            _process_in_worker, doc.data, doc.filename, fields_by_doc.get(doc.id), values
                        )
                    except RuntimeError as exc:
                        logger.warning("worker pool unavailable for %s, processing inline: %s", doc.filename, exc)
                        self._process_sync(doc, values, fields_by_doc.get(doc.id), on_progress, result)
                        continue
                    in_flight[future] = doc
                if not in_flight:
                    break

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    doc = in_flight.pop(future)
                    try:
                        result.results.append(future.result())
                    except Exception as exc:
                        logger.warning("worker failed on %s, processing inline: %s", doc.filename, exc)
                        self._process_sync(doc, values, fields_by_doc.get(doc.id), on_progress, result)
                        continue
                    if on_progress:
                        on_progress(doc.id, GENERATING, 100)
        return result

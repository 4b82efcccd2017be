"""Fill ``{{name}}`` placeholders and custom document properties in .docx files."""
from .config import EngineConfig, load_config
from .engine import CustomProperty, Placeholder, SubstitutionEngine, TemplateFields
from .errors import (
    CorruptArchiveError,
    DocumentMergeError,
    MalformedPartError,
    MissingDocumentPartError,
    ProcessingError,
    PropertyWriteError,
    TemplateRenderError,
)
from .pipeline import (
    BatchDocument,
    BatchProcessor,
    BatchResult,
    DocumentProcessor,
    FieldLayout,
    ProcessingResult,
    classify_fields,
)

__version__ = "0.1.0"

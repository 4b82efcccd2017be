"""Exceptions raised by the merge engine."""


class DocumentMergeError(Exception):
    """Base class for every error the engine raises on purpose."""


class CorruptArchiveError(DocumentMergeError):
    """Input buffer is not a readable ZIP container."""


class MissingDocumentPartError(DocumentMergeError):
    """Archive has no ``word/document.xml``."""


class MalformedPartError(DocumentMergeError):
    """A part could not be parsed as XML by the DOM backend."""


class TemplateRenderError(DocumentMergeError):
    """The renderer rejected a part, or produced markup that is not well-formed."""


class ProcessingError(DocumentMergeError):
    """Rendering failed on both the primary and the fallback path."""


class PropertyWriteError(DocumentMergeError):
    """``docProps/custom.xml`` could not be generated."""

from .annotations import (
    AnnotationService,
    Definition,
    InsufficientText,
    Summary,
    Unavailable,
)
from .config import ReaderConfig, load_config
from .core import (
    ArchiveReader,
    AssembledDocument,
    MalformedArchive,
    MissingResource,
    build_document,
    resolve_package,
    resolve_path,
)
from .generation import GenerationClient, GenerationFailure, GenerationResponseError
from .segment import insert_summary_markers, section_text
from .selection import SelectionEngine
from .session import PanelContent, ReadingSession
from .words import LazyTokenizer, WordIndex, WordState

__all__ = [
    "AnnotationService",
    "ArchiveReader",
    "AssembledDocument",
    "Definition",
    "GenerationClient",
    "GenerationFailure",
    "GenerationResponseError",
    "InsufficientText",
    "LazyTokenizer",
    "MalformedArchive",
    "MissingResource",
    "PanelContent",
    "ReaderConfig",
    "ReadingSession",
    "SelectionEngine",
    "Summary",
    "Unavailable",
    "WordIndex",
    "WordState",
    "build_document",
    "insert_summary_markers",
    "load_config",
    "resolve_package",
    "resolve_path",
    "section_text",
]

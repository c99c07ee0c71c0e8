"""Document store components."""

from .markdown import load_directory, parse_articles, read_pack_file
from .service import DocumentStore, InMemoryDocumentStore, PackSummary

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "PackSummary",
    "load_directory",
    "parse_articles",
    "read_pack_file",
]

"""Source handlers and the manager that orchestrates them.

A handler fetches one kind of content (files, web pages, iFinder documents,
static pages) and returns it as a `LoadResult` through its own cache.
"""

from .base import LoadResult, SourceHandler, run_batch
from .filesystem import FileSystemHandler
from .ifinder import DocumentSearchClient, IFinderHandler
from .manager import (
    AggregateLoadResult,
    AppSourcesResult,
    SourceDescriptor,
    SourceManager,
    SourceResult,
    SourceType,
)
from .page import PageHandler
from .url import ContentExtractor, FallbackExtractor, URLHandler

__all__ = [
    "LoadResult",
    "SourceHandler",
    "run_batch",
    "FileSystemHandler",
    "URLHandler",
    "ContentExtractor",
    "FallbackExtractor",
    "IFinderHandler",
    "DocumentSearchClient",
    "PageHandler",
    "SourceManager",
    "SourceDescriptor",
    "SourceType",
    "SourceResult",
    "AggregateLoadResult",
    "AppSourcesResult",
]

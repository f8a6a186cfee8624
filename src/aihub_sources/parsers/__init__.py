"""Parsers turning fetched HTML and Markdown into plain text and metadata."""

from .base_parser import BaseParser, ParsedDocument, SectionInfo
from .html_parser import HTMLParser
from .markdown_parser import MarkdownParser

__all__ = ["BaseParser", "ParsedDocument", "SectionInfo", "HTMLParser", "MarkdownParser"]

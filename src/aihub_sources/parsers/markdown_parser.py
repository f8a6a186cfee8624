"""Markdown pages rendered to HTML and read back through `HTMLParser`.

Page sources use this to derive a title from the first heading; the same
text and outline rules as for web content apply.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import markdown as md  # type: ignore[import-untyped]

from .base_parser import BaseParser, ParsedDocument
from .html_parser import HTMLParser

MARKDOWN_SUFFIXES = {".md", ".mdx"}


class MarkdownParser(BaseParser):
    def __init__(self, extensions: Optional[list] = None) -> None:
        self._html = HTMLParser()
        self._extensions = extensions or ["tables", "fenced_code", "sane_lists"]

    def can_parse(self, path: Path) -> bool:
        return path.suffix.lower() in MARKDOWN_SUFFIXES

    def parse_content(self, content: str, *, metadata: Optional[Dict[str, Any]] = None) -> ParsedDocument:
        return self.parse_markdown_content(content, metadata=metadata)

    def parse_markdown_content(
        self, markdown_text: str, *, metadata: Optional[Dict[str, Any]] = None
    ) -> ParsedDocument:
        rendered = md.markdown(markdown_text, extensions=self._extensions)
        # No <title> in rendered Markdown: the heading outline supplies it
        page_meta = {"title": "", "description": "", **(metadata or {})}
        return self._html.parse_html_content(rendered, metadata=page_meta, clean=False)

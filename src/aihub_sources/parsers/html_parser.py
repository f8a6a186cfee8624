"""HTML parser for converting fetched web pages into a `ParsedDocument`
with readable text, heading structure, and page metadata (title, description).

Cleaning removes page chrome (scripts, styles, navigation, headers, footers,
asides and common ad/cookie containers) before text extraction.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup  # type: ignore[import-untyped]

from .base_parser import BaseParser, ParsedDocument, SectionInfo

# Elements that never carry readable content
ALWAYS_REMOVED = ["script", "style", "noscript", "template"]

UNWANTED_SELECTORS = [
    "iframe",
    "embed",
    "object",
    "header",
    "footer",
    "nav",
    "aside",
    "menu",
    ".advertisement",
    ".ad",
    ".ads",
    ".sidebar",
    ".popup",
    ".cookie-banner",
    ".newsletter",
    ".social-share",
    ".related-articles",
    ".comments",
    ".pagination",
    '[role="banner"]',
    '[role="navigation"]',
    '[role="complementary"]',
]

_WS_RE = re.compile(r"[ \t\r\f\v]+")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def _normalize_whitespace(text: str) -> str:
    text = _WS_RE.sub(" ", text)
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return "\n".join(line.strip() for line in text.split("\n")).strip()


class HTMLParser(BaseParser):
    """Parser for HTML content."""

    def can_parse(self, path: Path) -> bool:
        return path.suffix.lower() in {".html", ".htm"}

    def parse_content(self, content: str, *, metadata: Optional[Dict[str, Any]] = None) -> ParsedDocument:
        return self.parse_html_content(content, metadata=metadata)

    def parse_html_content(
        self,
        html: str,
        *,
        metadata: Optional[Dict[str, Any]] = None,
        clean: bool = True,
    ) -> ParsedDocument:
        """Parse HTML string content into a `ParsedDocument`.

        Title and description are read from `<title>` / `<meta name="description">`
        (falling back to Open Graph tags) and stored in metadata. When `clean` is
        False only scripts and styles are dropped.
        """
        soup = BeautifulSoup(html, "html.parser")
        meta: Dict[str, Any] = dict(metadata or {})
        meta.setdefault("title", self._extract_title(soup))
        meta.setdefault("description", self._extract_description(soup))

        for tag in soup(ALWAYS_REMOVED):
            tag.decompose()
        if clean:
            for selector in UNWANTED_SELECTORS:
                for tag in soup.select(selector):
                    # nested matches may already be gone with their parent
                    if not getattr(tag, "decomposed", False):
                        tag.decompose()

        root = soup.find("main") or soup.find("article") or soup.body or soup
        text = _normalize_whitespace(root.get_text("\n"))

        # Build sections from headings in document order
        sections: List[SectionInfo] = []
        for tag in root.find_all(["h1", "h2", "h3", "h4", "h5", "h6"]):
            title = tag.get_text(" ", strip=True)
            if title:
                sections.append(SectionInfo(title=title, level=int(tag.name[1])))

        return ParsedDocument(text=text, sections=sections, metadata=meta)

    @staticmethod
    def _extract_title(soup: BeautifulSoup) -> str:
        title_tag = soup.find("title")
        if title_tag and title_tag.get_text(strip=True):
            return title_tag.get_text(" ", strip=True)
        og = soup.find("meta", attrs={"property": "og:title"})
        if og and og.get("content"):
            return str(og["content"]).strip()
        h1 = soup.find("h1")
        return h1.get_text(" ", strip=True) if h1 else ""

    @staticmethod
    def _extract_description(soup: BeautifulSoup) -> str:
        for attrs in ({"name": "description"}, {"property": "og:description"}):
            tag = soup.find("meta", attrs=attrs)
            if tag and tag.get("content"):
                return str(tag["content"]).strip()
        return ""

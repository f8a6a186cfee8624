"""Parser interface and the document shape parsers produce.

Sources that fetch markup (web pages, Markdown pages) hand it to a parser to
get readable text, the heading outline and descriptive metadata.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass(slots=True)
class SectionInfo:
    """One heading of the outline; `level` 1 corresponds to `<h1>` / `#`."""

    title: str
    level: int


@dataclass(slots=True)
class ParsedDocument:
    """Readable text plus outline and metadata of one parsed document."""

    text: str = ""
    sections: List[SectionInfo] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str:
        """Title from metadata, falling back to the first highest-level heading."""
        explicit = str(self.metadata.get("title") or "").strip()
        if explicit:
            return explicit
        if not self.sections:
            return ""
        top = min(s.level for s in self.sections)
        return next(s.title for s in self.sections if s.level == top)


class BaseParser(ABC):
    @abstractmethod
    def can_parse(self, path: Path) -> bool:
        """Whether files with this name are handled by the parser."""

    @abstractmethod
    def parse_content(self, content: str, *, metadata: Optional[Dict[str, Any]] = None) -> ParsedDocument:
        raise NotImplementedError

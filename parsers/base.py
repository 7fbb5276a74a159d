"""parsers/base.py — Shared parser utilities and types."""

import html
import re
from dataclasses import dataclass, field

from models import Asset, BookMetadata, Chapter, NavPoint


@dataclass
class ParseResult:
    """Standard return type for all parsers."""
    chapters: list[Chapter]
    metadata: BookMetadata
    nav: list[NavPoint] = field(default_factory=list)
    assets: list[Asset] = field(default_factory=list)


def clean_text(text: str) -> str:
    """Normalize extracted text: unescape entities, drop soft hyphens, collapse spaces and blank runs."""
    text = html.unescape(text).replace("\u00ad", "").replace("\xa0", " ")
    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.split("\n")]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


def walk_nav(nav: list[NavPoint]):
    """Depth-first iteration over a nav tree."""
    for point in nav:
        yield point
        yield from walk_nav(point.children)

"""models.py — Shared data types for folio."""

from dataclasses import dataclass, field


@dataclass
class Chapter:
    index: int       # 1-based
    title: str       # Display title, e.g. "Chapter I: Jeeves Exerts the Old Cerebellum"
    file_name: str   # Name inside the book, e.g. "chapter_001.xhtml"
    html: str        # Body markup, portable XHTML fragment
    text: str        # Cleaned plain text


@dataclass
class NavPoint:
    title: str
    href: str        # "chapter_003.xhtml#filepos1234" or a path inside the EPUB
    id: int | None = None
    children: list["NavPoint"] = field(default_factory=list)


@dataclass
class Asset:
    file_name: str
    media_type: str
    data: bytes


@dataclass
class BookMetadata:
    title: str
    creators: list[str] = field(default_factory=list)
    publisher: str | None = None
    description: str | None = None
    identifier: str = ""
    subject: str | None = None
    date: str | None = None
    contributor: str | None = None
    language: str | None = None
    cover: Asset | None = None
    source_format: str = ""         # "epub", "mobi"

    @property
    def author(self) -> str:
        return ", ".join(self.creators) if self.creators else "Unknown"

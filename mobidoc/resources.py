"""mobidoc/resources.py — Images, guide positions and navigation recovered from MOBI markup."""

import itertools
import re
from dataclasses import dataclass, field
from typing import Iterator

from bs4 import BeautifulSoup

IMAGE_TAG_PATTERN = re.compile(rb"<img\b[^>]*>", re.IGNORECASE)
RECINDEX_PATTERN = re.compile(rb"""recindex=['"]?([0-9]+)['"]?""", re.IGNORECASE)
GUIDE_PATTERN = re.compile(rb"<guide>(.*?)</guide>", re.IGNORECASE | re.DOTALL)
REFERENCE_PATTERN = re.compile(rb"<reference\b[^>]*>", re.IGNORECASE)
TOC_TYPE_PATTERN = re.compile(rb"""type=['"]?toc['"\s/>]""", re.IGNORECASE)
FILEPOS_PATTERN = re.compile(rb"""filepos=['"]?0*([0-9]+)['"]?""", re.IGNORECASE)

IMAGE_TYPES = [
    (b"\xff\xd8\xff", "jpg", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "png", "image/png"),
    (b"GIF87a", "gif", "image/gif"),
    (b"GIF89a", "gif", "image/gif"),
    (b"BM", "bmp", "image/bmp"),
]


@dataclass
class MobiAsset:
    file_name: str
    media_type: str
    data: bytes
    recindex: int


@dataclass
class MobiNav:
    id: int
    title: str
    filepos: int | None
    children: list["MobiNav"] = field(default_factory=list)

    def walk(self) -> Iterator["MobiNav"]:
        yield self
        for child in self.children:
            yield from child.walk()


def image_type(data: bytes) -> tuple[str, str]:
    """Sniff (extension, media type) from an image's magic bytes."""
    for magic, ext, media_type in IMAGE_TYPES:
        if data.startswith(magic):
            return ext, media_type
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp", "image/webp"
    return "bin", "application/octet-stream"


def image_file_name(recindex: int, data: bytes) -> str:
    return f"{recindex:05d}.{image_type(data)[0]}"


def find_image_recindexes(text: bytes) -> list[int]:
    """Record indexes referenced by <img recindex=...> tags, in first-appearance order."""
    seen = []
    for tag in IMAGE_TAG_PATTERN.finditer(text):
        for m in RECINDEX_PATTERN.finditer(tag.group(0)):
            index = int(m.group(1))
            if index not in seen:
                seen.append(index)
    return seen


def find_guide_filepos(text: bytes) -> int | None:
    """Filepos of the table-of-contents reference in the <guide> block, if any."""
    guide = GUIDE_PATTERN.search(text)
    if guide is None:
        return None
    for ref in REFERENCE_PATTERN.finditer(guide.group(1)):
        tag = ref.group(0)
        if not TOC_TYPE_PATTERN.search(tag):
            continue
        m = FILEPOS_PATTERN.search(tag)
        if m:
            return int(m.group(1))
    return None


_LIST_CONTAINERS = ("blockquote", "ul", "ol")


def _depth(tag) -> int:
    return sum(1 for parent in tag.parents if parent.name in _LIST_CONTAINERS)


def parse_nav_html(markup: str, ids: Iterator[int] | None = None) -> list[MobiNav]:
    """
    Build a nav tree from a table-of-contents fragment. Every <a filepos=...>
    is an entry; nesting follows enclosing blockquote/ul/ol elements.
    """
    if ids is None:
        ids = itertools.count(1)
    soup = BeautifulSoup(markup, "lxml")

    entries = []
    for a in soup.find_all("a"):
        filepos = a.get("filepos")
        if filepos is None:
            continue
        title = a.get_text(" ", strip=True)
        if not title:
            continue
        try:
            pos = int(filepos)
        except ValueError:
            pos = None
        entries.append((_depth(a), MobiNav(id=next(ids), title=title, filepos=pos)))

    if not entries:
        return []

    base = min(depth for depth, _ in entries)
    roots: list[MobiNav] = []
    stack: list[tuple[int, MobiNav]] = []
    for depth, nav in entries:
        level = depth - base
        while stack and stack[-1][0] >= level:
            stack.pop()
        if stack:
            stack[-1][1].children.append(nav)
        else:
            roots.append(nav)
        stack.append((level, nav))
    return roots

"""parsers/epub_parser.py — Parse EPUB (packed or directory) into chapters."""

import posixpath
import xml.etree.ElementTree as ET
import zipfile
from pathlib import Path
from urllib.parse import unquote

from bs4 import BeautifulSoup

from models import Asset, BookMetadata, Chapter, NavPoint
from parsers.base import ParseResult, clean_text, walk_nav

CONTAINER_NS = "urn:oasis:names:tc:opendocument:xmlns:container"
NCX_NS = "http://www.daisy.org/z3986/2005/ncx/"
OPF_NS = "http://www.idpf.org/2007/opf"
DC_NS = "http://purl.org/dc/elements/1.1/"

EPUB_MIMETYPE = b"application/epub+zip"
XHTML_TYPES = {"application/xhtml+xml", "text/html"}


def is_epub(path: Path) -> bool:
    """True for a zip whose mimetype entry is application/epub+zip, or an unpacked EPUB directory."""
    path = Path(path)
    if path.is_dir():
        return (path / "META-INF" / "container.xml").exists()
    if not zipfile.is_zipfile(path):
        return False
    with zipfile.ZipFile(path) as zf:
        try:
            return zf.read("mimetype").strip() == EPUB_MIMETYPE
        except KeyError:
            return False


class _EpubSource:
    """Uniform read access to a packed (zip) or unpacked (directory) EPUB."""

    def __init__(self, epub_path: Path):
        self.root = None
        self.zip = None
        if epub_path.is_dir():
            self.root = epub_path
        elif zipfile.is_zipfile(epub_path):
            self.zip = zipfile.ZipFile(epub_path)
        else:
            raise ValueError(f"Cannot determine EPUB format for {epub_path}")

    def read(self, name: str) -> bytes:
        if self.zip is not None:
            try:
                return self.zip.read(name)
            except KeyError:
                raise FileNotFoundError(f"{name} not found in EPUB") from None
        path = self.root / name
        if not path.is_file():
            raise FileNotFoundError(f"{name} not found in {self.root}")
        return path.read_bytes()

    def close(self) -> None:
        if self.zip is not None:
            self.zip.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def _find_opf(source: _EpubSource) -> str:
    root = ET.fromstring(source.read("META-INF/container.xml"))
    rootfile = root.find(f".//{{{CONTAINER_NS}}}rootfile")
    if rootfile is None or not rootfile.get("full-path"):
        raise ValueError("No rootfile in META-INF/container.xml")
    return rootfile.get("full-path")


def _resolve(base_dir: str, href: str) -> str:
    return posixpath.normpath(posixpath.join(base_dir, unquote(href)))


def _text(root, path: str) -> str | None:
    node = root.find(path)
    if node is not None and node.text and node.text.strip():
        return node.text.strip()
    return None


def _parse_ncx(data: bytes, ncx_dir: str, opf_dir: str) -> list[NavPoint]:
    """Nested navPoints from toc.ncx, hrefs relative to the OPF directory."""
    root = ET.fromstring(data)
    nav_map = root.find(f"{{{NCX_NS}}}navMap")
    if nav_map is None:
        raise ValueError("No navMap found in toc.ncx")

    def convert(parent) -> list[NavPoint]:
        points = []
        for np in parent.findall(f"{{{NCX_NS}}}navPoint"):
            label = np.find(f"{{{NCX_NS}}}navLabel/{{{NCX_NS}}}text")
            content = np.find(f"{{{NCX_NS}}}content")
            title = label.text.strip() if label is not None and label.text else ""
            src = content.get("src", "") if content is not None else ""
            points.append(NavPoint(
                title=title,
                href=_relative_href(ncx_dir, opf_dir, src),
                children=convert(np),
            ))
        return points

    return convert(nav_map)


def _relative_href(doc_dir: str, opf_dir: str, href: str) -> str:
    path, _, fragment = href.partition("#")
    full = _resolve(doc_dir, path) if path else ""
    rel = posixpath.relpath(full, opf_dir or ".") if full else ""
    return f"{rel}#{fragment}" if fragment else rel


def _parse_nav_document(data: bytes, nav_dir: str, opf_dir: str) -> list[NavPoint]:
    """Nested entries of the EPUB 3 <nav epub:type="toc"> list."""
    soup = BeautifulSoup(data, features="lxml-xml")
    navs = soup.find_all("nav")
    if not navs:
        return []
    toc = next((n for n in navs if n.get("epub:type") == "toc" or n.get("type") == "toc"), navs[0])

    def convert(ol) -> list[NavPoint]:
        points = []
        for li in ol.find_all("li", recursive=False):
            link = li.find(["a", "span"], recursive=False)
            child = li.find("ol", recursive=False)
            points.append(NavPoint(
                title=link.get_text(" ", strip=True) if link else "",
                href=_relative_href(nav_dir, opf_dir, link.get("href", "")) if link else "",
                children=convert(child) if child is not None else [],
            ))
        return points

    ol = toc.find("ol")
    return convert(ol) if ol is not None else []


def _extract_chapter(content: bytes) -> tuple[str, str, str | None]:
    """Parse a single chapter XHTML file. Returns (body markup, cleaned text, heading)."""
    soup = BeautifulSoup(content, features="lxml")
    body = soup.body or soup
    heading = body.find(["h1", "h2", "h3"])
    heading_text = heading.get_text(" ", strip=True) if heading else None
    if not heading_text and soup.title and soup.title.string:
        heading_text = soup.title.string.strip()
    return body.decode_contents().strip(), clean_text(body.get_text("\n")), heading_text or None


def _extract_metadata(opf_root, cover: Asset | None) -> BookMetadata:
    """Read Dublin Core fields from content.opf."""
    meta = opf_root.find(f"{{{OPF_NS}}}metadata")
    if meta is None:
        raise ValueError("No metadata element in content.opf")
    creators = [
        c.text.strip() for c in meta.findall(f"{{{DC_NS}}}creator") if c.text and c.text.strip()
    ]
    return BookMetadata(
        title=_text(meta, f"{{{DC_NS}}}title") or "Untitled",
        creators=creators,
        publisher=_text(meta, f"{{{DC_NS}}}publisher"),
        description=_text(meta, f"{{{DC_NS}}}description"),
        identifier=_text(meta, f"{{{DC_NS}}}identifier") or "",
        subject=_text(meta, f"{{{DC_NS}}}subject"),
        date=_text(meta, f"{{{DC_NS}}}date"),
        contributor=_text(meta, f"{{{DC_NS}}}contributor"),
        language=_text(meta, f"{{{DC_NS}}}language"),
        cover=cover,
        source_format="epub",
    )


def _find_cover_id(opf_root, manifest: dict) -> str | None:
    for item_id, item in manifest.items():
        if "cover-image" in (item.get("properties") or "").split():
            return item_id
    for meta in opf_root.iter(f"{{{OPF_NS}}}meta"):
        if meta.get("name") == "cover" and meta.get("content") in manifest:
            return meta.get("content")
    return None


def parse_epub(epub_path: Path) -> ParseResult:
    """Main entry point. Returns ParseResult with chapters, nav, images and metadata."""
    epub_path = Path(epub_path)

    with _EpubSource(epub_path) as source:
        opf_path = _find_opf(source)
        opf_dir = posixpath.dirname(opf_path)
        opf_root = ET.fromstring(source.read(opf_path))

        manifest = {
            item.get("id"): item
            for item in opf_root.iter(f"{{{OPF_NS}}}item")
            if item.get("id") and item.get("href")
        }

        def rel(item) -> str:
            return posixpath.relpath(_resolve(opf_dir, item.get("href")), opf_dir or ".")

        def read_item(item) -> bytes:
            return source.read(_resolve(opf_dir, item.get("href")))

        nav: list[NavPoint] = []
        nav_item = next(
            (i for i in manifest.values() if "nav" in (i.get("properties") or "").split()), None
        )
        spine = opf_root.find(f"{{{OPF_NS}}}spine")
        ncx_item = manifest.get(spine.get("toc")) if spine is not None else None
        if ncx_item is None:
            ncx_item = next(
                (i for i in manifest.values() if i.get("media-type") == "application/x-dtbncx+xml"), None
            )
        if ncx_item is not None:
            ncx_path = _resolve(opf_dir, ncx_item.get("href"))
            nav = _parse_ncx(source.read(ncx_path), posixpath.dirname(ncx_path), opf_dir)
        elif nav_item is not None:
            nav_path = _resolve(opf_dir, nav_item.get("href"))
            nav = _parse_nav_document(source.read(nav_path), posixpath.dirname(nav_path), opf_dir)

        titles = {}
        for point in walk_nav(nav):
            titles.setdefault(point.href.partition("#")[0], point.title)

        chapters = []
        itemrefs = spine.findall(f"{{{OPF_NS}}}itemref") if spine is not None else []
        for ref in itemrefs:
            item = manifest.get(ref.get("idref"))
            if item is None or item.get("media-type") not in XHTML_TYPES:
                continue
            if item is nav_item or ref.get("linear") == "no":
                continue
            file_name = rel(item)
            html, text, heading = _extract_chapter(read_item(item))
            index = len(chapters) + 1
            chapters.append(Chapter(
                index=index,
                title=titles.get(file_name) or heading or f"Chapter {index}",
                file_name=file_name,
                html=html,
                text=text,
            ))

        cover = None
        cover_id = _find_cover_id(opf_root, manifest)
        if cover_id is not None:
            item = manifest[cover_id]
            cover = Asset(file_name=rel(item), media_type=item.get("media-type", ""), data=read_item(item))

        assets = [
            Asset(file_name=rel(item), media_type=item.get("media-type", ""), data=read_item(item))
            for item_id, item in manifest.items()
            if (item.get("media-type") or "").startswith("image/") and item_id != cover_id
        ]

        metadata = _extract_metadata(opf_root, cover)

    return ParseResult(chapters=chapters, metadata=metadata, nav=nav, assets=assets)

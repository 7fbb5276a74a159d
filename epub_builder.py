"""epub_builder.py — Assemble parsed chapters, navigation and images into an EPUB 3 file."""

import logging
import mimetypes
import uuid
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from xml.sax.saxutils import escape, quoteattr

from models import Asset, Chapter, NavPoint
from parsers.base import ParseResult

logger = logging.getLogger(__name__)

OEBPS = "OEBPS"
COVER_PAGE = "cover.xhtml"

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""


def _media_type(asset: Asset) -> str:
    if asset.media_type:
        return asset.media_type
    guessed, _ = mimetypes.guess_type(asset.file_name)
    return guessed or "application/octet-stream"


def _xhtml_page(title: str, body: str, lang: str) -> str:
    return "\n".join([
        '<?xml version="1.0" encoding="UTF-8"?>',
        "<!DOCTYPE html>",
        f'<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops" '
        f'lang={quoteattr(lang)} xml:lang={quoteattr(lang)}>',
        f"<head><title>{escape(title)}</title></head>",
        f"<body>{body}</body>",
        "</html>",
        "",
    ])


def chapter_xhtml(chapter: Chapter, lang: str = "en", with_title: bool = True) -> str:
    """A complete XHTML document for one chapter, optionally headed by its title."""
    body = chapter.html
    if with_title:
        body = f"<h1>{escape(chapter.title)}</h1>\n{body}"
    return _xhtml_page(chapter.title, body, lang)


def default_nav(chapters: list[Chapter]) -> list[NavPoint]:
    """One flat entry per chapter, for books without their own table of contents."""
    return [NavPoint(title=ch.title, href=ch.file_name, id=ch.index) for ch in chapters]


def build_nav_xhtml(nav: list[NavPoint], title: str, lang: str = "en") -> str:
    def render(points: list[NavPoint], indent: str) -> list[str]:
        lines = [f"{indent}<ol>"]
        for point in points:
            link = f"<a href={quoteattr(point.href)}>{escape(point.title)}</a>"
            if point.children:
                lines.append(f"{indent}  <li>{link}")
                lines += render(point.children, indent + "    ")
                lines.append(f"{indent}  </li>")
            else:
                lines.append(f"{indent}  <li>{link}</li>")
        lines.append(f"{indent}</ol>")
        return lines

    body = "\n".join([
        '<nav epub:type="toc" id="toc">',
        f"  <h1>{escape(title)}</h1>",
        *render(nav, "  "),
        "</nav>",
    ])
    return _xhtml_page(title, body, lang)


def build_ncx(nav: list[NavPoint], title: str, identifier: str) -> str:
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">',
        "  <head>",
        f"    <meta name=\"dtb:uid\" content={quoteattr(identifier)}/>",
        "  </head>",
        f"  <docTitle><text>{escape(title)}</text></docTitle>",
        "  <navMap>",
    ]
    order = 0

    def render(points: list[NavPoint], indent: str) -> None:
        nonlocal order
        for point in points:
            order += 1
            lines.append(f'{indent}<navPoint id="navPoint-{order}" playOrder="{order}">')
            lines.append(f"{indent}  <navLabel><text>{escape(point.title)}</text></navLabel>")
            lines.append(f"{indent}  <content src={quoteattr(point.href)}/>")
            render(point.children, indent + "  ")
            lines.append(f"{indent}</navPoint>")

    render(nav, "    ")
    lines += ["  </navMap>", "</ncx>", ""]
    return "\n".join(lines)


def build_opf(result: ParseResult, identifier: str, assets: list[Asset], with_cover_page: bool) -> str:
    meta = result.metadata
    lang = meta.language or "en"
    modified = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<package xmlns="http://www.idpf.org/2007/opf" version="3.0" unique-identifier="book-id">',
        '  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">',
        f'    <dc:identifier id="book-id">{escape(identifier)}</dc:identifier>',
        f"    <dc:title>{escape(meta.title)}</dc:title>",
        f"    <dc:language>{escape(lang)}</dc:language>",
    ]
    for creator in meta.creators:
        lines.append(f"    <dc:creator>{escape(creator)}</dc:creator>")
    for tag, value in [
        ("publisher", meta.publisher),
        ("description", meta.description),
        ("subject", meta.subject),
        ("date", meta.date),
        ("contributor", meta.contributor),
    ]:
        if value:
            lines.append(f"    <dc:{tag}>{escape(value)}</dc:{tag}>")
    lines.append(f'    <meta property="dcterms:modified">{modified}</meta>')
    if meta.cover is not None:
        lines.append('    <meta name="cover" content="cover-image"/>')
    lines.append("  </metadata>")

    lines.append("  <manifest>")
    lines.append('    <item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>')
    lines.append('    <item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>')
    if meta.cover is not None:
        lines.append(
            f'    <item id="cover-image" href={quoteattr(meta.cover.file_name)} '
            f'media-type={quoteattr(_media_type(meta.cover))} properties="cover-image"/>'
        )
        if with_cover_page:
            lines.append(f'    <item id="cover" href="{COVER_PAGE}" media-type="application/xhtml+xml"/>')
    for ch in result.chapters:
        lines.append(
            f'    <item id="chapter-{ch.index}" href={quoteattr(ch.file_name)} media-type="application/xhtml+xml"/>'
        )
    for i, asset in enumerate(assets, start=1):
        lines.append(
            f'    <item id="asset-{i}" href={quoteattr(asset.file_name)} media-type={quoteattr(_media_type(asset))}/>'
        )
    lines.append("  </manifest>")

    lines.append('  <spine toc="ncx">')
    if meta.cover is not None and with_cover_page:
        lines.append('    <itemref idref="cover" linear="no"/>')
    for ch in result.chapters:
        lines.append(f'    <itemref idref="chapter-{ch.index}"/>')
    lines.append("  </spine>")
    lines.append("</package>")
    lines.append("")
    return "\n".join(lines)


def build_epub(result: ParseResult, output_path: Path, chapter_titles: bool = True) -> Path:
    """
    Write an EPUB 3 package (with EPUB 2 NCX) for a parsed book.
    mimetype goes first and uncompressed, as the OCF container requires.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    meta = result.metadata
    lang = meta.language or "en"
    identifier = meta.identifier or f"urn:uuid:{uuid.uuid4()}"
    nav = result.nav or default_nav(result.chapters)

    cover_name = meta.cover.file_name if meta.cover is not None else None
    assets = [a for a in result.assets if a.file_name != cover_name]
    with_cover_page = meta.cover is not None and all(ch.file_name != COVER_PAGE for ch in result.chapters)

    with zipfile.ZipFile(output_path, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("mimetype", "application/epub+zip", compress_type=zipfile.ZIP_STORED)
        zf.writestr("META-INF/container.xml", CONTAINER_XML)
        zf.writestr(f"{OEBPS}/content.opf", build_opf(result, identifier, assets, with_cover_page))
        zf.writestr(f"{OEBPS}/toc.ncx", build_ncx(nav, meta.title, identifier))
        zf.writestr(f"{OEBPS}/nav.xhtml", build_nav_xhtml(nav, meta.title, lang))

        if meta.cover is not None:
            zf.writestr(f"{OEBPS}/{meta.cover.file_name}", meta.cover.data)
            if with_cover_page:
                body = f'<div><img src={quoteattr(meta.cover.file_name)} alt="Cover"/></div>'
                zf.writestr(f"{OEBPS}/{COVER_PAGE}", _xhtml_page("Cover", body, lang))

        for ch in result.chapters:
            zf.writestr(f"{OEBPS}/{ch.file_name}", chapter_xhtml(ch, lang, chapter_titles))
        for asset in assets:
            zf.writestr(f"{OEBPS}/{asset.file_name}", asset.data)

    logger.info("Wrote %s: %d chapters, %d images", output_path, len(result.chapters), len(assets))
    return output_path

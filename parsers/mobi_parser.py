"""parsers/mobi_parser.py — Build chapters, navigation and images from a MOBI file."""

import re
from pathlib import Path

from bs4 import BeautifulSoup

from mobidoc import MobiReader, TextSection
from mobidoc.reader import PAGE_BREAK, decode_text
from mobidoc.resources import MobiNav, image_type
from models import Asset, BookMetadata, Chapter, NavPoint
from parsers.base import ParseResult, clean_text

LINK_FILEPOS_PATTERN = re.compile(rb"""<[^<>]+filepos=['"]?0*([0-9]+)['"]?[^<>]*>""", re.IGNORECASE)


def chapter_file_name(index: int) -> str:
    return f"chapter_{index:03d}.xhtml"


def _link_targets(raw: bytes, nav: list[MobiNav]) -> set[int]:
    targets = {int(m.group(1)) for m in LINK_FILEPOS_PATTERN.finditer(raw)}
    for root in nav:
        targets.update(n.filepos for n in root.walk() if n.filepos is not None)
    return targets


def _section_markup(raw: bytes, section: TextSection, targets: set[int], encoding: int) -> str:
    """
    Section bytes with <a id="fileposN"/> anchors inserted where links point.
    Targets on the section's own page-break marker anchor at the start of its data.
    """
    data_start = section.start if section.index == 0 else section.start + len(PAGE_BREAK)
    pieces = []
    pos = data_start
    for target in sorted(t for t in targets if section.start <= t < section.end):
        at = max(target, data_start)
        pieces.append(raw[pos:at])
        pieces.append(b'<a id="filepos%d"></a>' % target)
        pos = at
    pieces.append(raw[pos:section.end])
    return decode_text(b"".join(pieces), encoding)


def _section_title(section: TextSection, nav: list[MobiNav]) -> str | None:
    for root in nav:
        for entry in root.walk():
            if entry.filepos is not None and section.start <= entry.filepos < section.end:
                return entry.title
    return None


def _rewrite_markup(markup: str, image_names: dict[int, str], file_for) -> tuple[str, str, str | None]:
    """
    Turn MOBI markup into a portable XHTML body fragment.
    Returns (html, plain text, first heading or None).
    """
    soup = BeautifulSoup(markup, "lxml")
    for tag in soup.find_all(["head", "guide"]):
        tag.decompose()
    for tag in soup.find_all(lambda t: t.name.startswith("mbp:")):
        tag.unwrap()

    for img in soup.find_all("img"):
        recindex = img.get("recindex")
        if recindex is not None and recindex.isdigit() and int(recindex) in image_names:
            img["src"] = f"images/{image_names[int(recindex)]}"
            del img["recindex"]
            img.attrs.setdefault("alt", "")

    for a in soup.find_all("a"):
        filepos = a.get("filepos")
        if filepos is None:
            continue
        del a["filepos"]
        if filepos.isdigit():
            pos = int(filepos)
            a["href"] = f"{file_for(pos)}#filepos{pos}"

    body = soup.body or soup
    heading = body.find(["h1", "h2", "h3"])
    heading_text = heading.get_text(" ", strip=True) if heading else None
    return body.decode_contents().strip(), clean_text(body.get_text("\n")), heading_text or None


def _has_content(markup: str) -> bool:
    soup = BeautifulSoup(markup, "lxml")
    body = soup.body or soup
    return bool(body.get_text(strip=True)) or body.find("img") is not None


def _nav_points(nav: list[MobiNav], file_for) -> list[NavPoint]:
    points = []
    for entry in nav:
        href = file_for(entry.filepos) if entry.filepos is not None else chapter_file_name(1)
        if entry.filepos is not None:
            href += f"#filepos{entry.filepos}"
        points.append(NavPoint(
            title=entry.title,
            href=href,
            id=entry.id,
            children=_nav_points(entry.children, file_for),
        ))
    return points


def parse_mobi(file_path: Path) -> ParseResult:
    """Main entry point. Returns ParseResult with chapters, nav, images and metadata."""
    file_path = Path(file_path)

    with MobiReader.open(file_path) as reader:
        info = reader.read_metadata()
        encoding = reader.mobi_header.text_encoding
        raw = reader.read_text_raw()
        sections = reader.load_text()
        nav = reader.read_nav(sections) or []
        images = reader.read_images()
        cover_data = reader.read_cover()
        language = reader.language

    image_names = {img.recindex: img.file_name for img in images}
    targets = _link_targets(raw, nav)

    # Which chapter file each section ends up in; empty sections defer to the next one.
    markups = [_section_markup(raw, s, targets, encoding) for s in sections]
    kept = [i for i, markup in enumerate(markups) if _has_content(markup)]
    section_files: dict[int, str] = {}
    for number, i in enumerate(kept, start=1):
        section_files[i] = chapter_file_name(number)
    pending = []
    for i in range(len(sections)):
        pending.append(i)
        if i in section_files:
            for j in pending:
                section_files[j] = section_files[i]
            pending = []
    last_file = chapter_file_name(max(len(kept), 1))
    for j in pending:
        section_files[j] = last_file

    def file_for(pos: int) -> str:
        for section in sections:
            if section.start <= pos < section.end:
                return section_files[section.index]
        return last_file

    chapters = []
    for number, i in enumerate(kept, start=1):
        html, text, heading = _rewrite_markup(markups[i], image_names, file_for)
        title = _section_title(sections[i], nav) or heading or f"Section {number}"
        chapters.append(Chapter(
            index=number,
            title=title,
            file_name=chapter_file_name(number),
            html=html,
            text=text,
        ))

    cover = None
    if cover_data is not None:
        ext, media_type = image_type(cover_data)
        cover = Asset(file_name=f"cover.{ext}", media_type=media_type, data=cover_data)

    metadata = BookMetadata(
        title=info.title or file_path.stem.replace("_", " ").title(),
        creators=info.creators,
        publisher=info.publisher,
        description=info.description,
        identifier=info.identifier,
        subject=info.subject,
        date=info.date,
        contributor=info.contributor,
        language=language,
        cover=cover,
        source_format="mobi",
    )
    assets = [
        Asset(file_name=f"images/{img.file_name}", media_type=img.media_type, data=img.data)
        for img in images
    ]
    return ParseResult(
        chapters=chapters,
        metadata=metadata,
        nav=_nav_points(nav, file_for),
        assets=assets,
    )

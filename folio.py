#!/usr/bin/env python3
"""
folio — Inspect, unpack and convert EPUB and MOBI e-books.

Supported input formats: EPUB (packed or unpacked), MOBI (.mobi, .azw, .prc)
Output format: EPUB 3

Quick start:
  python folio.py info book.mobi
  python folio.py nav book.mobi
  python folio.py convert book.mobi -o book.epub
"""

import argparse
import logging
import os
import re
import sys
from pathlib import Path

from dotenv import load_dotenv
from tqdm import tqdm

ERRORS = (OSError, EOFError, UnicodeDecodeError, ValueError)


def env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name, "").strip().lower()
    if not value:
        return default
    return value not in ("0", "false", "no", "off")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    output_dir = Path(os.getenv("FOLIO_OUTPUT_DIR", "output"))

    parser = argparse.ArgumentParser(
        description="Inspect, unpack and convert EPUB and MOBI e-books",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show metadata and header details:
  python folio.py info book.mobi

  # Print the table of contents:
  python folio.py nav book.epub

  # List chapters, then print chapters 2-4 as bare body markup:
  python folio.py chapters book.mobi
  python folio.py chapters book.mobi --chapters 2-4 --body-only

  # Extract the cover and all images:
  python folio.py cover book.mobi -o cover.jpg
  python folio.py images book.mobi -d images/

  # Unpack a MOBI into html/ and images/:
  python folio.py unpack book.mobi -d unpacked/

  # Convert to EPUB:
  python folio.py convert book.mobi -o book.epub
        """,
    )
    parser.add_argument(
        "-y", "--yes", action="store_true", default=False,
        help="Overwrite existing output files without asking",
    )
    parser.add_argument(
        "--log-level", default=os.getenv("FOLIO_LOG_LEVEL", "WARNING").upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: $FOLIO_LOG_LEVEL or WARNING)",
    )

    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    p = sub.add_parser("info", help="Show book metadata")
    p.add_argument("input_path", type=Path, help="Path to EPUB or MOBI file")

    p = sub.add_parser("nav", help="Print the table of contents")
    p.add_argument("input_path", type=Path)

    p = sub.add_parser("cover", help="Extract the cover image")
    p.add_argument("input_path", type=Path)
    p.add_argument(
        "-o", "--output", type=Path, default=None, metavar="PATH",
        help="Output file (default: <output-dir>/<cover file name>)",
    )
    p.add_argument("--output-dir", type=Path, default=output_dir, metavar="DIR")

    p = sub.add_parser("images", help="Extract all images")
    p.add_argument("input_path", type=Path)
    p.add_argument(
        "-d", "--output-dir", type=Path, default=output_dir / "images", metavar="DIR",
        help="Directory for images (default: $FOLIO_OUTPUT_DIR/images)",
    )

    p = sub.add_parser("chapters", help="List, print or write chapters")
    p.add_argument("input_path", type=Path)
    p.add_argument(
        "--chapters", type=str, default=None, metavar="RANGE",
        help="Only these chapters, e.g. '1-3' or '5'; without it the chapter list is printed",
    )
    p.add_argument(
        "-d", "--output-dir", type=Path, default=None, metavar="DIR",
        help="Write chapter files here instead of printing them",
    )
    p.add_argument(
        "-b", "--body-only", action="store_true", default=False,
        help="Only the body markup, not a complete XHTML document",
    )

    p = sub.add_parser("unpack", help="Unpack into html/ and images/ directories")
    p.add_argument("input_path", type=Path)
    p.add_argument("-d", "--output-dir", type=Path, default=output_dir, metavar="DIR")

    p = sub.add_parser("convert", help="Convert to EPUB")
    p.add_argument("input_path", type=Path)
    p.add_argument("-o", "--output", type=Path, required=True, metavar="PATH", help="Output .epub file")
    p.add_argument(
        "-n", "--no-title", dest="chapter_titles", action="store_false",
        default=env_flag("FOLIO_CHAPTER_TITLES", True),
        help="Do not prepend an <h1> chapter title to each chapter",
    )

    return parser.parse_args(argv)


def parse_chapter_range(range_str: str) -> range:
    """Parse '3-7' or '5' into a range (1-indexed, inclusive)."""
    if "-" in range_str:
        start, end = range_str.split("-", 1)
        return range(int(start), int(end) + 1)
    n = int(range_str)
    return range(n, n + 1)


def safe_name(title: str, limit: int = 40) -> str:
    name = re.sub(r"[^\w\- ]+", "", title)[:limit].strip().replace(" ", "_")
    return name or "untitled"


def confirm_overwrite(path: Path, yes: bool) -> bool:
    if yes or not path.exists():
        return True
    answer = input(f"{path} exists. Overwrite? (y/n) ").strip().lower()
    return answer == "y"


def write_file(path: Path, data: bytes, yes: bool) -> bool:
    if not confirm_overwrite(path, yes):
        print(f"  Skipped {path}")
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return True


def print_chapter_list(chapters, metadata=None, show_chars: bool = True):
    if metadata:
        print(f"Title:  {metadata.title}")
        print(f"Author: {metadata.author}")
        print(f"Format: {metadata.source_format}")
    print(f"\nFound {len(chapters)} chapters:")
    print("-" * 70)
    total_chars = 0
    for ch in chapters:
        word_count = len(ch.text.split())
        char_count = len(ch.text)
        total_chars += char_count
        if show_chars:
            print(f"  {ch.index:2d}. {ch.title[:50]:<50} {word_count:>6} words  {char_count:>7} chars")
        else:
            print(f"  {ch.index:2d}. {ch.title}")
    print("-" * 70)
    if show_chars:
        print(f"  Total: {total_chars:,} chars")
    print()


def print_nav(nav, depth: int = 0, show_id: bool = False):
    for point in nav:
        label = f"id=[{point.id}]" if show_id else f"href=[{point.href}]"
        print(f"{' ' * depth}{point.title} {label}")
        print_nav(point.children, depth + 2, show_id)


def cmd_info(args) -> None:
    from parsers import detect_format, parse_file

    if detect_format(args.input_path) == "mobi":
        from mobidoc import MobiReader
        from mobidoc.headers import palm_timestamp

        with MobiReader.open(args.input_path) as reader:
            meta = reader.read_metadata()
            pdb = reader.pdb_header
            doc = reader.mobi_doc_header
            mobi = reader.mobi_header
            print(f"Title:       {meta.title}")
            print(f"Author:      {', '.join(meta.creators) or 'Unknown'}")
            print(f"Publisher:   {meta.publisher or ''}")
            print(f"Date:        {meta.date or ''}")
            print(f"Identifier:  {meta.identifier}")
            print(f"Subject:     {meta.subject or ''}")
            print(f"Language:    {reader.language or ''}")
            print(f"Description: {meta.description or ''}")
            print("Format:      mobi")
            print(f"Compression: {doc.compression}")
            print(f"Encoding:    {mobi.text_encoding}")
            print(f"Records:     {pdb.number_of_records} ({doc.record_count} text)")
            print(f"EXTH:        {'yes' if mobi.has_exth else 'no'}")
            for label, value in [("Created", pdb.creation_date), ("Modified", pdb.modify_date)]:
                stamp = palm_timestamp(value)
                print(f"{label + ':':<12} {stamp.isoformat() if stamp else ''}")
        return

    result = parse_file(args.input_path)
    meta = result.metadata
    print(f"Title:       {meta.title}")
    print(f"Author:      {meta.author}")
    print(f"Publisher:   {meta.publisher or ''}")
    print(f"Date:        {meta.date or ''}")
    print(f"Identifier:  {meta.identifier}")
    print(f"Subject:     {meta.subject or ''}")
    print(f"Language:    {meta.language or ''}")
    print(f"Description: {meta.description or ''}")
    print(f"Format:      {meta.source_format}")
    print(f"Chapters:    {len(result.chapters)}")


def cmd_nav(args) -> None:
    from parsers import parse_file

    result = parse_file(args.input_path)
    if not result.nav:
        print("No table of contents found.")
        return
    print_nav(result.nav, show_id=result.metadata.source_format == "mobi")


def cmd_cover(args) -> None:
    from parsers import parse_file

    cover = parse_file(args.input_path).metadata.cover
    if cover is None:
        print("No cover image found.")
        return
    output = args.output or args.output_dir / Path(cover.file_name).name
    if write_file(output, cover.data, args.yes):
        print(f"Cover written to: {output}")


def cmd_images(args) -> None:
    from parsers import parse_file

    assets = parse_file(args.input_path).assets
    if not assets:
        print("No images found.")
        return
    written = 0
    for asset in tqdm(assets, desc="  Images", unit="img"):
        if write_file(args.output_dir / Path(asset.file_name).name, asset.data, args.yes):
            written += 1
    print(f"{written} images written to: {args.output_dir}")


def cmd_chapters(args) -> None:
    from epub_builder import chapter_xhtml
    from parsers import parse_file

    result = parse_file(args.input_path)
    all_chapters = result.chapters

    if not args.chapters and args.output_dir is None:
        print_chapter_list(all_chapters, result.metadata)
        return

    if args.chapters:
        chapter_range = parse_chapter_range(args.chapters)
        chapters = [ch for ch in all_chapters if ch.index in chapter_range]
        if not chapters:
            raise ValueError(
                f"No chapters matched range '{args.chapters}' (book has {len(all_chapters)} chapters)"
            )
    else:
        chapters = all_chapters

    lang = result.metadata.language or "en"
    for ch in chapters:
        content = ch.html if args.body_only else chapter_xhtml(ch, lang, with_title=False)
        if args.output_dir is None:
            print(content)
            continue
        path = args.output_dir / f"{ch.index:02d}.{safe_name(ch.title)}.{'html' if args.body_only else 'xhtml'}"
        if write_file(path, content.encode("utf-8"), args.yes):
            print(f"  Wrote {path}")


def cmd_unpack(args) -> None:
    from epub_builder import chapter_xhtml
    from parsers import parse_file

    result = parse_file(args.input_path)
    image_dir = args.output_dir / "images"
    html_dir = args.output_dir / "html"
    lang = result.metadata.language or "en"

    print(f"Unpacking to: {args.output_dir}")
    for asset in tqdm(result.assets, desc="  Images", unit="img"):
        write_file(image_dir / Path(asset.file_name).name, asset.data, args.yes)
    if result.metadata.cover is not None:
        cover = result.metadata.cover
        write_file(image_dir / Path(cover.file_name).name, cover.data, args.yes)

    for ch in tqdm(result.chapters, desc="  Chapters", unit="ch"):
        # Chapter markup refers to images/<name>; html/ sits next to images/.
        markup = chapter_xhtml(ch, lang, with_title=False).replace('src="images/', 'src="../images/')
        write_file(html_dir / f"{ch.index:02d}.{safe_name(ch.title)}.html", markup.encode("utf-8"), args.yes)

    print(f"Done! {len(result.chapters)} chapters, {len(result.assets)} images.")


def cmd_convert(args) -> None:
    from epub_builder import build_epub
    from parsers import parse_file

    print(f"Parsing: {args.input_path}")
    result = parse_file(args.input_path)
    print_chapter_list(result.chapters, result.metadata, show_chars=False)

    if not confirm_overwrite(args.output, args.yes):
        print("Aborted.")
        return
    print(f"Writing EPUB: {args.output}")
    build_epub(result, args.output, chapter_titles=args.chapter_titles)
    print(f"\nDone! EPUB saved to: {args.output}")


COMMANDS = {
    "info": cmd_info,
    "nav": cmd_nav,
    "cover": cmd_cover,
    "images": cmd_images,
    "chapters": cmd_chapters,
    "unpack": cmd_unpack,
    "convert": cmd_convert,
}


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.input_path.exists():
        print(f"ERROR: File not found: {args.input_path}")
        return 1

    try:
        COMMANDS[args.command](args)
    except ERRORS as e:
        print(f"ERROR: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

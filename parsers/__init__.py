"""parsers/ — Multi-format e-book parser package."""

from pathlib import Path

from mobidoc import is_mobi
from parsers.base import ParseResult

SUPPORTED_EXTENSIONS = {".epub", ".mobi", ".azw", ".prc"}


def detect_format(file_path: Path) -> str | None:
    """Sniff 'epub' or 'mobi' from content, falling back to the extension."""
    from parsers.epub_parser import is_epub

    file_path = Path(file_path)
    if file_path.is_dir() or is_epub(file_path):
        return "epub"
    if file_path.is_file():
        with open(file_path, "rb") as f:
            if is_mobi(f):
                return "mobi"

    suffix = file_path.suffix.lower()
    if suffix == ".epub":
        return "epub"
    if suffix in (".mobi", ".azw", ".prc"):
        return "mobi"
    return None


def parse_file(file_path: Path) -> ParseResult:
    """Dispatch to the appropriate parser based on file content or extension."""
    file_path = Path(file_path)
    fmt = detect_format(file_path)

    if fmt == "epub":
        from parsers.epub_parser import parse_epub
        return parse_epub(file_path)
    elif fmt == "mobi":
        from parsers.mobi_parser import parse_mobi
        return parse_mobi(file_path)
    else:
        raise ValueError(
            f"Unsupported file format: '{file_path.suffix.lower()}'. "
            f"Supported: {', '.join(sorted(SUPPORTED_EXTENSIONS))}"
        )

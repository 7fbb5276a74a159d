"""mobidoc/reader.py — Lazy MOBI reader: headers on open, text/images/nav on demand."""

import enum
import itertools
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from mobidoc.binary import ByteReader
from mobidoc.errors import InvalidArchiveError, UnsupportedArchiveError
from mobidoc.headers import (
    ENCODING_CP1252,
    EXTHHeader,
    ExthMetadata,
    MOBIDOCHeader,
    MOBIHeader,
    PDBHeader,
    is_mobi,
    language_code,
)
from mobidoc.palmdoc import decode_record, strip_trailing_data
from mobidoc.resources import (
    MobiAsset,
    MobiNav,
    find_guide_filepos,
    find_image_recindexes,
    image_file_name,
    image_type,
    parse_nav_html,
)

logger = logging.getLogger(__name__)

PAGE_BREAK = b"<mbp:pagebreak/>"


@dataclass
class TextSection:
    index: int
    start: int
    end: int
    data: str


class CacheState(enum.Enum):
    EMPTY = "empty"
    POPULATED = "populated"
    RELEASED = "released"


def decode_text(data: bytes, text_encoding: int) -> str:
    """1252: one byte per character. Anything else: strict UTF-8."""
    if text_encoding == ENCODING_CP1252:
        return data.decode("latin-1")
    return data.decode("utf-8")


def split_sections(text: bytes, text_encoding: int) -> list[TextSection]:
    """
    Split text on <mbp:pagebreak/>. Sections tile the buffer: each one starts
    where the previous ended (at its marker) and its data excludes the marker.
    """
    sections = []
    start = 0
    data_start = 0
    while True:
        end = text.find(PAGE_BREAK, data_start)
        if end == -1:
            end = len(text)
        sections.append(TextSection(
            index=len(sections),
            start=start,
            end=end,
            data=decode_text(text[data_start:end], text_encoding),
        ))
        if end == len(text):
            break
        start = end
        data_start = end + len(PAGE_BREAK)
    return sections


class MobiReader:
    """
    Reader over any seekable binary stream. PDB, PalmDOC, MOBI and EXTH headers
    are parsed on construction; text is decompressed on first use and cached
    until release_memory() is called.

    Not safe for concurrent use: every read moves the shared stream position.
    """

    def __init__(self, stream: BinaryIO):
        self.stream = stream
        self._owns_stream = False
        self.reader = ByteReader(stream)

        if not is_mobi(stream):
            raise UnsupportedArchiveError("Not a MOBI file: missing BOOKMOBI signature")
        self.reader.seek(0)

        self.pdb_header = PDBHeader.load(self.reader)
        if not self.pdb_header.records:
            raise InvalidArchiveError("MOBI file has no records")
        self.mobi_doc_header = MOBIDOCHeader.load(self.reader, self.pdb_header.records[0].offset)
        self.mobi_header = MOBIHeader.load(self.reader)
        self.exth_header = EXTHHeader.load(self.reader, self.mobi_header.exth_flags)

        # Sentinel end offset so the last record ends at the end of the stream.
        self._offsets = [r.offset for r in self.pdb_header.records] + [self.reader.size()]

        self._text_cache: bytes | None = None
        self.cache_state = CacheState.EMPTY
        self._nav_ids = itertools.count(1)

        logger.debug(
            "Opened MOBI: compression=%d text_records=%d first_image=%d",
            self.mobi_doc_header.compression,
            self.mobi_doc_header.record_count,
            self.mobi_header.first_image_index,
        )

    @classmethod
    def open(cls, path: Path) -> "MobiReader":
        stream = open(path, "rb")
        try:
            reader = cls(stream)
        except BaseException:
            stream.close()
            raise
        reader._owns_stream = True
        return reader

    def close(self) -> None:
        self.release_memory()
        if self._owns_stream:
            self.stream.close()

    def __enter__(self) -> "MobiReader":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ---- records -----------------------------------------------------------

    def record_range(self, index: int) -> tuple[int, int]:
        """Absolute (start, end) byte range of a record."""
        if not 0 <= index < self.pdb_header.number_of_records:
            raise InvalidArchiveError(
                f"Record {index} out of range (file has {self.pdb_header.number_of_records})"
            )
        start, end = self._offsets[index], self._offsets[index + 1]
        if end < start:
            raise InvalidArchiveError(f"Record {index} has decreasing offsets {start} > {end}")
        return start, end

    def read_record(self, index: int) -> bytes:
        start, end = self.record_range(index)
        self.reader.seek(start)
        return self.reader.read_bytes(end - start)

    def image_record(self, offset: int) -> bytes:
        """Raw bytes of the image record `offset` places after first_image_index."""
        return self.read_record(self.mobi_header.first_image_index + offset)

    # ---- metadata ----------------------------------------------------------

    def read_title(self) -> str:
        """The full-name string from record 0. Stream position is restored."""
        current = self.reader.tell()
        try:
            self.reader.seek(self.mobi_header.full_name_offset)
            raw = self.reader.read_bytes(self.mobi_header.full_name_length)
        finally:
            self.reader.seek(current)
        return decode_text(raw, self.mobi_header.text_encoding)

    def read_metadata(self) -> ExthMetadata:
        if self.exth_header is not None:
            meta = self.exth_header.metadata()
        else:
            meta = ExthMetadata()
        if not meta.title:
            meta.title = self.read_title()
        return meta

    @property
    def language(self) -> str | None:
        return language_code(self.mobi_header.locale)

    # ---- text --------------------------------------------------------------

    def read_text_raw(self) -> bytes:
        """All text records, stripped and decompressed, concatenated. Cached."""
        if self._text_cache is not None:
            return self._text_cache

        flags = self.mobi_header.extra_record_data_flags
        compression = self.mobi_doc_header.compression
        parts = []
        # Record 0 holds the headers; text starts at record 1.
        for index in range(1, self.mobi_doc_header.record_count + 1):
            record = strip_trailing_data(self.read_record(index), flags)
            parts.append(decode_record(record, compression))

        self._text_cache = b"".join(parts)
        self.cache_state = CacheState.POPULATED
        logger.debug("Decoded %d bytes of text", len(self._text_cache))
        return self._text_cache

    def load_text(self) -> list[TextSection]:
        return split_sections(self.read_text_raw(), self.mobi_header.text_encoding)

    def release_memory(self) -> None:
        if self._text_cache is not None:
            self._text_cache = None
            self.cache_state = CacheState.RELEASED
            logger.debug("Released text cache")

    # ---- resources ---------------------------------------------------------

    def read_cover(self) -> bytes | None:
        """Cover image bytes (falling back to the thumbnail), or None."""
        if self.exth_header is None:
            return None
        offset = self.exth_header.cover_offset
        if offset is None:
            offset = self.exth_header.thumbnail_offset
        if offset is None:
            return None
        return self.image_record(offset)

    def read_images(self) -> list[MobiAsset]:
        """Every image referenced from the text by recindex (1-based)."""
        assets = []
        for recindex in find_image_recindexes(self.read_text_raw()):
            if recindex < 1:
                logger.warning("Ignoring image reference with recindex %d", recindex)
                continue
            try:
                data = self.image_record(recindex - 1)
            except InvalidArchiveError as e:
                logger.warning("Skipping image recindex %d: %s", recindex, e)
                continue
            assets.append(MobiAsset(
                file_name=image_file_name(recindex, data),
                media_type=image_type(data)[1],
                data=data,
                recindex=recindex,
            ))
        return assets

    def read_nav(self, sections: list[TextSection] | None = None) -> list[MobiNav] | None:
        """Navigation tree from the guide's table of contents, or None if there is none."""
        filepos = find_guide_filepos(self.read_text_raw())
        if filepos is None:
            return None
        if sections is None:
            sections = self.load_text()
        toc = next((s for s in sections if s.start <= filepos < s.end), None)
        if toc is None:
            logger.debug("Guide filepos %d is outside the text", filepos)
            return None
        nav = parse_nav_html(toc.data, self._nav_ids)
        return nav or None

"""mobidoc/headers.py — PDB, PalmDOC, MOBI and EXTH header decoders.

Layout references:
  https://wiki.mobileread.com/wiki/PDB#Palm_Database_Format
  https://wiki.mobileread.com/wiki/MOBI#MOBI_Header
  https://wiki.mobileread.com/wiki/MOBI#EXTH_Header
"""

import html
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import BinaryIO

from mobidoc.binary import ByteReader
from mobidoc.errors import InvalidArchiveError, UnsupportedArchiveError

logger = logging.getLogger(__name__)

MAGIC_OFFSET = 60
MAGIC = b"BOOKMOBI"

PALMDOC_HEADER_SIZE = 16

COMPRESSION_NONE = 1
COMPRESSION_PALMDOC = 2
COMPRESSION_HUFFCDIC = 17480

ENCODING_CP1252 = 1252

EXTH_FLAG = 0x40
NO_INDEX = 0xFFFFFFFF

EXTH_CREATOR = 100
EXTH_PUBLISHER = 101
EXTH_DESCRIPTION = 103
EXTH_IDENTIFIER = 104
EXTH_SUBJECT = 105
EXTH_DATE = 106
EXTH_CONTRIBUTOR = 108
EXTH_COVER_OFFSET = 201
EXTH_THUMBNAIL_OFFSET = 202
EXTH_TITLE = 503

# Windows LCID primary language ids -> ISO 639-1 (subset seen in practice).
LANGUAGES = {
    1: "ar", 2: "bg", 3: "ca", 4: "zh", 5: "cs", 6: "da", 7: "de", 8: "el",
    9: "en", 10: "es", 11: "fi", 12: "fr", 13: "he", 14: "hu", 15: "is",
    16: "it", 17: "ja", 18: "ko", 19: "nl", 20: "no", 21: "pl", 22: "pt",
    24: "ro", 25: "ru", 26: "hr", 27: "sk", 29: "sv", 30: "th", 31: "tr",
    33: "id", 34: "uk", 35: "be", 36: "sl", 37: "et", 38: "lv", 39: "lt",
    41: "fa", 42: "vi", 57: "hi",
}


def is_mobi(stream: BinaryIO) -> bool:
    """Return True if bytes 60..68 of the stream are BOOKMOBI. Position is preserved."""
    current = stream.tell()
    try:
        stream.seek(MAGIC_OFFSET, os.SEEK_SET)
        return stream.read(len(MAGIC)) == MAGIC
    finally:
        stream.seek(current, os.SEEK_SET)


def palm_timestamp(value: int) -> datetime | None:
    """
    Convert a PDB time field to an aware datetime.
    Top bit set: unsigned seconds since 1904-01-01. Otherwise: signed seconds since 1970-01-01.
    """
    if value == 0:
        return None
    if value & 0x80000000:
        return datetime(1904, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=value)
    return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=value)


def language_code(locale: int) -> str | None:
    """Map a MOBI locale (low byte = language id) to an ISO 639-1 code."""
    return LANGUAGES.get(locale & 0xFF)


@dataclass(frozen=True)
class PDBRecordInfo:
    offset: int
    attribute: int
    unique_id: int  # 24 bits


@dataclass(frozen=True)
class PDBHeader:
    name: str  # 32 bytes, NUL padded
    attribute: int
    version: int
    creation_date: int
    modify_date: int
    last_backup_date: int
    modification_number: int
    app_info_id: int
    sort_info_id: int
    unique_id_seed: int
    next_record_list_id: int
    number_of_records: int
    records: tuple[PDBRecordInfo, ...]

    @property
    def title(self) -> str:
        return self.name.split("\x00", 1)[0]

    @classmethod
    def load(cls, reader: ByteReader) -> "PDBHeader":
        name = reader.read_string(32)
        attribute = reader.read_u16()
        version = reader.read_u16()
        creation_date = reader.read_u32()
        modify_date = reader.read_u32()
        last_backup_date = reader.read_u32()
        modification_number = reader.read_u32()
        app_info_id = reader.read_u32()
        sort_info_id = reader.read_u32()

        if reader.read_bytes(8) != MAGIC:
            raise UnsupportedArchiveError("Not a MOBI file: missing BOOKMOBI signature")

        unique_id_seed = reader.read_u32()
        next_record_list_id = reader.read_u32()
        number_of_records = reader.read_u16()

        records = []
        for _ in range(number_of_records):
            offset = reader.read_u32()
            packed = reader.read_u32()
            records.append(PDBRecordInfo(
                offset=offset,
                attribute=packed >> 24,
                unique_id=packed & 0x00FFFFFF,
            ))

        logger.debug("PDB header: %d records", number_of_records)
        return cls(
            name=name,
            attribute=attribute,
            version=version,
            creation_date=creation_date,
            modify_date=modify_date,
            last_backup_date=last_backup_date,
            modification_number=modification_number,
            app_info_id=app_info_id,
            sort_info_id=sort_info_id,
            unique_id_seed=unique_id_seed,
            next_record_list_id=next_record_list_id,
            number_of_records=number_of_records,
            records=tuple(records),
        )


@dataclass(frozen=True)
class MOBIDOCHeader:
    """The 16-byte PalmDOC header at the start of record 0."""
    compression: int
    length: int
    record_count: int
    record_size: int
    position: int
    encrypt_type: int = 0

    @classmethod
    def load(cls, reader: ByteReader, offset: int) -> "MOBIDOCHeader":
        reader.seek(offset)
        compression = reader.read_u16()
        reader.skip(2)
        length = reader.read_u32()
        record_count = reader.read_u16()
        record_size = reader.read_u16()
        position = reader.read_u32()
        encrypt_type = 0
        if compression == COMPRESSION_HUFFCDIC:
            encrypt_type = (position >> 16) & 0xFFFF
        return cls(
            compression=compression,
            length=length,
            record_count=record_count,
            record_size=record_size,
            position=position,
            encrypt_type=encrypt_type,
        )


@dataclass(frozen=True)
class MOBIHeader:
    header_len: int
    mobi_type: int
    text_encoding: int
    unique_id: int
    file_version: int
    orthographic_index: int
    inflection_index: int
    index_names: int
    index_keys: int
    extra_index: tuple[int, ...]
    first_non_book_index: int
    full_name_offset: int  # absolute file offset
    full_name_length: int
    locale: int
    input_language: int
    output_language: int
    min_version: int
    first_image_index: int
    huffman_record_offset: int
    huffman_record_count: int
    huffman_table_offset: int
    huffman_table_length: int
    exth_flags: int
    drm_offset: int
    drm_count: int
    drm_size: int
    drm_flags: int
    first_content_record_number: int
    last_content_record_number: int
    fcis_record_number: int
    flis_record_number: int
    first_compilation_data_section_count: int
    number_of_compilation_data_sections: int
    extra_record_data_flags: int
    indx_record_offset: int

    @property
    def has_exth(self) -> bool:
        return bool(self.exth_flags & EXTH_FLAG)

    @classmethod
    def load(cls, reader: ByteReader) -> "MOBIHeader":
        start = reader.tell()
        if reader.read_bytes(4) != b"MOBI":
            raise UnsupportedArchiveError("Not a MOBI file: missing MOBI header")

        header_len = reader.read_u32()
        mobi_type = reader.read_u32()
        text_encoding = reader.read_u32()
        unique_id = reader.read_u32()
        file_version = reader.read_u32()
        orthographic_index = reader.read_u32()
        inflection_index = reader.read_u32()
        index_names = reader.read_u32()
        index_keys = reader.read_u32()
        extra_index = tuple(reader.read_u32() for _ in range(6))
        first_non_book_index = reader.read_u32()
        # Stored relative to record 0, which begins with the PalmDOC header.
        full_name_offset = reader.read_u32() + start - PALMDOC_HEADER_SIZE
        full_name_length = reader.read_u32()
        locale = reader.read_u32()
        input_language = reader.read_u32()
        output_language = reader.read_u32()
        min_version = reader.read_u32()
        first_image_index = reader.read_u32()
        huffman_record_offset = reader.read_u32()
        huffman_record_count = reader.read_u32()
        huffman_table_offset = reader.read_u32()
        huffman_table_length = reader.read_u32()
        exth_flags = reader.read_u32()

        reader.skip(32)
        reader.read_u32()
        drm_offset = reader.read_u32()
        drm_count = reader.read_u32()
        drm_size = reader.read_u32()
        drm_flags = reader.read_u32()
        reader.read_u64()
        first_content_record_number = reader.read_u16()
        last_content_record_number = reader.read_u16()
        reader.read_u32()
        fcis_record_number = reader.read_u32()
        reader.read_u32()
        flis_record_number = reader.read_u32()
        reader.read_u32()
        reader.read_u64()
        reader.read_u32()
        first_compilation_data_section_count = reader.read_u32()
        number_of_compilation_data_sections = reader.read_u32()
        reader.read_u32()
        extra_record_data_flags = reader.read_u32()
        indx_record_offset = reader.read_u32()

        # Trailing entries only exist from format version 5 with a long enough header.
        if header_len < 0xE4 or file_version < 5:
            extra_record_data_flags = 0

        # Header length varies (232, 256, ...); skip any vendor padding.
        reader.seek(start + header_len)

        logger.debug(
            "MOBI header: len=%d type=%d encoding=%d version=%d exth_flags=%#x extra_flags=%#x",
            header_len, mobi_type, text_encoding, file_version, exth_flags, extra_record_data_flags,
        )
        return cls(
            header_len=header_len,
            mobi_type=mobi_type,
            text_encoding=text_encoding,
            unique_id=unique_id,
            file_version=file_version,
            orthographic_index=orthographic_index,
            inflection_index=inflection_index,
            index_names=index_names,
            index_keys=index_keys,
            extra_index=extra_index,
            first_non_book_index=first_non_book_index,
            full_name_offset=full_name_offset,
            full_name_length=full_name_length,
            locale=locale,
            input_language=input_language,
            output_language=output_language,
            min_version=min_version,
            first_image_index=first_image_index,
            huffman_record_offset=huffman_record_offset,
            huffman_record_count=huffman_record_count,
            huffman_table_offset=huffman_table_offset,
            huffman_table_length=huffman_table_length,
            exth_flags=exth_flags,
            drm_offset=drm_offset,
            drm_count=drm_count,
            drm_size=drm_size,
            drm_flags=drm_flags,
            first_content_record_number=first_content_record_number,
            last_content_record_number=last_content_record_number,
            fcis_record_number=fcis_record_number,
            flis_record_number=flis_record_number,
            first_compilation_data_section_count=first_compilation_data_section_count,
            number_of_compilation_data_sections=number_of_compilation_data_sections,
            extra_record_data_flags=extra_record_data_flags,
            indx_record_offset=indx_record_offset,
        )


@dataclass(frozen=True)
class EXTHRecord:
    type: int
    len: int  # includes the 8 bytes of type and length
    data: bytes

    @classmethod
    def load(cls, reader: ByteReader) -> "EXTHRecord":
        record_type = reader.read_u32()
        length = reader.read_u32()
        if length < 8:
            raise InvalidArchiveError(f"EXTH record {record_type} has invalid length {length}")
        return cls(type=record_type, len=length, data=reader.read_bytes(length - 8))

    def as_int(self) -> int:
        return int.from_bytes(self.data, "big")

    def as_text(self) -> str:
        """UTF-8 decode (strict) then unescape HTML entities."""
        return html.unescape(self.data.decode("utf-8"))


@dataclass
class ExthMetadata:
    title: str = ""
    creators: list[str] = field(default_factory=list)
    publisher: str | None = None
    description: str | None = None
    identifier: str = ""
    subject: str | None = None
    date: str | None = None
    contributor: str | None = None


@dataclass(frozen=True)
class EXTHHeader:
    len: int
    record_count: int
    records: tuple[EXTHRecord, ...]

    @classmethod
    def load(cls, reader: ByteReader, exth_flags: int) -> "EXTHHeader | None":
        """Parse the EXTH block, or return None without reading if bit 6 of exth_flags is clear."""
        if not exth_flags & EXTH_FLAG:
            return None

        if reader.read_bytes(4) != b"EXTH":
            raise InvalidArchiveError("EXTH flag set but EXTH header missing")

        length = reader.read_u32()
        record_count = reader.read_u32()
        records = tuple(EXTHRecord.load(reader) for _ in range(record_count))

        # Padding to a multiple of four is not counted in the length.
        padding = 4 - length % 4
        if padding != 4:
            reader.skip(padding)

        logger.debug("EXTH header: %d records", record_count)
        return cls(len=length, record_count=record_count, records=records)

    def find(self, record_type: int) -> EXTHRecord | None:
        for record in self.records:
            if record.type == record_type:
                return record
        return None

    def _offset(self, record_type: int) -> int | None:
        record = self.find(record_type)
        if record is None:
            return None
        value = record.as_int()
        return value if value < NO_INDEX else None

    @property
    def cover_offset(self) -> int | None:
        return self._offset(EXTH_COVER_OFFSET)

    @property
    def thumbnail_offset(self) -> int | None:
        return self._offset(EXTH_THUMBNAIL_OFFSET)

    def metadata(self) -> ExthMetadata:
        """Map known record types to metadata fields. Unknown types are ignored."""
        meta = ExthMetadata()
        for record in self.records:
            if record.type == EXTH_CREATOR:
                meta.creators.append(record.as_text())
            elif record.type == EXTH_PUBLISHER:
                meta.publisher = record.as_text()
            elif record.type == EXTH_DESCRIPTION:
                meta.description = record.as_text()
            elif record.type == EXTH_IDENTIFIER:
                meta.identifier = record.as_text()
            elif record.type == EXTH_SUBJECT:
                meta.subject = record.as_text()
            elif record.type == EXTH_DATE:
                meta.date = record.as_text()
            elif record.type == EXTH_CONTRIBUTOR:
                meta.contributor = record.as_text()
            elif record.type == EXTH_TITLE:
                meta.title = record.as_text()
        return meta

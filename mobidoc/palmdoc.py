"""mobidoc/palmdoc.py — PalmDoc (LZ77) decompression and trailing-entry stripping."""

import logging

from mobidoc.errors import InvalidArchiveError, UnsupportedCompressionError
from mobidoc.headers import COMPRESSION_NONE, COMPRESSION_PALMDOC

logger = logging.getLogger(__name__)


def decompress(data: bytes) -> bytes:
    """
    Decode one PalmDoc-compressed record.

    Lead byte:
      0x00        literal NUL
      0x01..0x08  copy the next n bytes verbatim
      0x09..0x7F  literal byte
      0x80..0xBF  back-reference: 11-bit distance, 3-bit length (+3)
      0xC0..0xFF  space followed by (byte ^ 0x80)
    """
    out = bytearray()
    length = len(data)
    offset = 0

    while offset < length:
        lead = data[offset]
        offset += 1

        if lead == 0x00 or 0x09 <= lead <= 0x7F:
            out.append(lead)
        elif lead <= 0x08:
            out += data[offset:offset + lead]
            offset += lead
        elif lead <= 0xBF:
            if offset >= length:
                raise InvalidArchiveError("Truncated back-reference at end of record")
            pair = (lead << 8) | data[offset]
            offset += 1
            distance = (pair >> 3) & 0x7FF
            count = (pair & 0x7) + 3
            if distance < 1 or distance > len(out):
                raise InvalidArchiveError(
                    f"Back-reference distance {distance} outside {len(out)} decoded bytes"
                )
            # Byte at a time so that overlapping copies replicate.
            for _ in range(count):
                out.append(out[-distance])
        else:
            out.append(0x20)
            out.append(lead ^ 0x80)

    return bytes(out)


def trailing_entry_size(data: bytes) -> int:
    """
    Size of one variable-width trailing entry. The size is a base-128 number in
    the last (up to) four bytes; a byte with the top bit set restarts it.
    """
    size = 0
    for byte in data[-4:]:
        if byte & 0x80:
            size = 0
        size = (size << 7) | (byte & 0x7F)
    return size


def trailing_entry_count(flags: int) -> int:
    """Number of variable-width entries: one per set bit above bit 0."""
    return bin(flags >> 1).count("1")


def trailing_data_size(data: bytes, flags: int) -> int:
    """
    Total number of trailing bytes to remove from a text record, given the
    MOBI header's extra_record_data_flags. Never exceeds len(data).
    """
    end = len(data)
    for _ in range(trailing_entry_count(flags)):
        size = trailing_entry_size(data[:end])
        if size > end:
            logger.warning("Trailing entry of %d bytes exceeds %d remaining; clamping", size, end)
            return len(data)
        end -= size

    if flags & 1 and end > 0:
        # Multibyte character overlap: low two bits of the last byte, plus one.
        size = (data[end - 1] & 0b11) + 1
        if size > end:
            logger.warning("Multibyte trailer of %d bytes exceeds %d remaining; clamping", size, end)
            return len(data)
        end -= size

    return len(data) - end


def strip_trailing_data(data: bytes, flags: int) -> bytes:
    size = trailing_data_size(data, flags)
    return data[:len(data) - size]


def decode_record(data: bytes, compression: int) -> bytes:
    """Decompress a stripped text record according to the PalmDOC compression code."""
    if compression == COMPRESSION_PALMDOC:
        return decompress(data)
    if compression == COMPRESSION_NONE:
        return data
    raise UnsupportedCompressionError(compression)

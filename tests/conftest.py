"""Synthetic MOBI files assembled in memory."""

import struct

import pytest

MOBI_HEADER_LEN = 232
PDB_HEADER_LEN = 78
NO_INDEX = 0xFFFFFFFF

# Mon Jan 1 2024 00:00:00 UTC expressed both ways the PDB format allows.
UNIX_TIME = 1704067200
PALM_TIME = UNIX_TIME + 2082844800


def exth_block(records: list[tuple[int, bytes]]) -> bytes:
    body = b"".join(struct.pack(">II", t, len(d) + 8) + d for t, d in records)
    length = 12 + len(body)
    block = b"EXTH" + struct.pack(">II", length, len(records)) + body
    if length % 4:
        block += b"\x00" * (4 - length % 4)
    return block


def mobi_header(
    *,
    header_len: int,
    text_encoding: int,
    file_version: int,
    first_image_index: int,
    first_non_book_index: int,
    last_content: int,
    full_name_offset: int,
    full_name_length: int,
    exth_flags: int,
    extra_flags: int,
    locale: int,
) -> bytes:
    h = bytearray(max(header_len, MOBI_HEADER_LEN))
    h[0:4] = b"MOBI"
    struct.pack_into(">IIIII", h, 4, header_len, 2, text_encoding, 0x1234, file_version)
    for offset in range(24, 64, 4):
        struct.pack_into(">I", h, offset, NO_INDEX)
    struct.pack_into(
        ">IIIIIIII", h, 64,
        first_non_book_index, full_name_offset, full_name_length, locale, 0, 0, file_version, first_image_index,
    )
    struct.pack_into(">I", h, 112, exth_flags)
    struct.pack_into(">II", h, 148, NO_INDEX, NO_INDEX)
    struct.pack_into(">HH", h, 176, 1, last_content)
    struct.pack_into(">IIII", h, 180, 1, last_content + 1, 1, last_content + 2)
    struct.pack_into(">I", h, 208, NO_INDEX)
    struct.pack_into(">III", h, 216, NO_INDEX, NO_INDEX, extra_flags)
    struct.pack_into(">I", h, 228, NO_INDEX)
    return bytes(h)


def build_mobi(
    text_records: list[bytes],
    *,
    exth: list[tuple[int, bytes]] | None = None,
    images: list[bytes] = (),
    compression: int = 1,
    text_length: int | None = None,
    text_encoding: int = 65001,
    title: bytes = b"Full Name Title",
    extra_flags: int = 0,
    header_len: int = MOBI_HEADER_LEN,
    file_version: int = 6,
    locale: int = 9,
    creation_date: int = PALM_TIME,
    modify_date: int = UNIX_TIME,
) -> bytes:
    """A complete BOOKMOBI file: record 0 headers, then text records, then image records."""
    exth_bytes = exth_block(exth) if exth is not None else b""
    first_image = 1 + len(text_records)
    full_name_offset = 16 + header_len + len(exth_bytes)

    palmdoc = struct.pack(
        ">HHIHHI",
        compression, 0,
        text_length if text_length is not None else sum(len(r) for r in text_records),
        len(text_records), 4096, 0,
    )
    header = mobi_header(
        header_len=header_len,
        text_encoding=text_encoding,
        file_version=file_version,
        first_image_index=first_image,
        first_non_book_index=first_image,
        last_content=len(text_records) + len(images),
        full_name_offset=full_name_offset,
        full_name_length=len(title),
        exth_flags=0x50 if exth is not None else 0x10,
        extra_flags=extra_flags,
        locale=locale,
    )
    record0 = palmdoc + header + exth_bytes + title + b"\x00\x00"
    records = [record0, *text_records, *images]

    n = len(records)
    offset = PDB_HEADER_LEN + 8 * n + 2
    infos = b""
    for i, record in enumerate(records):
        infos += struct.pack(">II", offset, (0x40 << 24) | (2 * i))
        offset += len(record)

    pdb = (
        b"Test_Book".ljust(32, b"\x00")
        + struct.pack(">HHIIIIII", 0, 0, creation_date, modify_date, 0, 0, 0, 0)
        + b"BOOKMOBI"
        + struct.pack(">IIH", 2 * n - 1, 0, n)
    )
    assert len(pdb) == PDB_HEADER_LEN
    return pdb + infos + b"\x00\x00" + b"".join(records)


PAGE_BREAK = b"<mbp:pagebreak/>"


def toc_book() -> bytes:
    """Cover section, table of contents section, then two chapters (the second with an image)."""
    template = (
        b'<html><head><guide><reference type="toc" title="Contents" filepos=%010d /></guide></head><body>'
        b"<p>Cover</p>" + PAGE_BREAK
        + b"<p><a filepos=%010d>Chapter One</a></p>"
        b"<blockquote><a filepos=%010d>Part A</a></blockquote>"
        b"<p><a filepos=%010d>Chapter Two</a></p>" + PAGE_BREAK
        + b"<h1>One</h1><p>First.</p><h2>Part A</h2><p>More.</p>" + PAGE_BREAK
        + b'<h1>Two</h1><p>Second.</p><p><img recindex="00001" /></p></body></html>'
    )
    blank = template % (0, 0, 0, 0)
    breaks = []
    pos = blank.find(PAGE_BREAK)
    while pos != -1:
        breaks.append(pos + len(PAGE_BREAK))
        pos = blank.find(PAGE_BREAK, pos + 1)
    part_a = blank.index(b"<h2>")
    return template % (breaks[0], breaks[1], part_a, breaks[2])


PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24
JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 24
GIF = b"GIF89a" + b"\x00" * 24


@pytest.fixture
def make_mobi():
    return build_mobi


@pytest.fixture
def images():
    return {"png": PNG, "jpeg": JPEG, "gif": GIF}


@pytest.fixture
def palm_times():
    return PALM_TIME, UNIX_TIME


@pytest.fixture
def toc_mobi(tmp_path):
    """A complete book on disk: EXTH metadata, cover, guide, nested TOC and one inline image."""
    path = tmp_path / "toc_book.mobi"
    path.write_bytes(build_mobi(
        [toc_book()],
        images=[PNG],
        exth=[
            (503, b"Toc Book"),
            (100, b"Ann Author"),
            (101, b"Folio Press"),
            (104, b"isbn:42"),
            (201, (0).to_bytes(4, "big")),
        ],
    ))
    return path

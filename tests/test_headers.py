import io
import struct
from datetime import datetime, timezone

import pytest

from conftest import exth_block
from mobidoc.binary import ByteReader
from mobidoc.errors import InvalidArchiveError, UnsupportedArchiveError
from mobidoc.headers import (
    EXTHHeader,
    EXTHRecord,
    MOBIDOCHeader,
    MOBIHeader,
    PDBHeader,
    is_mobi,
    language_code,
    palm_timestamp,
)


def test_is_mobi_checks_signature_and_restores_position(make_mobi):
    data = make_mobi([b"<p>Hi</p>"])
    stream = io.BytesIO(data)
    stream.seek(5)
    assert is_mobi(stream)
    assert stream.tell() == 5


@pytest.mark.parametrize("position", range(60, 68))
def test_is_mobi_rejects_any_changed_signature_byte(make_mobi, position):
    data = bytearray(make_mobi([b"<p>Hi</p>"]))
    data[position] ^= 0x20
    assert not is_mobi(io.BytesIO(bytes(data)))


def test_is_mobi_on_short_stream():
    assert not is_mobi(io.BytesIO(b"BOOKMOBI"))
    assert not is_mobi(io.BytesIO(b""))


def test_pdb_header(make_mobi, palm_times):
    data = make_mobi([b"one", b"two"], images=[b"img"])
    header = PDBHeader.load(ByteReader(io.BytesIO(data)))
    assert header.name == "Test_Book".ljust(32, "\x00")
    assert header.title == "Test_Book"
    assert header.number_of_records == 4
    assert header.creation_date == palm_times[0]
    assert [r.unique_id for r in header.records] == [0, 2, 4, 6]
    assert all(r.attribute == 0x40 for r in header.records)
    offsets = [r.offset for r in header.records]
    assert offsets == sorted(offsets)


def test_pdb_header_bad_signature(make_mobi):
    data = bytearray(make_mobi([b"x"]))
    data[60:68] = b"TEXtREAd"
    with pytest.raises(UnsupportedArchiveError):
        PDBHeader.load(ByteReader(io.BytesIO(bytes(data))))


def test_mobidoc_header_huffcdic_encrypt_type():
    raw = struct.pack(">HHIHHI", 17480, 0, 1000, 3, 4096, 0x00020000)
    header = MOBIDOCHeader.load(ByteReader(io.BytesIO(raw)), 0)
    assert header.compression == 17480
    assert header.record_count == 3
    assert header.encrypt_type == 2


def test_mobidoc_header_palmdoc():
    raw = struct.pack(">HHIHHI", 2, 0, 8192, 2, 4096, 0x00020000)
    header = MOBIDOCHeader.load(ByteReader(io.BytesIO(raw)), 0)
    assert header.length == 8192
    assert header.encrypt_type == 0


def load_headers(data: bytes):
    reader = ByteReader(io.BytesIO(data))
    pdb = PDBHeader.load(reader)
    MOBIDOCHeader.load(reader, pdb.records[0].offset)
    mobi = MOBIHeader.load(reader)
    return reader, pdb, mobi


def test_mobi_header_fields(make_mobi):
    title = b"A Title"
    data = make_mobi([b"a", b"b"], images=[b"i"], title=title, extra_flags=0b11)
    reader, pdb, mobi = load_headers(data)
    assert mobi.header_len == 232
    assert mobi.text_encoding == 65001
    assert mobi.file_version == 6
    assert mobi.first_image_index == 3
    assert mobi.extra_record_data_flags == 0b11
    assert not mobi.has_exth
    # full_name_offset is absolute within the file.
    assert data[mobi.full_name_offset:mobi.full_name_offset + mobi.full_name_length] == title
    assert reader.tell() == pdb.records[0].offset + 16 + 232


def test_mobi_header_skips_longer_header(make_mobi):
    data = make_mobi([b"a"], exth=[(503, b"Long")], header_len=264)
    reader, _, mobi = load_headers(data)
    assert mobi.header_len == 264
    assert mobi.has_exth
    assert EXTHHeader.load(reader, mobi.exth_flags).metadata().title == "Long"


def test_trailing_flags_ignored_before_version_5(make_mobi):
    data = make_mobi([b"a"], extra_flags=0b11, file_version=4)
    _, _, mobi = load_headers(data)
    assert mobi.extra_record_data_flags == 0


def test_missing_mobi_marker(make_mobi):
    data = bytearray(make_mobi([b"a"]))
    _, pdb, _ = load_headers(bytes(data))
    start = pdb.records[0].offset + 16
    data[start:start + 4] = b"XXXX"
    with pytest.raises(UnsupportedArchiveError):
        load_headers(bytes(data))


def test_exth_flag_clear_reads_nothing():
    stream = io.BytesIO(b"EXTH\x00\x00\x00\x0c\x00\x00\x00\x00")
    assert EXTHHeader.load(ByteReader(stream), 0x10) is None
    assert stream.tell() == 0


def test_exth_missing_marker():
    with pytest.raises(InvalidArchiveError):
        EXTHHeader.load(ByteReader(io.BytesIO(b"NOPE" + b"\x00" * 8)), 0x40)


@pytest.mark.parametrize("payload", [b"", b"a", b"ab", b"abc", b"abcd"])
def test_exth_padding_is_skipped(payload):
    block = exth_block([(503, payload)])
    reader = ByteReader(io.BytesIO(block + b"NEXT"))
    header = EXTHHeader.load(reader, 0x40)
    assert header.len == 12 + 8 + len(payload)
    assert reader.read_bytes(4) == b"NEXT"


def test_exth_record_length_below_header_size():
    with pytest.raises(InvalidArchiveError):
        EXTHRecord.load(ByteReader(io.BytesIO(struct.pack(">II", 100, 4))))


def test_exth_metadata_mapping():
    block = exth_block([
        (100, b"First Author"),
        (100, b"Second &amp; Third"),
        (101, b"Pub"),
        (103, b"<p>About</p>"),
        (104, b"isbn:123"),
        (105, b"Fiction"),
        (106, b"2020-01-01"),
        (108, b"Editor"),
        (503, "Café".encode("utf-8")),
        (999, b"ignored"),
    ])
    header = EXTHHeader.load(ByteReader(io.BytesIO(block)), 0x40)
    meta = header.metadata()
    assert meta.title == "Café"
    assert meta.creators == ["First Author", "Second & Third"]
    assert meta.publisher == "Pub"
    assert meta.description == "<p>About</p>"
    assert meta.identifier == "isbn:123"
    assert meta.subject == "Fiction"
    assert meta.date == "2020-01-01"
    assert meta.contributor == "Editor"


def test_exth_text_is_strict_utf8():
    header = EXTHHeader.load(ByteReader(io.BytesIO(exth_block([(503, b"\xff\xfe")]))), 0x40)
    with pytest.raises(UnicodeDecodeError):
        header.metadata()


def test_exth_cover_offsets():
    block = exth_block([(201, (3).to_bytes(4, "big")), (202, b"\xff\xff\xff\xff")])
    header = EXTHHeader.load(ByteReader(io.BytesIO(block)), 0x40)
    assert header.cover_offset == 3
    assert header.thumbnail_offset is None
    assert header.find(999) is None


def test_palm_timestamp(palm_times):
    palm, unix = palm_times
    expected = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert palm_timestamp(palm) == expected
    assert palm_timestamp(unix) == expected
    assert palm_timestamp(0) is None


def test_language_code():
    assert language_code(9) == "en"
    assert language_code(0x0409) == "en"
    assert language_code(0x0C) == "fr"
    assert language_code(0xFE) is None

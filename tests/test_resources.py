import itertools

import pytest

from mobidoc.resources import (
    find_guide_filepos,
    find_image_recindexes,
    image_file_name,
    image_type,
    parse_nav_html,
)


@pytest.mark.parametrize("data, expected", [
    (b"\xff\xd8\xff\xe1rest", ("jpg", "image/jpeg")),
    (b"\x89PNG\r\n\x1a\nrest", ("png", "image/png")),
    (b"GIF87a....", ("gif", "image/gif")),
    (b"BM......", ("bmp", "image/bmp")),
    (b"RIFF\x00\x00\x00\x00WEBPVP8 ", ("webp", "image/webp")),
    (b"\x00\x01\x02", ("bin", "application/octet-stream")),
])
def test_image_type(data, expected):
    assert image_type(data) == expected


def test_image_file_name_pads_recindex():
    assert image_file_name(7, b"\x89PNG\r\n\x1a\n") == "00007.png"


def test_recindexes_in_first_appearance_order():
    text = (
        b"<img src='x' recindex='00003'><p recindex=\"9\">not an image</p>"
        b"<IMG recindex=00001 /><img recindex=\"00003\">"
    )
    assert find_image_recindexes(text) == [3, 1]


def test_guide_filepos_picks_toc_reference():
    text = (
        b"<guide>"
        b'<reference type="text" filepos=0000000050 />'
        b'<reference title="Contents" type="toc" filepos="0000001234" />'
        b"</guide>"
    )
    assert find_guide_filepos(text) == 1234


def test_guide_without_toc():
    assert find_guide_filepos(b'<guide><reference type="cover" filepos=1 /></guide>') is None
    assert find_guide_filepos(b"<p>no guide</p>") is None


def test_parse_nav_html_nesting():
    markup = (
        "<p><a filepos=100>One</a></p>"
        "<blockquote><p><a filepos=200>One.A</a></p>"
        "<blockquote><a filepos=250>One.A.i</a></blockquote>"
        "<p><a filepos=300>One.B</a></p></blockquote>"
        "<p><a filepos=400>Two</a></p>"
        "<p><a href='#x'>Not a nav link</a></p>"
    )
    nav = parse_nav_html(markup)
    assert [n.title for n in nav] == ["One", "Two"]
    assert [c.title for c in nav[0].children] == ["One.A", "One.B"]
    assert [c.title for c in nav[0].children[0].children] == ["One.A.i"]
    assert [n.filepos for root in nav for n in root.walk()] == [100, 200, 250, 300, 400]


def test_parse_nav_html_shares_id_counter():
    ids = itertools.count(10)
    first = parse_nav_html("<a filepos=1>A</a>", ids)
    second = parse_nav_html("<a filepos=2>B</a>", ids)
    assert first[0].id == 10
    assert second[0].id == 11


def test_parse_nav_html_empty():
    assert parse_nav_html("<p>Nothing here</p>") == []

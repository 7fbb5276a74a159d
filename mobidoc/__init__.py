"""mobidoc/ — MOBI (Mobipocket) container decoding."""

from mobidoc.errors import (
    InvalidArchiveError,
    MobiError,
    UnsupportedArchiveError,
    UnsupportedCompressionError,
)
from mobidoc.headers import is_mobi
from mobidoc.reader import MobiReader, TextSection

__all__ = [
    "InvalidArchiveError",
    "MobiError",
    "MobiReader",
    "TextSection",
    "UnsupportedArchiveError",
    "UnsupportedCompressionError",
    "is_mobi",
]

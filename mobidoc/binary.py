"""mobidoc/binary.py — Big-endian primitive reads over a seekable byte stream."""

import os
from typing import BinaryIO


class ByteReader:
    """
    Thin wrapper around a binary stream that reads fixed-width big-endian
    integers and fixed-length strings. Every read is exact: a short read
    raises EOFError instead of returning partial data.
    """

    def __init__(self, stream: BinaryIO):
        self.stream = stream

    def read_bytes(self, n: int) -> bytes:
        data = self.stream.read(n)
        if len(data) != n:
            raise EOFError(
                f"Expected {n} bytes at offset {self.tell() - len(data)}, got {len(data)}"
            )
        return data

    def _read_uint(self, width: int) -> int:
        res = 0
        for byte in self.read_bytes(width):
            res = (res << 8) | byte
        return res

    def read_u8(self) -> int:
        return self._read_uint(1)

    def read_u16(self) -> int:
        return self._read_uint(2)

    def read_u32(self) -> int:
        return self._read_uint(4)

    def read_u64(self) -> int:
        return self._read_uint(8)

    def read_string(self, n: int, encoding: str = "latin-1") -> str:
        """Read exactly n bytes and decode them (latin-1 maps bytes 1:1)."""
        return self.read_bytes(n).decode(encoding)

    def skip(self, n: int) -> int:
        return self.stream.seek(n, os.SEEK_CUR)

    def seek(self, offset: int) -> int:
        return self.stream.seek(offset, os.SEEK_SET)

    def tell(self) -> int:
        return self.stream.tell()

    def size(self) -> int:
        """Total stream length; the current position is preserved."""
        current = self.stream.tell()
        end = self.stream.seek(0, os.SEEK_END)
        self.stream.seek(current, os.SEEK_SET)
        return end

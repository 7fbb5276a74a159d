"""mobidoc/errors.py — Exception types raised while decoding MOBI files."""


class MobiError(ValueError):
    """Base class for MOBI decoding failures."""


class UnsupportedArchiveError(MobiError):
    """The stream is not a MOBI book (wrong BOOKMOBI / MOBI signature)."""


class InvalidArchiveError(MobiError):
    """The stream claims to be MOBI but is structurally malformed."""


class UnsupportedCompressionError(MobiError):
    """The text records use a compression scheme this reader cannot decode."""

    def __init__(self, compression: int):
        self.compression = compression
        super().__init__(f"Unsupported compression type: {compression}")

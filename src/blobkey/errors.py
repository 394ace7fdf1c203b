"""Exceptions raised by blobkey components."""


class BlobkeyError(Exception):
    pass


class PatternError(BlobkeyError):
    """A URL pattern could not be compiled or loaded."""


class ProbeError(BlobkeyError):
    """The authorization probe could not obtain a response."""


class ProtocolError(BlobkeyError):
    """A store-id helper input line could not be parsed."""


class ICAPError(BlobkeyError):
    """Malformed ICAP input. ``status`` is the ICAP status to answer with."""

    def __init__(self, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.status = status

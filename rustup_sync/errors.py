class SyncError(Exception):
    """Base class of every fatal mirroring error."""


class FetchError(SyncError):
    """A file could not be fetched from upstream."""

    def __init__(self, url: str, message: str, attempts: int = 1):
        super().__init__(f"{message} ({url}, {attempts} attempt(s))")
        self.url = url
        self.attempts = attempts


class NetworkError(FetchError):
    pass


class LengthUnknownError(FetchError):
    pass


class HTTPStatusError(FetchError):
    def __init__(self, url: str, status_code: int, attempts: int = 1):
        super().__init__(url, f"HTTP {status_code}", attempts)
        self.status_code = status_code


class IntegrityError(SyncError):
    """Content did not match the digest or version it was expected to have."""


class ChecksumError(IntegrityError):
    pass


class StructuralError(SyncError):
    """Upstream or local data does not have the shape the mirror relies on."""

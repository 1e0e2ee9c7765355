"""Exception hierarchy shared by the fetcher, codec, store and sync layers."""


class IngestionError(Exception):
    """
    Base exception class for all ingestion and caching errors.
    """
    pass


class NetworkError(IngestionError):
    """
    Raised when the remote source answers with a non-success status or
    cannot be reached.
    """

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status


class MissingHeaderError(IngestionError):
    """
    Raised when ranged download is requested but the source does not report
    the size or change-token headers it depends on.
    """
    pass


class ParseError(IngestionError):
    """
    Raised when a payload is neither structured JSON nor delimited text.
    """
    pass


class AuthenticationError(IngestionError):
    """
    Raised when an encrypted block fails AEAD tag verification.
    """
    pass


class StorageError(IngestionError):
    """
    Raised when the storage backend fails to read or write a record.
    """
    pass


class PartialDatasetError(IngestionError):
    """
    Raised by strict loads when one or more chunks are missing or cannot be
    decrypted.
    """

    def __init__(self, message: str, missing_chunks: list = None):
        super().__init__(message)
        self.missing_chunks = list(missing_chunks or [])


class RetryExhaustedError(IngestionError):
    """
    Raised when a retried operation produced no result within its allowed attempts.
    """

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts

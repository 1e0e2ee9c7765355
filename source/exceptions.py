"""Exceptions raised by the dataset source server."""


class SourceError(Exception):
    """
    Base exception class for dataset source errors.
    """
    pass


class DatasetNotFoundError(SourceError):
    """
    Raised when the requested dataset or file does not exist in the data directory.
    """
    pass


class InvalidDatasetError(SourceError):
    """
    Raised when a dataset file is not a JSON array.
    """
    pass


class RangeNotSatisfiableError(SourceError):
    """
    Raised when a Range header does not overlap the file.
    """

    def __init__(self, message: str, size: int):
        super().__init__(message)
        self.size = size

from __future__ import annotations


class PreviewError(Exception):
    """Base class for failures that map onto an HTTP status."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(PreviewError):
    status_code = 400


class FetchError(PreviewError):
    pass


class FetchTimeout(FetchError):
    pass


class ConversionError(PreviewError):
    pass


class ConversionTimeout(ConversionError):
    pass


class NotFound(PreviewError):
    status_code = 404


class InternalError(PreviewError):
    pass

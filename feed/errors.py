"""
Error taxonomy for the feed engine.

Each error carries the HTTP status the server layer should answer with, so
callers can tell "nothing matched" (an empty page, never an error) from a
malformed request (4xx) and from a backend we could not reach (5xx).
"""
from typing import Optional


class FeedError(Exception):
    status_code = 500
    code = 'feed_error'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'success': False, 'error': self.code, 'message': self.message}


class InvalidQuery(FeedError):
    """Limit out of bounds or an unknown tab / feed type / sort value."""

    status_code = 400
    code = 'invalid_query'


class InvalidCursor(FeedError):
    """Cursor failed to decode. Clients must restart without a cursor."""

    status_code = 400
    code = 'invalid_cursor'


class SourceUnavailable(FeedError):
    """A content source's backing store failed or timed out."""

    status_code = 503
    code = 'source_unavailable'

    def __init__(self, source: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{source} source unavailable: {message}")
        self.source = source
        self.cause = cause

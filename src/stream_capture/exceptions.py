"""Exception types for Stream Capture."""


class StreamCaptureError(Exception):
    """Base exception for Stream Capture errors."""

    def __init__(self, message, details=None):
        super().__init__(message)
        self.details = details


class KeywordLoadError(StreamCaptureError):
    """Keyword rule file could not be read or parsed."""
    pass


class ScheduleFeedError(StreamCaptureError):
    """Schedule feed was unreachable or malformed."""
    pass


class AuthenticationError(StreamCaptureError):
    """Stream auth token could not be obtained."""
    pass

# chatdigest/errors.py


class DigestError(Exception):
    """Base class for every error the engine reports upward."""


class AuthError(DigestError):
    """The browser session is not logged in and could not be recovered."""


class CrawlError(DigestError):
    """Navigation or extraction against the session failed."""


class NavigationTimeout(CrawlError):
    """A navigation or wait-for-element step exceeded its timeout."""


class NotFound(DigestError):
    """A referenced server or channel is not in the store."""


class PartialSyncFailure(DigestError):
    """One channel failed during a multi-channel sync."""

    def __init__(self, server_id: str, channel_id: str, reason: str):
        super().__init__(f"channel {channel_id} of server {server_id}: {reason}")
        self.server_id = server_id
        self.channel_id = channel_id
        self.reason = reason


class SummarizationParseFailure(DigestError):
    """Model output did not parse as a topic list. The raw text is kept instead."""


class ErrorMessage(str):
    """An ``"Error: <reason>"`` string that keeps the exception it describes."""

    def __new__(cls, error: BaseException):
        reason = str(error) or error.__class__.__name__
        message = super().__new__(cls, f"Error: {reason}")
        message.error = error
        return message


def format_error(exc: BaseException) -> ErrorMessage:
    return ErrorMessage(exc)

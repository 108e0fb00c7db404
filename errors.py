"""
Error types for the report pipeline.

Server errors carry the HTTP status they map to, so the endpoints can turn
any of them into a JSON envelope without inspecting the type. Client errors
never leave the client; the UI turns them into notifications.
"""


class ReportChatError(Exception):
    """Base class for errors surfaced by the API."""

    statusCode = 500

    def __init__(self, message: str, statusCode: int | None = None):
        super().__init__(message)
        self.message = message
        if statusCode is not None:
            self.statusCode = statusCode


class ValidationError(ReportChatError):
    """Malformed, missing or unsupported input."""

    statusCode = 400


class InvalidPayload(ValidationError):
    pass


class MalformedPayload(ValidationError):
    pass


class UnsupportedMediaType(ValidationError):
    statusCode = 415


class BadRequest(ValidationError):
    pass


class ServiceUnavailable(ReportChatError):
    """Missing credential or unreachable external service."""

    statusCode = 503


class UpstreamError(ReportChatError):
    """The external model returned an error or nothing usable."""

    statusCode = 502


class EmptyResponse(UpstreamError):
    pass


class StreamError(ReportChatError):
    """Failure while a streamed answer was already being sent."""


# Client side


class ClientError(Exception):
    pass


class FileTooLarge(ClientError):
    pass


class UnsupportedFileType(ClientError):
    pass


class DecodeError(ClientError):
    pass


class ReadError(ClientError):
    pass


class InvalidTransition(ClientError):
    pass


class ExtractionInProgress(InvalidTransition):
    pass


class ExtractionFailed(ClientError):
    """The extraction endpoint answered with an error or could not be reached."""

    def __init__(self, message: str, statusCode: int | None = None):
        super().__init__(message)
        self.statusCode = statusCode


class ChatFailed(ClientError):
    """The chat endpoint refused the request before streaming."""

    def __init__(self, message: str, statusCode: int | None = None):
        super().__init__(message)
        self.statusCode = statusCode

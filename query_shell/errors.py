from __future__ import annotations


class QueryShellError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SubmissionError(QueryShellError):
    """Submission was rejected or never reached the backend."""


class PollTransportError(QueryShellError):
    """Status checks kept failing after the retry budget was spent."""


class PollTerminalError(QueryShellError):
    """The backend reported that the query itself failed."""


class FetchError(QueryShellError):
    """A results page could not be fetched."""


def error_message(exc: BaseException) -> str:
    # google-api-core exceptions carry the server text on .message
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(exc) or exc.__class__.__name__

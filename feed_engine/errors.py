"""
Error taxonomy shared by every engine component.

Routers never build HTTPExceptions for these; `main.py` registers one handler
that maps each class to its status code.
"""


class FeedEngineError(Exception):
    status_code = 500

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFoundError(FeedEngineError):
    status_code = 404


class ConflictError(FeedEngineError):
    status_code = 409


class ForbiddenError(FeedEngineError):
    status_code = 403


class InvalidInputError(FeedEngineError):
    status_code = 400


class UpstreamUnavailableError(FeedEngineError):
    """The content service failed or timed out."""

    status_code = 503

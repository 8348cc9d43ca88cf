"""Error taxonomy shared by the launch entrypoint and the tracking API."""

from __future__ import annotations


class TrackingError(Exception):
    """Base class for request failures with a fixed HTTP status."""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)


class InvalidIdentifier(TrackingError):
    """Raised when an identifier is present but malformed."""

    status_code = 400
    public_message = "Invalid ID format in URL"


class MissingIdentifier(TrackingError):
    status_code = 400
    public_message = "Missing tracking information"


class SessionNotFound(TrackingError):
    """Raised for unknown or expired tracking sessions.

    The message never says which part of the identifier was wrong.
    """

    status_code = 403
    public_message = "Invalid or expired tracking session"

    def __init__(self, message: str | None = None) -> None:
        # Detail stays server-side; clients always see the generic text.
        super().__init__(self.public_message)
        self.detail = message


class ContentAccessDenied(TrackingError):
    status_code = 403
    public_message = "Access denied"


class ContentNotFound(TrackingError):
    status_code = 404
    public_message = "Content not found"


class ScenarioNotFound(TrackingError):
    status_code = 404
    public_message = "Training configuration not found"


class UnsupportedContentType(TrackingError):
    status_code = 400
    public_message = "Unsupported content type"


class PublishTransportFailure(Exception):
    """Raised by event transports; the outbox retries, callers never see it."""

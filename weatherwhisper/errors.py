"""Failure taxonomy shared by every stage of the card pipeline.

Each error carries a stable ``kind`` string and a ``retryable`` flag so the
caller can decide between retrying, refreshing the session, or surfacing the
failure to the user without inspecting messages.
"""

from __future__ import annotations


class WhisperError(Exception):
    """Base class for classified pipeline failures."""
    kind = "error"
    retryable = False

    def __init__(self, message: str = "", *, status_code: int | None = None) -> None:
        super().__init__(message or self.kind)
        self.status_code = status_code


class InvalidRequest(WhisperError):
    """Input shape or bounds are wrong; the caller must correct it."""
    kind = "invalid_request"


class Unauthenticated(WhisperError):
    """No session, or the session expired; refresh it and retry."""
    kind = "unauthenticated"


class RequestRejected(WhisperError):
    """The server refused the request (4xx other than auth); do not resend as-is."""
    kind = "request_rejected"


class MalformedResponse(WhisperError):
    """The server answered with something outside the response contract."""
    kind = "malformed_response"


class LocationNotFound(WhisperError):
    """A geocoding query matched nothing."""
    kind = "not_found"


class LocationPermissionDenied(WhisperError):
    """The user denied or restricted location access."""
    kind = "permission_denied"


class TransientError(WhisperError):
    """Failures worth retrying, ideally with exponential backoff."""
    kind = "transient"
    retryable = True


class WeatherUnavailable(TransientError):
    """The weather provider could not produce a snapshot."""
    kind = "weather_unavailable"


class TransportError(TransientError):
    """Timeout or connection failure; safe to resend with the same request id."""
    kind = "transport_error"


class ServiceUnavailable(TransientError):
    """The generation service answered 5xx."""
    kind = "service_unavailable"


class LocationUnavailable(TransientError):
    """No location fix could be obtained."""
    kind = "location_unavailable"


class RecipientNotFound(WhisperError):
    """No recipient is stored under the given id."""
    kind = "recipient_not_found"

"""Error taxonomy for the streaming relay.

Each error carries the HTTP status it is surfaced with at the route
boundary. Anything that is not a RelayError is an unexpected fault and
becomes a generic 500.
"""

from fastapi import status


class RelayError(Exception):
    """Base class for errors the relay reports to its caller."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationMissingError(RelayError):
    """Raised when the upstream credential is not configured."""

    def __init__(self, variable: str = "OPENAI_API_KEY") -> None:
        super().__init__(f"{variable} not configured")


class AdmissionDeniedError(RelayError):
    """Raised when the admission policy rejects a caller."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, identity: str) -> None:
        super().__init__("Rate limit exceeded")
        self.identity = identity


class UpstreamRejectedError(RelayError):
    """Raised when the provider answers with a non-success status.

    The body is kept as raw bytes so it can be forwarded verbatim.
    """

    def __init__(self, status_code: int, body: bytes, content_type: str | None = None) -> None:
        super().__init__(f"Upstream responded with status {status_code}")
        self.status_code = status_code
        self.body = body
        self.content_type = content_type


class UpstreamUnavailableError(RelayError):
    """Raised when the provider cannot be reached at all."""

    status_code = status.HTTP_502_BAD_GATEWAY


class TransportAbortedError(RelayError):
    """Raised when either side disconnects while the reply is streaming."""

    status_code = 499

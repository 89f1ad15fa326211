"""Streaming relay core.

Forwards one conversation turn to the upstream provider and hands the raw
byte stream back to the HTTP layer.

Responsibilities:
    - Configuration gate and admission guard
    - Upstream request construction and dispatch
    - Error taxonomy surfaced at the route boundary

Kept free of FastAPI routing so the same core can be driven from tests
or another server.
"""

from nexi.relay.admission import (
    AdmissionPolicy,
    AllowAllPolicy,
    TokenBucketPolicy,
    caller_identity,
)
from nexi.relay.errors import (
    AdmissionDeniedError,
    ConfigurationMissingError,
    RelayError,
    TransportAbortedError,
    UpstreamRejectedError,
    UpstreamUnavailableError,
)
from nexi.relay.service import (
    RelayService,
    UpstreamStream,
    build_upstream_messages,
    get_relay_service,
)

__all__ = [
    "AdmissionDeniedError",
    "AdmissionPolicy",
    "AllowAllPolicy",
    "ConfigurationMissingError",
    "RelayError",
    "RelayService",
    "TokenBucketPolicy",
    "TransportAbortedError",
    "UpstreamRejectedError",
    "UpstreamStream",
    "UpstreamUnavailableError",
    "build_upstream_messages",
    "caller_identity",
    "get_relay_service",
]

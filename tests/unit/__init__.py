"""Unit tests for individual components in isolation.

Coverage:
    - config: Environment loading and validation
    - admission: Caller identity and token bucket policy
    - decoder: Raw and event-stream decoding
    - history: Export/import round trip and key/value persistence
    - relay service: Upstream dispatch, rejection, disconnect handling
    - conversation client: Streaming, cancellation, error paths
"""

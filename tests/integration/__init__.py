"""Integration tests for components working together as a system.

Coverage:
    - Relay endpoint with real HTTP requests through ASGITransport
    - Conversation client driving the relay end to end

Only the upstream provider is faked.
"""

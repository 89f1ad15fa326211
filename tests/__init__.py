"""Test package for the Nexi relay and conversation client.

Structure:
    - unit/: Individual component tests (config, admission, decoders,
      history, relay service, conversation client)
    - integration/: Relay endpoint and end-to-end conversation flows

The upstream provider is always an httpx MockTransport fake; no network
access or API key is needed.
"""

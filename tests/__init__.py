"""
Test Suite

Contains unit tests for the request pipeline.

Structure:
- tests/unit/: Tests for individual components (signer, rate limiter, cache,
  classifier, retry policy, dispatcher) and the client against a local server

Uses pytest with pytest-asyncio for testing async functionality.
"""

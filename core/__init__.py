"""
Core Package

Contains the exchange-agnostic request execution pipeline:
- RequestDispatcher: orchestrates cache, rate limiting, signing, sending and retries
- RateLimiter: three-window admission check over shared counters
- ResponseCache: TTL cache with single-flight de-duplication
- classify / ClassifiedError: transport and upstream failures mapped to a fixed taxonomy
- RetryPolicy: exponential backoff for retryable failures
- Settings / logging: configuration and logging shared by every component
"""

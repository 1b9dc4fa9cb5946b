"""API Resilience Implementations.

Contains the pieces the governor composes: the minimum-interval rate limiter,
the timeout/cancellation controller, the retry/backoff policy and the
retry-aware request queues.
Bounded Context: API Resilience
"""

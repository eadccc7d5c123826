"""
Core infrastructure shared by the Spooled client.

Subpackages:
    errors: Error taxonomy and typed exceptions
    logging: Structured logging with context propagation
    resilience: Retry policy and circuit breaker
"""

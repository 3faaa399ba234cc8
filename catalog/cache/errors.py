"""Cache layer exceptions."""


class BackendUnavailable(Exception):
    """
    The cache backend cannot serve the request.

    Raised when the circuit breaker is open, a call times out, the
    connection is down, or Redis returns an error. Callers treat it
    as a cache miss.
    """

"""
Downstream service clients.

Each module wraps one third-party API behind a small async class whose
methods return plain dicts/strings and raise ExternalServiceError on a
non-2xx final status.  All HTTP goes through `http.fetch_with_retry`.
"""

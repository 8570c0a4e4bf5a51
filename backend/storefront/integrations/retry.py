"""
Retry classification shared by the outbound HTTP clients.
"""

import httpx


def is_retryable_error(exception: BaseException) -> bool:
    """Return True if exception is a retryable HTTP error (429, 5xx) or a transport failure."""
    if isinstance(exception, httpx.HTTPStatusError):
        status = exception.response.status_code
        return status == 429 or status >= 500
    return isinstance(exception, httpx.TransportError)

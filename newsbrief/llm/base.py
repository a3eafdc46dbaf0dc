import errno
import socket

import httpx
from pydantic import BaseModel

NETWORK_ERROR_CODES = {
    "ECONNRESET",
    "ECONNREFUSED",
    "ETIMEDOUT",
    "ENOTFOUND",
    "EAI_AGAIN",
    "ENETUNREACH",
    "EHOSTUNREACH",
}
NETWORK_ERRNOS = {
    errno.ECONNRESET,
    errno.ECONNREFUSED,
    errno.ETIMEDOUT,
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
}
NETWORK_KEYWORDS = ("fetch failed", "failed to fetch", "network", "econn", "timeout", "timed out", "connection reset")
DNS_FAILURE_MARKERS = ("enotfound", "eai_again", "getaddrinfo", "name or service not known", "nodename nor servname")


class UpstreamAPIError(Exception):
    """Non-2xx answer from an upstream API that is not worth retrying."""

    def __init__(self, message: str, status_code: int | None = None, error_type: str = "api"):
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type


class RateLimitedError(UpstreamAPIError):
    def __init__(self, message: str):
        super().__init__(message, status_code=429, error_type="rate_limit")


class ModelNotFoundError(UpstreamAPIError):
    def __init__(self, message: str):
        super().__init__(message, status_code=404, error_type="model_not_found")


class GenerationResponse(BaseModel):
    content: str
    model: str
    provider: str = "gemini"
    finish_reason: str | None = None


def _error_code(exc: BaseException) -> str | None:
    for candidate in (exc, exc.__cause__):
        if candidate is None:
            continue
        code = getattr(candidate, "code", None)
        if isinstance(code, str):
            return code
        if isinstance(candidate, OSError) and candidate.errno in NETWORK_ERRNOS:
            return errno.errorcode.get(candidate.errno)
    return None


def is_network_error(exc: BaseException) -> bool:
    """Connection reset/refused, timeouts, DNS failures and other transport errors."""
    if isinstance(exc, UpstreamAPIError):
        return False
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    code = _error_code(exc)
    if code and code in NETWORK_ERROR_CODES:
        return True
    message = str(exc.__cause__ or exc).lower()
    return any(keyword in message for keyword in NETWORK_KEYWORDS)


def _is_dns_failure(exc: BaseException) -> bool:
    cause = exc
    for _ in range(4):
        if cause is None:
            break
        if isinstance(cause, socket.gaierror):
            return True
        cause = cause.__cause__ or cause.__context__
    message = str(exc).lower()
    return any(marker in message for marker in DNS_FAILURE_MARKERS)


def is_retryable_transport_error(exc: BaseException) -> bool:
    """The narrower retry rule for speech synthesis: reset, refused or timed out.

    Name resolution failures surface as connect errors too and are not retried.
    """
    if _is_dns_failure(exc):
        return False
    if isinstance(exc, (httpx.TimeoutException, httpx.ConnectError, httpx.ReadError, httpx.WriteError)):
        return True
    if isinstance(exc, (TimeoutError, ConnectionResetError, ConnectionRefusedError)):
        return True
    code = _error_code(exc)
    if code in ("ECONNRESET", "ETIMEDOUT", "ECONNREFUSED"):
        return True
    message = str(exc)
    return "ECONNRESET" in message or "ETIMEDOUT" in message


def format_network_error(exc: BaseException) -> str:
    message = str(exc.__cause__ or exc) or type(exc).__name__
    code = _error_code(exc)
    return f"{message} [code: {code}]" if code else message

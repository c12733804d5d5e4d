"""Typed errors raised by the request pipeline."""

from __future__ import annotations

from http import HTTPStatus


class AtsClientError(RuntimeError):
    """Base error for the ATS session client."""


class TransportError(AtsClientError):
    """Raised when a request produced no HTTP response at all."""

    @classmethod
    def for_request(
        cls,
        *,
        method: str,
        url: str,
        details: str,
    ) -> TransportError:
        """Build deterministic error for network-level failures."""
        message = f"Request {method} {url} failed without a response: {details}"
        return cls(message)


class ApiError(AtsClientError):
    """Non-2xx response; `data` is the parsed error body or `{}`."""

    status: int
    data: object

    def __init__(self, status: int, data: object) -> None:
        """Keep the status and verbatim error body for callers."""
        super().__init__(f"API Error: {status}")
        self.status = status
        self.data = data

    @property
    def is_unauthorized(self) -> bool:
        """Return True for 401 responses."""
        return self.status == HTTPStatus.UNAUTHORIZED


class ResponseDecodeError(AtsClientError):
    """Raised when a 2xx body does not match the expected payload shape."""

    @classmethod
    def for_endpoint(cls, endpoint: str, *, details: str) -> ResponseDecodeError:
        """Build deterministic decode error with endpoint context."""
        message = f"Unexpected response body from {endpoint}: {details}"
        return cls(message)

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

import httpx

from .errors import NetworkError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class TransportResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""

        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


class HttpxTransport:
    """Send method+url+headers+body, receive status+headers+body.

    Holds one ``httpx.Client`` so connections are pooled across calls. The client
    is thread-safe; no lock is taken around sends.
    """

    def __init__(self, *, timeout: float = DEFAULT_TIMEOUT, client: Optional[httpx.Client] = None):
        self.timeout = float(timeout)
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout, follow_redirects=False)
        return self._client

    def send(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[bytes] = None,
    ) -> TransportResponse:
        try:
            resp = self.client.request(method.upper(), url, headers=dict(headers or {}), content=body)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method.upper()} {url} timed out after {self.timeout:g}s") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"{method.upper()} {url} failed: {e}") from e

        return TransportResponse(
            status=resp.status_code,
            headers={k: v for k, v in resp.headers.items()},
            body=resp.content,
        )

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    def __enter__(self) -> "HttpxTransport":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

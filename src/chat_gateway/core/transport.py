"""
HTTP wire client shared by all provider adapters.

Wraps one httpx.AsyncClient per provider instance and maps transport,
status and decoding failures onto the gateway error taxonomy. No retries
are performed here.
"""

import json
import logging
import time
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from .errors import (
    AuthenticationError,
    DecodeError,
    ProviderError,
    RateLimitError,
    TransportError,
)
from ..models.response import RawResponse, TransportMetadata

logger = logging.getLogger(__name__)


class WireClient:
    """
    Async HTTP client for one provider endpoint.

    Synchronous-style calls return the decoded body together with status,
    headers and timing; streaming calls yield response lines lazily and
    close the connection when the consumer stops.
    """

    def __init__(
        self,
        provider: str,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the wire client.

        Args:
            provider: Provider instance name, attached to every error
            base_url: Endpoint root
            headers: Headers sent with every request
            timeout: Default request timeout in seconds
            transport: Optional httpx transport (used to fake the network in tests)
        """
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers or {},
            timeout=timeout,
            transport=transport,
        )

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def aclose(self) -> None:
        await self._client.aclose()

    def _timeout(self, timeout: Optional[float]) -> float:
        return timeout if timeout is not None else self.timeout

    async def post_json(
        self,
        path: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> RawResponse:
        """
        POST a JSON payload and wait for the full response.

        Raises:
            TransportError: Connection failure or timeout
            ProviderError: Non-2xx status
            DecodeError: Body is not JSON
        """
        return await self._request("POST", path, json=payload, headers=headers, timeout=timeout)

    async def get_json(
        self,
        path: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> RawResponse:
        """GET a JSON resource."""
        return await self._request("GET", path, headers=headers, timeout=timeout)

    async def _request(self, method: str, path: str, **kwargs) -> RawResponse:
        timeout = self._timeout(kwargs.pop("timeout", None))
        started = time.perf_counter()
        try:
            response = await self._client.request(method, path, timeout=timeout, **kwargs)
        except httpx.TimeoutException as e:
            elapsed = (time.perf_counter() - started) * 1000
            raise TransportError(
                f"Request to {path} timed out after {elapsed:.0f} ms: {e}",
                provider=self.provider,
                elapsed_ms=elapsed,
                timed_out=True,
            ) from e
        except httpx.RequestError as e:
            elapsed = (time.perf_counter() - started) * 1000
            raise TransportError(
                f"Request to {path} failed: {e}",
                provider=self.provider,
                elapsed_ms=elapsed,
            ) from e

        elapsed = (time.perf_counter() - started) * 1000
        self._check_response_errors(response.status_code, response.headers, response.text)

        try:
            body = response.json()
        except ValueError as e:
            raise DecodeError(
                f"Response body is not valid JSON: {e}",
                provider=self.provider,
                body=response.text,
            ) from e

        logger.debug(f"{self.provider} {method} {path} -> {response.status_code} in {elapsed:.0f} ms")
        return RawResponse(
            body=body,
            transport=TransportMetadata(
                status_code=response.status_code,
                headers=dict(response.headers),
                elapsed_ms=elapsed,
            ),
        )

    async def stream_lines(
        self,
        path: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[str]:
        """
        POST a JSON payload and yield the response body line by line.

        The connection stays open while the consumer iterates and is
        closed when iteration finishes, fails, or the generator is closed.
        """
        started = time.perf_counter()
        try:
            async with self._client.stream(
                "POST",
                path,
                json=payload,
                headers=headers,
                timeout=self._timeout(timeout),
            ) as response:
                if not response.is_success:
                    body = await response.aread()
                    self._check_response_errors(
                        response.status_code,
                        response.headers,
                        body.decode("utf-8", errors="replace"),
                    )

                async for line in response.aiter_lines():
                    yield line

        except httpx.TimeoutException as e:
            elapsed = (time.perf_counter() - started) * 1000
            raise TransportError(
                f"Stream from {path} timed out: {e}",
                provider=self.provider,
                elapsed_ms=elapsed,
                timed_out=True,
            ) from e
        except httpx.RequestError as e:
            elapsed = (time.perf_counter() - started) * 1000
            raise TransportError(
                f"Stream from {path} failed: {e}",
                provider=self.provider,
                elapsed_ms=elapsed,
            ) from e

    def _check_response_errors(self, status_code: int, headers: httpx.Headers, text: str) -> None:
        """Check response status and raise appropriate exceptions."""
        if 200 <= status_code < 300:
            return

        body: Any = text
        try:
            body = json.loads(text)
        except ValueError:
            pass

        if status_code in (401, 403):
            raise AuthenticationError(
                f"Authentication failed: {status_code}",
                provider=self.provider,
                status_code=status_code,
                body=body,
            )

        if status_code == 429:
            retry_after = headers.get("retry-after")
            try:
                retry_seconds = float(retry_after) if retry_after else None
            except ValueError:
                retry_seconds = None
            raise RateLimitError(
                "Rate limit exceeded",
                provider=self.provider,
                status_code=status_code,
                body=body,
                retry_after=retry_seconds,
            )

        raise ProviderError(
            f"Request failed: {status_code} - {body}",
            provider=self.provider,
            status_code=status_code,
            body=body,
        )

"""
Lob API Client

Raw HTTP client for the Lob print-and-mail API (v1). Authenticates with the
API key as the basic-auth username. Non-2xx responses and transport failures
are raised as classified VendorError instances.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..protocols import VendorError
from ..vendor_errors import vendor_error_from_exception, vendor_error_from_response

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.lob.com/v1"


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, VendorError) and exc.retryable


class LobClient:
    """Client for the Lob API"""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_wait: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_wait = retry_wait
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.api_key or "", ""),
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        if not self.api_key:
            raise VendorError("Lob API key is not configured")

        try:
            async with self._client() as client:
                response = await client.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Lob {method} {path} transport error: {type(e).__name__}")
            raise vendor_error_from_exception(e) from e

        if response.is_error:
            error = vendor_error_from_response(response)
            logger.warning(
                f"Lob {method} {path} returned {response.status_code} "
                f"({error.code or error.cause.value})"
            )
            raise error

        return response.json()

    async def create_postcard(
        self, payload: Dict[str, Any], idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create a postcard.

        Not retried here: a failed create is recorded on the recipient and
        retried by resetting it, which produces a new idempotency key.
        """
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        return await self._request("POST", "/postcards", json=payload, headers=headers)

    async def get_postcard(self, postcard_id: str) -> Dict[str, Any]:
        """Retrieve a postcard, retrying transient failures"""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_wait, max=5),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        ):
            with attempt:
                return await self._request("GET", f"/postcards/{postcard_id}")

    async def verify_us_address(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Verify a US address"""
        return await self._request("POST", "/us_verifications", json=payload)

    async def health_check(self) -> bool:
        return self.is_configured


__all__ = ["LobClient", "DEFAULT_BASE_URL"]

"""Async client for the Stampchain REST API.

Transient failures (timeouts, connection errors, 5xx responses) are retried
with exponential backoff. Every failure surfaces as an ``MCPError`` subclass
so tools never leak transport exceptions.
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from ..config import DEFAULT_API_URL, SERVER_NAME, SERVER_VERSION, Settings
from ..core.errors import (
    AuthenticationError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ResourceNotFoundError,
    StampchainAPIError,
)
from .models import Collection, MarketData, Page, SalesPage, Stamp, Token

logger = structlog.get_logger(__name__)

# Maximum backoff delay in seconds
MAX_BACKOFF_SECONDS = 30.0


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (NetworkError, RequestTimeoutError)):
        return True
    if isinstance(exc, StampchainAPIError):
        return exc.status_code is not None and exc.status_code >= 500
    return False


def _clean_params(params: Optional[dict[str, Any]]) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            cleaned[key] = "true" if value else "false"
        else:
            cleaned[key] = value
    return cleaned


class StampchainClient:
    """Client for the Stampchain API.

    Attributes:
        base_url: API root, e.g. ``https://stampchain.io/api/v2``
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        timeout_seconds: float = 30.0,
        retries: int = 3,
        retry_delay_ms: int = 1000,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: API root URL
            timeout_seconds: Per-request timeout
            retries: Retry attempts after the first failure
            retry_delay_ms: Base backoff delay
            api_key: Optional key sent as ``X-API-Key``
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._retries = retries
        self._retry_delay_seconds = retry_delay_ms / 1000.0
        headers = {
            "Accept": "application/json",
            "User-Agent": f"{SERVER_NAME}/{SERVER_VERSION}",
        }
        if api_key:
            headers["X-API-Key"] = api_key
        self._http_client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers=headers,
            follow_redirects=True,
            transport=transport,
        )
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings) -> StampchainClient:
        return cls(
            base_url=settings.api_base_url,
            timeout_seconds=settings.api_timeout_seconds,
            retries=settings.api_retries,
            retry_delay_ms=settings.api_retry_delay_ms,
            api_key=settings.api_key,
        )

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> StampchainClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._http_client.aclose()
        logger.debug("stampchain_client_closed", base_url=self.base_url)

    async def _get(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        resource: Optional[tuple[str, Any]] = None,
    ) -> Any:
        """GET ``path`` with retries and return the decoded JSON body.

        Args:
            path: Path relative to ``base_url``
            params: Query parameters; ``None`` values are dropped
            resource: ``(type, id)`` reported when the API answers 404

        Raises:
            MCPError: Classified failure after retries are exhausted
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._retries + 1),
            wait=wait_exponential(
                multiplier=self._retry_delay_seconds,
                max=MAX_BACKOFF_SECONDS,
            )
            + wait_random(0, self._retry_delay_seconds),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        )
        query = _clean_params(params)
        data: Any = None
        async for attempt in retrying:
            with attempt:
                data = await self._send(
                    path, query, resource, attempt.retry_state.attempt_number
                )
        return data

    async def _send(
        self,
        path: str,
        query: dict[str, Any],
        resource: Optional[tuple[str, Any]],
        attempt: int,
    ) -> Any:
        logger.debug("stampchain_request", path=path, params=query, attempt=attempt)
        try:
            response = await self._http_client.get(path, params=query)
        except httpx.TimeoutException as e:
            logger.warning("stampchain_request_timeout", path=path, attempt=attempt)
            raise RequestTimeoutError(
                f"Request to {path} timed out after {self._timeout_seconds:g} seconds",
                timeout_seconds=self._timeout_seconds,
                original_error=e,
            ) from e
        except httpx.TransportError as e:
            logger.warning(
                "stampchain_request_network_error", path=path, attempt=attempt, error=str(e)
            )
            raise NetworkError(
                f"Network error calling Stampchain API {path}: {e}",
                original_error=e,
            ) from e

        status = response.status_code
        if status >= 400:
            self._raise_for_status(response, path, resource)

        try:
            return response.json()
        except ValueError as e:
            raise StampchainAPIError(
                f"Stampchain API returned invalid JSON for {path}",
                status_code=status,
            ) from e

    def _raise_for_status(
        self,
        response: httpx.Response,
        path: str,
        resource: Optional[tuple[str, Any]],
    ) -> None:
        status = response.status_code
        body = _response_body(response)
        logger.warning("stampchain_request_failed", path=path, status_code=status)

        if status == 404:
            resource_type, resource_id = resource or ("Resource", path)
            raise ResourceNotFoundError(resource_type, resource_id)
        if status == 429:
            retry_after = _retry_after(response)
            raise RateLimitError(
                "Stampchain API rate limit exceeded",
                retry_after=retry_after,
            )
        if status in (401, 403):
            raise AuthenticationError(
                f"Stampchain API rejected credentials ({status})",
                {"status_code": status},
            )
        raise StampchainAPIError(
            f"Stampchain API error {status} for {path}",
            status_code=status,
            response_body=body,
        )

    # Stamps

    async def get_stamp(self, stamp_id: int | str) -> Stamp:
        payload = await self._get(
            f"/stamps/{quote(str(stamp_id), safe='')}", resource=("Stamp", stamp_id)
        )
        data = payload.get("data", payload) if isinstance(payload, dict) else payload
        stamp = data.get("stamp", data) if isinstance(data, dict) else data
        return Stamp.model_validate(stamp)

    async def search_stamps(self, params: Optional[dict[str, Any]] = None) -> Page[Stamp]:
        payload = await self._get("/stamps", params)
        return Page[Stamp].model_validate(payload)

    async def get_recent_stamps(self, limit: int = 20) -> Page[Stamp]:
        payload = await self._get("/stamps", {"limit": limit, "sort_order": "DESC"})
        return Page[Stamp].model_validate(payload)

    # Collections

    async def get_collection(self, collection_id: str) -> Collection:
        payload = await self._get(
            f"/collections/{quote(collection_id, safe='')}",
            resource=("Collection", collection_id),
        )
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            payload = payload["data"]
        return Collection.model_validate(payload)

    async def search_collections(
        self, params: Optional[dict[str, Any]] = None
    ) -> Page[Collection]:
        payload = await self._get("/collections", params)
        return Page[Collection].model_validate(payload)

    # SRC-20

    async def get_token(self, tick: str) -> Token:
        payload = await self._get(
            f"/src20/{quote(tick, safe='')}", resource=("Token", tick)
        )
        if isinstance(payload, dict) and "data" in payload:
            payload = payload["data"]
        if isinstance(payload, list):
            if not payload:
                raise ResourceNotFoundError("Token", tick)
            payload = payload[0]
        return Token.model_validate(payload)

    async def search_tokens(self, params: Optional[dict[str, Any]] = None) -> Page[Token]:
        payload = await self._get("/src20", params)
        return Page[Token].model_validate(payload)

    # Market

    async def get_recent_sales(self, params: Optional[dict[str, Any]] = None) -> SalesPage:
        payload = await self._get("/stamps/recentSales", params)
        return SalesPage.model_validate(payload)

    async def get_market_data(self, params: Optional[dict[str, Any]] = None) -> Page[Stamp]:
        """List stamps together with their ``marketData`` block."""
        query = {**(params or {}), "include_market_data": True}
        payload = await self._get("/stamps", query)
        return Page[Stamp].model_validate(payload)

    async def get_stamp_market_data(self, stamp_id: int | str) -> MarketData:
        """Market data for one stamp.

        Raises:
            ResourceNotFoundError: If the stamp or its market data is missing
        """
        stamp = await self.get_stamp(stamp_id)
        if stamp.market_data is None:
            raise ResourceNotFoundError("Market data", stamp_id)
        return stamp.market_data


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:500] or None


def _retry_after(response: httpx.Response) -> Optional[float]:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None

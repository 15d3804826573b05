"""Client for the Cloudflare Zero Trust Gateway lists API."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import httpx

from threatsync import __version__
from threatsync.errors import DownstreamAPIError, RateLimitedError
from threatsync.feeds.models import ListItem
from threatsync.utils.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.cloudflare.com/client/v4"


class ListsClient:
    """
    Client for downstream list management with retry on rate limiting.

    Every request goes through ``call_with_retry``: HTTP 429 is retried with
    exponential backoff, any other non-2xx response is raised immediately as
    ``DownstreamAPIError``.
    """

    def __init__(
        self,
        account_id: str,
        api_token: str,
        base_url: str = DEFAULT_API_BASE,
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.account_id = account_id
        self.base_url = f"{base_url.rstrip('/')}/accounts/{account_id}/gateway/lists"
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.headers = {
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
            "User-Agent": f"ThreatSync/{__version__}",
        }
        self._client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep or asyncio.sleep

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            logger.info("ListsClient HTTP client closed")

    async def _send(
        self, method: str, endpoint: str, payload: dict[str, Any] | None
    ) -> dict[str, Any]:
        """Perform one request and decode the API envelope."""
        client = await self.get_client()
        url = f"{self.base_url}{endpoint}"
        logger.debug(f"Making {method} request to {url}")

        try:
            response = await client.request(
                method, url, json=payload, headers=self.headers
            )
        except httpx.HTTPError as e:
            raise DownstreamAPIError(
                f"{method} {endpoint or '/'} failed: {type(e).__name__}: {e}"
            ) from e

        if response.status_code == 429:
            raise RateLimitedError(
                f"HTTP 429: rate limited on {method} {endpoint or '/'}",
                status_code=429,
                details=response.headers.get("Retry-After"),
            )

        if not response.is_success:
            raise DownstreamAPIError(
                f"HTTP {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise DownstreamAPIError(
                f"Invalid JSON from {method} {endpoint or '/'}",
                status_code=response.status_code,
            ) from e

        if not data.get("success", False):
            raise DownstreamAPIError(
                f"{method} {endpoint or '/'} unsuccessful: {data.get('errors')}",
                status_code=response.status_code,
                details=data.get("errors"),
            )

        return data

    async def _request(
        self, method: str, endpoint: str = "", payload: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        return await call_with_retry(
            self.retry_policy,
            self._send,
            method,
            endpoint,
            payload,
            sleep=self._sleep,
        )

    async def validate_credentials(self) -> bool:
        """Check that the token can read the account's lists."""
        try:
            await self._request("GET")
            return True
        except DownstreamAPIError as e:
            logger.error(f"API credentials validation failed: {e}")
            return False

    async def list_lists(self) -> list[dict[str, Any]]:
        """All Gateway lists of the account."""
        data = await self._request("GET")
        return data.get("result") or []

    async def get_list(self, list_id: str) -> dict[str, Any]:
        data = await self._request("GET", f"/{list_id}")
        return data["result"]

    async def find_list(self, name: str) -> dict[str, Any] | None:
        """Find a list by exact name."""
        for gateway_list in await self.list_lists():
            if gateway_list.get("name") == name:
                return gateway_list
        return None

    async def create_list(
        self,
        name: str,
        description: str,
        list_type: str,
        items: Sequence[ListItem] = (),
    ) -> dict[str, Any]:
        """Create a list, optionally with initial items."""
        payload: dict[str, Any] = {
            "name": name,
            "description": description,
            "type": list_type,
        }
        if items:
            payload["items"] = [item.to_payload() for item in items]

        data = await self._request("POST", "", payload)
        result = data["result"]
        logger.info(f"Created Gateway list: {result.get('id')} - {result.get('name')}")
        return result

    async def get_or_create_list(
        self, name: str, description: str, list_type: str
    ) -> dict[str, Any]:
        existing = await self.find_list(name)
        if existing is not None:
            return existing
        return await self.create_list(name, description, list_type)

    async def delete_list(self, list_id: str) -> None:
        await self._request("DELETE", f"/{list_id}")
        logger.info(f"Deleted Gateway list: {list_id}")

    async def clear_items(
        self, list_id: str, name: str | None = None, description: str | None = None
    ) -> None:
        """Remove every item from a list by replacing it with an empty one."""
        if name is None:
            current = await self.get_list(list_id)
            name = current.get("name", "")
            description = current.get("description", description or "")

        await self._request(
            "PUT",
            f"/{list_id}",
            {"name": name, "description": description or "", "items": []},
        )
        logger.info(f"Cleared Gateway list: {list_id}")

    async def append_items(self, list_id: str, items: Sequence[ListItem]) -> int:
        """Append one batch of items to a list."""
        await self._request(
            "PATCH",
            f"/{list_id}",
            {"append": [item.to_payload() for item in items]},
        )
        return len(items)

    async def get_list_items_count(self, list_id: str) -> int:
        result = await self.get_list(list_id)
        return int(result.get("count") or 0)

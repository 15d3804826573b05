"""Pytest configuration and shared fixtures."""

import ipaddress
import itertools
import json
import os
from datetime import UTC, datetime, timedelta

import httpx
import pytest

# Set test environment before importing app modules
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/1")
os.environ.setdefault("THREAT_SOURCES_CONFIG", "")

from threatsync.datastore.backends import MemoryBackend  # noqa: E402
from threatsync.datastore.store import IndicatorStore  # noqa: E402
from threatsync.feeds.models import Indicator  # noqa: E402
from threatsync.services.lists_client import ListsClient  # noqa: E402

FIXED_NOW = datetime(2025, 1, 23, 12, 0, tzinfo=UTC)


class Clock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class SleepRecorder:
    """Awaitable stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


def _is_ip(value: str) -> bool:
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        return False
    return True


class FakeGatewayAPI:
    """In-memory Gateway lists API served through httpx.MockTransport."""

    def __init__(self):
        self.lists: dict[str, dict] = {}
        self.items: dict[str, list[dict]] = {}
        self.requests: list[tuple[str, str, dict | None]] = []
        self.queued_statuses: list[int] = []
        self.fail_patch_for: set[str] = set()
        self.fail_create_names: set[str] = set()
        self._ids = itertools.count(1)

    @staticmethod
    def _ok(result) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "errors": [], "result": result})

    @staticmethod
    def _error(status: int, message: str) -> httpx.Response:
        return httpx.Response(
            status, json={"success": False, "errors": [{"message": message}]}
        )

    def _describe(self, list_id: str) -> dict:
        return {**self.lists[list_id], "count": len(self.items[list_id])}

    def add_list(self, name: str, items: list[str] | None = None) -> str:
        list_id = f"list-{next(self._ids)}"
        self.lists[list_id] = {
            "id": list_id,
            "name": name,
            "description": "",
            "type": "IP",
            "created_at": "2025-01-01T00:00:00Z",
            "updated_at": "2025-01-01T00:00:00Z",
        }
        self.items[list_id] = [{"value": value} for value in items or []]
        return list_id

    def calls(self, method: str) -> list[tuple[str, str, dict | None]]:
        return [call for call in self.requests if call[0] == method]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        list_id = request.url.path.split("/gateway/lists", 1)[1].strip("/")
        self.requests.append((request.method, list_id, body))

        if self.queued_statuses:
            status = self.queued_statuses.pop(0)
            if status != 200:
                return self._error(status, f"queued {status}")

        if request.method == "GET" and not list_id:
            return self._ok([self._describe(i) for i in self.lists])

        if request.method == "POST" and not list_id:
            if body["name"] in self.fail_create_names:
                return self._error(400, "list creation rejected")
            new_id = self.add_list(body["name"], [])
            self.lists[new_id].update(
                {"description": body.get("description", ""), "type": body["type"]}
            )
            self.items[new_id] = list(body.get("items", []))
            return self._ok(self._describe(new_id))

        if list_id not in self.lists:
            return self._error(404, "list not found")

        if request.method == "GET":
            return self._ok(self._describe(list_id))
        if request.method == "PUT":
            self.lists[list_id].update(
                {"name": body["name"], "description": body["description"]}
            )
            self.items[list_id] = list(body["items"])
            return self._ok(self._describe(list_id))
        if request.method == "PATCH":
            if list_id in self.fail_patch_for:
                return self._error(500, "append failed")
            if self.lists[list_id]["type"] == "IP" and not all(
                _is_ip(item["value"]) for item in body.get("append", [])
            ):
                return self._error(400, "invalid IP address in list items")
            self.items[list_id].extend(body.get("append", []))
            return self._ok(self._describe(list_id))
        if request.method == "DELETE":
            del self.lists[list_id]
            del self.items[list_id]
            return self._ok({"id": list_id})

        return self._error(405, "method not allowed")


def make_indicator(
    value: str,
    score: float = 50.0,
    sources: list[str] | None = None,
    kind: str | None = None,
    first_seen: datetime = FIXED_NOW,
    last_seen: datetime | None = None,
    expires_at: datetime | None = None,
) -> Indicator:
    """Build an indicator with sensible defaults around ``FIXED_NOW``."""
    last_seen = last_seen or first_seen
    return Indicator(
        value=value,
        type=kind or ("ip" if value.replace(".", "").isdigit() else "domain"),
        score=score,
        sources=sources or ["test"],
        first_seen=first_seen,
        last_seen=last_seen,
        expires_at=expires_at or last_seen + timedelta(hours=24),
    )


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend(max_value_bytes=25 * 1024 * 1024)


@pytest.fixture
def store(backend: MemoryBackend, clock: Clock) -> IndicatorStore:
    return IndicatorStore(backend, clock=clock)


@pytest.fixture
def gateway_api() -> FakeGatewayAPI:
    return FakeGatewayAPI()


@pytest.fixture
def lists_client(gateway_api: FakeGatewayAPI, sleeper: SleepRecorder) -> ListsClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(gateway_api.handler))
    return ListsClient(
        "account-123",
        "token",
        base_url="https://api.test/client/v4",
        http_client=http_client,
        sleep=sleeper,
    )

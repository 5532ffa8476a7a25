"""Shared test fixtures."""

import json
from typing import Any, Dict, List, Optional, Sequence

import httpx
import pytest

from flow_exporter.config import Settings
from flow_exporter.destination import InMemoryDestination
from flow_exporter.errors import DestinationError
from flow_exporter.models import NormalizedEvent

T0 = 1700000000


def v2_record(ts: float, ip: str = "192.168.1.10", **extra: Any) -> Dict[str, Any]:
    record = {
        "ts": ts,
        "gid": "box-1",
        "protocol": "tcp",
        "direction": "outbound",
        "block": False,
        "download": 2048,
        "upload": 512,
        "duration": 1.5,
        "count": 1,
        "device": {"id": "AA:BB:CC:DD:EE:FF", "ip": ip, "name": "laptop"},
        "source": {"id": "AA:BB:CC:DD:EE:FF", "ip": ip, "name": "laptop"},
        "destination": {"id": "", "ip": "93.184.216.34", "name": "example.com"},
        "network": {"id": "net-1", "name": "LAN"},
        "category": "edu",
        "region": "US",
    }
    record.update(extra)
    return record


def v2_page(records: List[Dict[str, Any]], next_cursor: str = "") -> Dict[str, Any]:
    return {"results": records, "count": len(records), "next_cursor": next_cursor}


class FakeFlowAPI:
    """Serves canned pages through ``httpx.MockTransport`` and records requests."""

    def __init__(self, pages: Sequence[Any], status_code: int = 200):
        self.pages = list(pages)
        self.status_code = status_code
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "nope"})
        index = min(len(self.requests), len(self.pages)) - 1
        return httpx.Response(200, json=self.pages[index] if self.pages else [])

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def params(self, index: int) -> Dict[str, str]:
        return dict(self.requests[index].url.params)

    def body(self, index: int) -> Dict[str, Any]:
        return json.loads(self.requests[index].content)


class RecordingDestination(InMemoryDestination):
    """In-memory destination that records calls and can be made to fail."""

    def __init__(self, fail_query: bool = False, fail_append_on: Optional[int] = None):
        super().__init__()
        self.fail_query = fail_query
        self.fail_append_on = fail_append_on
        self.query_calls = 0
        self.append_calls: List[List[NormalizedEvent]] = []

    async def query_latest(self, dataset, since=None):
        self.query_calls += 1
        if self.fail_query:
            raise DestinationError("query unavailable")
        return await super().query_latest(dataset, since)

    async def append(self, dataset, events):
        self.append_calls.append(list(events))
        if self.fail_append_on is not None and len(self.append_calls) == self.fail_append_on:
            raise DestinationError("ingest rejected")
        return await super().append(dataset, events)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        axiom_dataset="flowlogs-test",
        axiom_org_id="org-1",
        axiom_token="xaat-test",
        firewalla_url="https://fw.example.test/v2/",
        firewalla_key="fw-key",
        destination_backend="memory",
        lookback_hours=12,
        page_size=500,
        display_timezone="UTC",
    )


@pytest.fixture
def destination():
    return RecordingDestination()

import httpx
import pytest

from flow_exporter.errors import SourceFetchError
from flow_exporter.models import ExtractionWindow
from flow_exporter.source import FirewallaClient, Paginator

from conftest import T0, FakeFlowAPI, v2_page, v2_record

WINDOW = ExtractionWindow(start_time=T0, end_time=T0 + 3600)


def _records(n):
    return [v2_record(T0 + i) for i in range(n)]


def _paginator(api, page_size=5, api_version="v2"):
    client = FirewallaClient(
        "https://fw.example.test/v2",
        "secret",
        api_version=api_version,
        transport=api.transport,
    )
    return Paginator(client, page_size)


@pytest.mark.asyncio
async def test_full_page_with_cursor_has_more():
    api = FakeFlowAPI([v2_page(_records(5), "next-1")])

    page = await _paginator(api).fetch_page(WINDOW)

    assert page.has_more is True
    assert page.next_cursor == "next-1"


@pytest.mark.asyncio
async def test_short_page_ends_even_with_cursor():
    api = FakeFlowAPI([v2_page(_records(4), "next-1")])

    page = await _paginator(api).fetch_page(WINDOW)

    assert page.has_more is False


@pytest.mark.asyncio
async def test_full_page_without_cursor_ends():
    api = FakeFlowAPI([v2_page(_records(5), "")])

    page = await _paginator(api).fetch_page(WINDOW)

    assert page.has_more is False


@pytest.mark.asyncio
async def test_v2_request_shape():
    api = FakeFlowAPI([v2_page([])])

    await _paginator(api).fetch_page(
        ExtractionWindow(start_time=T0 + 0.7, end_time=T0 + 60), "cur-9"
    )

    request = api.requests[0]
    assert request.method == "GET"
    assert request.url.path == "/v2/flows"
    assert request.headers["Authorization"] == "Token secret"
    params = api.params(0)
    assert params["query"] == f"ts:{T0}-{T0 + 60}"
    assert params["limit"] == "5"
    assert params["sortBy"] == "ts"
    assert params["cursor"] == "cur-9"
    assert "destinationIP" in params["groupBy"]


@pytest.mark.asyncio
async def test_v1_request_shape_uses_offset():
    api = FakeFlowAPI([{"results": [], "next": 0}])

    await _paginator(api, api_version="v1").fetch_page(WINDOW, "10")

    request = api.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/v2/flows/query"
    assert api.body(0) == {"start": T0, "end": T0 + 3600, "limit": 5, "offset": 10}


@pytest.mark.asyncio
async def test_non_success_status_is_fatal():
    api = FakeFlowAPI([], status_code=503)

    with pytest.raises(SourceFetchError) as excinfo:
        await _paginator(api).fetch_page(WINDOW)

    assert excinfo.value.status_code == 503
    assert len(api.requests) == 1


@pytest.mark.asyncio
async def test_transport_error_is_fatal():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = FirewallaClient(
        "https://fw.example.test/v2/", "secret", transport=httpx.MockTransport(handler)
    )

    with pytest.raises(SourceFetchError):
        await Paginator(client, 5).fetch_page(WINDOW)


@pytest.mark.asyncio
async def test_non_json_body_is_fatal():
    client = FirewallaClient(
        "https://fw.example.test/v2/",
        "secret",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>")),
    )

    with pytest.raises(SourceFetchError):
        await Paginator(client, 5).fetch_page(WINDOW)


def test_page_size_must_be_positive():
    client = FirewallaClient("https://fw.example.test/", "secret")
    with pytest.raises(ValueError):
        Paginator(client, 0)

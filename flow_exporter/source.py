"""Firewall flow API client and paginator."""

import logging
from typing import Any, Dict, Optional

import httpx

from .decoding import decode_page, normalize_cursor
from .errors import SourceFetchError
from .models import ExtractionWindow, FlowPage

logger = logging.getLogger(__name__)

GROUP_BY = (
    "ts,status,box,source,sourceIP,sport,device,network,destination,"
    "destinationIP,dport,domain,protocol,category,region,direction,"
    "blockType,upload,download,total,count"
)


class FirewallaClient:
    """Source page-fetch capability over the firewall's REST API.

    Expected configuration:
        base_url:  e.g. ``https://example.firewalla.net/v2/``
        api_key:   MSP API token, sent as ``Authorization: <scheme> <key>``
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_version: str = "v2",
        auth_scheme: str = "Token",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url.endswith("/"):
            base_url += "/"
        self.base_url = base_url
        self.api_version = api_version
        self._client = httpx.AsyncClient(
            headers={
                "Authorization": f"{auth_scheme} {api_key}",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "FirewallaClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _build_request(
        self, window: ExtractionWindow, page_size: int, cursor: str
    ) -> httpx.Request:
        start = int(window.start_time)
        end = int(window.end_time)
        if self.api_version == "v1":
            body: Dict[str, Any] = {
                "start": start,
                "end": end,
                "limit": page_size,
                "offset": int(cursor) if cursor else 0,
            }
            return self._client.build_request(
                "POST", self.base_url + "flows/query", json=body
            )
        params = {
            "query": f"ts:{start}-{end}",
            "sortBy": "ts",
            "limit": page_size,
            "groupBy": GROUP_BY,
            "cursor": cursor,
        }
        return self._client.build_request("GET", self.base_url + "flows", params=params)

    async def fetch(self, window: ExtractionWindow, page_size: int, cursor: str) -> Any:
        """Issue one page request and return the decoded JSON payload."""
        request = self._build_request(window, page_size, cursor)
        try:
            response = await self._client.send(request)
        except httpx.HTTPError as exc:
            raise SourceFetchError(f"Firewalla request failed: {exc}") from exc

        if response.status_code != 200:
            raise SourceFetchError(
                f"Firewalla API returned HTTP {response.status_code}",
                status_code=response.status_code,
                details={"path": request.url.path},
            )

        try:
            return response.json()
        except ValueError as exc:
            raise SourceFetchError("Non-JSON response from Firewalla API") from exc


class Paginator:
    """Walks the flow API one page at a time.

    A page only reports ``has_more`` when it came back full *and* carried a
    next cursor. Offsets (v1) index into the result set of a fixed window, so
    only the v2 cursor lets the caller raise the window start between pages.
    """

    def __init__(self, client: FirewallaClient, page_size: int):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.client = client
        self.page_size = page_size

    @property
    def shrinks_window(self) -> bool:
        return self.client.api_version != "v1"

    async def fetch_page(self, window: ExtractionWindow, cursor: str = "") -> FlowPage:
        payload = await self.client.fetch(window, self.page_size, normalize_cursor(cursor))
        page = decode_page(payload, self.client.api_version)
        page.has_more = page.returned_count == self.page_size and bool(page.next_cursor)
        logger.debug(
            "Fetched page: returned=%d next_cursor=%r has_more=%s",
            page.returned_count,
            page.next_cursor,
            page.has_more,
        )
        return page

import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from .errors import DestinationError
from .models import NormalizedEvent

logger = logging.getLogger(__name__)


class Destination(Protocol):
    async def query_latest(
        self, dataset: str, since: Optional[float] = None
    ) -> Optional[Dict[str, Any]]:
        """Most recent record of ``dataset`` by event time, or None."""
        ...

    async def append(self, dataset: str, events: Sequence[NormalizedEvent]) -> int:
        ...

    async def close(self) -> None:
        ...


class InMemoryDestination:
    """Process-local destination keeping appended events per dataset."""

    def __init__(self) -> None:
        self.datasets: Dict[str, List[Dict[str, Any]]] = {}

    async def query_latest(
        self, dataset: str, since: Optional[float] = None
    ) -> Optional[Dict[str, Any]]:
        rows = [
            row
            for row in self.datasets.get(dataset, [])
            if since is None or row["event_timestamp"] >= since
        ]
        if not rows:
            return None
        return max(rows, key=lambda row: row["event_timestamp"])

    async def append(self, dataset: str, events: Sequence[NormalizedEvent]) -> int:
        rows = self.datasets.setdefault(dataset, [])
        for event in events:
            rows.append(event.to_ingest_dict())
        return len(events)

    def events(self, dataset: str) -> List[Dict[str, Any]]:
        return list(self.datasets.get(dataset, []))

    async def close(self) -> None:
        return None


class SQLiteDestination:
    """SQLite-backed destination for local runs."""

    def __init__(self, db_path: str):
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS flow_events (
                dataset TEXT NOT NULL,
                event_timestamp REAL NOT NULL,
                ingest_timestamp REAL NOT NULL,
                payload TEXT NOT NULL
            );
            """
        )
        self.conn.execute(
            """
            CREATE INDEX IF NOT EXISTS flow_events_time
            ON flow_events (dataset, event_timestamp);
            """
        )
        self.conn.commit()

    async def query_latest(
        self, dataset: str, since: Optional[float] = None
    ) -> Optional[Dict[str, Any]]:
        try:
            row = self.conn.execute(
                """
                SELECT payload FROM flow_events
                WHERE dataset = ? AND event_timestamp >= ?
                ORDER BY event_timestamp DESC
                LIMIT 1
                """,
                (dataset, since if since is not None else float("-inf")),
            ).fetchone()
        except sqlite3.Error as exc:
            raise DestinationError(f"SQLite query failed: {exc}") from exc
        return json.loads(row["payload"]) if row else None

    async def append(self, dataset: str, events: Sequence[NormalizedEvent]) -> int:
        try:
            self.conn.executemany(
                """
                INSERT INTO flow_events (dataset, event_timestamp, ingest_timestamp, payload)
                VALUES (?, ?, ?, ?)
                """,
                [
                    (
                        dataset,
                        event.event_timestamp,
                        event.ingest_timestamp,
                        json.dumps(event.to_ingest_dict()),
                    )
                    for event in events
                ],
            )
            self.conn.commit()
        except sqlite3.Error as exc:
            self.conn.rollback()
            raise DestinationError(f"SQLite append failed: {exc}") from exc
        return len(events)

    def count(self, dataset: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) AS c FROM flow_events WHERE dataset = ?", (dataset,)
        ).fetchone()
        return row["c"]

    async def close(self) -> None:
        self.conn.close()


class AxiomDestination:
    """Axiom dataset used through its REST query and ingest endpoints."""

    def __init__(
        self,
        token: str,
        org_id: str,
        base_url: str = "https://api.axiom.co",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "X-Axiom-Org-Id": org_id,
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def query_latest(
        self, dataset: str, since: Optional[float] = None
    ) -> Optional[Dict[str, Any]]:
        quoted = dataset.replace("\\", "\\\\").replace("'", "\\'")
        body: Dict[str, Any] = {"apl": f"['{quoted}'] | order by _time desc | limit 1"}
        if since is not None:
            body["startTime"] = datetime.fromtimestamp(since, tz=timezone.utc).isoformat()
            body["endTime"] = datetime.now(timezone.utc).isoformat()
        logger.debug("Axiom query: %s", body["apl"])

        try:
            response = await self._client.post(
                "/v1/datasets/_apl", params={"format": "legacy"}, json=body
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise DestinationError(
                f"Axiom query returned HTTP {exc.response.status_code}",
                details={"apl": body["apl"]},
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise DestinationError(f"Axiom query failed: {exc}") from exc

        matches = payload.get("matches") or []
        if not matches:
            return None
        match = matches[0]
        row = dict(match.get("data") or {})
        if "_time" in match:
            row.setdefault("_time", match["_time"])
        return row

    async def append(self, dataset: str, events: Sequence[NormalizedEvent]) -> int:
        if not events:
            return 0
        try:
            response = await self._client.post(
                f"/v1/datasets/{dataset}/ingest",
                json=[event.to_ingest_dict() for event in events],
            )
            response.raise_for_status()
            status = response.json()
        except httpx.HTTPStatusError as exc:
            raise DestinationError(
                f"Axiom ingest returned HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise DestinationError(f"Axiom ingest failed: {exc}") from exc

        failed = status.get("failed", 0)
        if failed:
            raise DestinationError(
                f"Axiom rejected {failed} of {len(events)} events",
                details=status.get("failures"),
            )
        return status.get("ingested", len(events))

    async def close(self) -> None:
        await self._client.aclose()


def create_destination(
    backend: str,
    token: str = "",
    org_id: str = "",
    base_url: str = "https://api.axiom.co",
    path: str = "data/flowlogs.db",
    timeout: float = 10.0,
) -> Destination:
    backend = backend.lower()
    if backend == "sqlite":
        return SQLiteDestination(path)
    if backend == "memory":
        return InMemoryDestination()
    return AxiomDestination(token, org_id, base_url=base_url, timeout=timeout)

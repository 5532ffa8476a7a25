from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import ExtractorError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeviceRef(BaseModel):
    """Local device that took part in the flow."""

    id: str = ""
    ip: str = ""
    name: str = ""


class EndpointRef(BaseModel):
    id: str = ""
    ip: str = ""
    name: str = ""


class RemoteRef(BaseModel):
    ip: str = ""
    domain: str = ""
    port: Optional[int] = None
    country: str = ""


class NetworkRef(BaseModel):
    id: str = ""
    name: str = ""


class RawFlowRecord(BaseModel):
    """One flow entry from a source page, after version-specific decoding."""

    timestamp: float
    gid: Optional[str] = None
    protocol: Optional[str] = None
    direction: Optional[str] = None
    blocked: bool = False
    block_type: Optional[str] = None
    bytes_uploaded: Optional[float] = None
    bytes_downloaded: Optional[float] = None
    duration_seconds: Optional[float] = None
    occurrence_count: int = 0
    device: DeviceRef = Field(default_factory=DeviceRef)
    source: Optional[EndpointRef] = None
    destination: Optional[EndpointRef] = None
    remote: Optional[RemoteRef] = None
    network: Optional[NetworkRef] = None
    category: Optional[str] = None
    region: Optional[str] = None
    tags: Optional[List[str]] = None


class NormalizedEvent(BaseModel):
    """Flattened, destination-bound flow event."""

    event_timestamp: float
    ingest_timestamp: float
    gid: Optional[str] = None
    protocol: Optional[str] = None
    direction: Optional[str] = None
    blocked: bool = False
    block_type: Optional[str] = None
    bytes_uploaded: Optional[float] = None
    bytes_downloaded: Optional[float] = None
    duration_seconds: Optional[float] = None
    occurrence_count: int = 0
    device_id: Optional[str] = None
    device_ip: str
    device_name: Optional[str] = None
    source_id: Optional[str] = None
    source_ip: Optional[str] = None
    source_name: Optional[str] = None
    destination_id: Optional[str] = None
    destination_ip: Optional[str] = None
    destination_name: Optional[str] = None
    remote_ip: Optional[str] = None
    remote_domain: Optional[str] = None
    remote_port: Optional[int] = None
    remote_country: Optional[str] = None
    network_id: Optional[str] = None
    network_name: Optional[str] = None
    category: Optional[str] = None
    region: Optional[str] = None
    tags: Optional[List[str]] = None

    def to_ingest_dict(self) -> Dict[str, Any]:
        """JSON object as appended to the destination, absent values omitted."""
        payload = self.model_dump(exclude_none=True)
        payload["_time"] = datetime.fromtimestamp(
            self.event_timestamp, tz=timezone.utc
        ).isoformat()
        return payload


class ExtractionWindow(BaseModel):
    """Half-open interval [start_time, end_time) in Unix seconds."""

    start_time: float
    end_time: float

    @property
    def span_seconds(self) -> float:
        return self.end_time - self.start_time


class FlowPage(BaseModel):
    records: List[RawFlowRecord]
    next_cursor: str = ""
    has_more: bool = False
    returned_count: int = 0
    undecodable_count: int = 0


class RunStatus(str, Enum):
    RESOLVING = "resolving"
    PAGING = "paging"
    BATCH_APPENDING = "batch_appending"
    DONE = "done"
    FAILED = "failed"


class RunResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    run_id: str
    status: RunStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    window: Optional[ExtractionWindow] = None
    processed_count: int = 0
    skipped_count: int = 0
    pages_fetched: int = 0
    batches_appended: int = 0
    max_event_timestamp: Optional[float] = None
    cancelled: bool = False
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    error: Optional[ExtractorError] = Field(default=None, exclude=True)

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.DONE

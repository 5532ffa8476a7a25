import time
from typing import Optional

from .models import NormalizedEvent, RawFlowRecord


def is_complete(record: RawFlowRecord) -> bool:
    """Records without a device IP are partial and never forwarded."""
    return bool(record.device.ip)


def map_record(
    record: RawFlowRecord, ingested_at: Optional[float] = None
) -> NormalizedEvent:
    """Flatten a decoded flow record into the destination event schema.

    ``ingested_at`` defaults to the current wall-clock time.
    """
    source = record.source
    destination = record.destination
    remote = record.remote
    network = record.network

    return NormalizedEvent(
        event_timestamp=float(record.timestamp),
        ingest_timestamp=float(ingested_at if ingested_at is not None else time.time()),
        gid=record.gid,
        protocol=record.protocol,
        direction=record.direction,
        blocked=record.blocked,
        block_type=record.block_type,
        bytes_uploaded=record.bytes_uploaded,
        bytes_downloaded=record.bytes_downloaded,
        duration_seconds=record.duration_seconds,
        occurrence_count=int(record.occurrence_count),
        device_id=record.device.id or None,
        device_ip=record.device.ip,
        device_name=record.device.name or None,
        source_id=source.id or None if source else None,
        source_ip=source.ip or None if source else None,
        source_name=source.name or None if source else None,
        destination_id=destination.id or None if destination else None,
        destination_ip=destination.ip or None if destination else None,
        destination_name=destination.name or None if destination else None,
        remote_ip=remote.ip or None if remote else None,
        remote_domain=remote.domain or None if remote else None,
        remote_port=remote.port if remote else None,
        remote_country=remote.country or None if remote else None,
        network_id=network.id or None if network else None,
        network_name=network.name or None if network else None,
        category=record.category,
        region=record.region,
        tags=list(record.tags) if record.tags else None,
    )

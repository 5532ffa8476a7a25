"""Decoding of firewall API payloads into ``RawFlowRecord``.

The API has shipped two wire shapes for the same data:

``v1``
    Legacy ``POST flows/query`` endpoint. Records are flat (``deviceIP``,
    ``deviceName``, ``ip``, ``host``, ``port``, ``fd`` ...). The page is
    either a bare list or ``{"results": [...], "next": <offset>}``.
``v2``
    Cursor-based ``GET flows`` endpoint. Records nest ``device``, ``source``,
    ``destination``, ``remote`` and ``network`` (or ``group``) objects and the
    page is ``{"results": [...], "count": n, "next_cursor": "..."}``.

Everything downstream of :func:`decode_page` only sees ``RawFlowRecord``.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .models import (
    DeviceRef,
    EndpointRef,
    FlowPage,
    NetworkRef,
    RawFlowRecord,
    RemoteRef,
)

logger = logging.getLogger(__name__)

EXHAUSTED_CURSORS = ("", "0", "None", "null")


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, list):
        value = value[0] if value else None
    number = _as_float(value)
    return int(number) if number is not None else None


def _as_timestamp(value: Any) -> Optional[float]:
    """Epoch seconds, or None when the value cannot be rendered as a date."""
    number = _as_float(value)
    if number is None:
        return None
    try:
        datetime.fromtimestamp(number, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    return number


def _as_tags(value: Any) -> Optional[List[str]]:
    if isinstance(value, (list, tuple)):
        tags = [str(tag) for tag in value if tag is not None and str(tag)]
    elif isinstance(value, (str, int)) and not isinstance(value, bool):
        tags = [str(value)]
    else:
        return None
    return tags or None


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text or None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _nested(record: Mapping[str, Any], key: str) -> Dict[str, Any]:
    value = record.get(key)
    return value if isinstance(value, dict) else {}


def _endpoint(block: Mapping[str, Any]) -> Optional[EndpointRef]:
    if not block:
        return None
    return EndpointRef(
        id=_as_str(block.get("id")) or "",
        ip=_as_str(block.get("ip")) or "",
        name=_as_str(block.get("name")) or "",
    )


def _network(block: Mapping[str, Any]) -> Optional[NetworkRef]:
    if not block:
        return None
    return NetworkRef(
        id=_as_str(block.get("id")) or "",
        name=_as_str(block.get("name")) or "",
    )


def _decode_v2_record(item: Mapping[str, Any]) -> Optional[RawFlowRecord]:
    timestamp = _as_timestamp(item.get("ts"))
    if timestamp is None:
        return None

    device = _nested(item, "device")
    destination = _endpoint(_nested(item, "destination"))
    remote_block = _nested(item, "remote")
    remote = None
    if remote_block:
        remote = RemoteRef(
            ip=_as_str(remote_block.get("ip")) or "",
            domain=_as_str(remote_block.get("domain")) or "",
            port=_as_int(remote_block.get("port")),
            country=_as_str(remote_block.get("country")) or "",
        )
    elif any(item.get(key) for key in ("domain", "dport", "country")):
        remote = RemoteRef(
            ip=destination.ip if destination else "",
            domain=_as_str(item.get("domain")) or "",
            port=_as_int(item.get("dport")),
            country=_as_str(item.get("country")) or "",
        )

    return RawFlowRecord(
        timestamp=timestamp,
        gid=_as_str(item.get("gid")),
        protocol=_as_str(item.get("protocol")),
        direction=_as_str(item.get("direction")),
        blocked=_as_bool(item.get("block", item.get("blocked"))),
        block_type=_as_str(item.get("blockType")),
        bytes_uploaded=_as_float(item.get("upload")),
        bytes_downloaded=_as_float(item.get("download")),
        duration_seconds=_as_float(item.get("duration")),
        occurrence_count=_as_int(item.get("count")) or 0,
        device=DeviceRef(
            id=_as_str(device.get("id")) or "",
            ip=_as_str(device.get("ip")) or "",
            name=_as_str(device.get("name")) or "",
        ),
        source=_endpoint(_nested(item, "source")),
        destination=destination,
        remote=remote,
        network=_network(_nested(item, "network") or _nested(item, "group")),
        category=_as_str(item.get("category")),
        region=_as_str(item.get("region")),
        tags=_as_tags(item.get("tags")),
    )


def _decode_v1_record(item: Mapping[str, Any]) -> Optional[RawFlowRecord]:
    timestamp = _as_timestamp(item.get("ts"))
    if timestamp is None:
        return None

    remote = None
    if item.get("ip") or item.get("host"):
        remote = RemoteRef(
            ip=_as_str(item.get("ip")) or "",
            domain=_as_str(item.get("host")) or "",
            port=_as_int(item.get("port")),
            country=_as_str(item.get("country")) or "",
        )

    network = None
    if item.get("intf") or item.get("networkName"):
        network = NetworkRef(
            id=_as_str(item.get("intf")) or "",
            name=_as_str(item.get("networkName")) or "",
        )

    return RawFlowRecord(
        timestamp=timestamp,
        gid=_as_str(item.get("gid")),
        protocol=_as_str(item.get("protocol")),
        direction=_as_str(item.get("fd", item.get("direction"))),
        blocked=_as_bool(item.get("blocked")),
        block_type=_as_str(item.get("blockType")),
        bytes_uploaded=_as_float(item.get("upload")),
        bytes_downloaded=_as_float(item.get("download")),
        duration_seconds=_as_float(item.get("duration")),
        occurrence_count=_as_int(item.get("count")) or 0,
        device=DeviceRef(
            id=_as_str(item.get("device")) or "",
            ip=_as_str(item.get("deviceIP")) or "",
            name=_as_str(item.get("deviceName")) or "",
        ),
        remote=remote,
        network=network,
        category=_as_str(item.get("category")),
        region=_as_str(item.get("region")),
        tags=_as_tags(item.get("tags")),
    )


def _split_v2(payload: Any) -> Tuple[List[Any], str]:
    if not isinstance(payload, dict):
        return [], ""
    return list(payload.get("results") or []), _as_str(payload.get("next_cursor")) or ""


def _split_v1(payload: Any) -> Tuple[List[Any], str]:
    if isinstance(payload, list):
        return payload, ""
    if not isinstance(payload, dict):
        return [], ""
    next_offset = payload.get("next")
    cursor = str(_as_int(next_offset)) if _as_int(next_offset) else ""
    return list(payload.get("results") or []), cursor


DECODERS: Dict[str, Tuple[Callable[[Any], Tuple[List[Any], str]], Callable]] = {
    "v1": (_split_v1, _decode_v1_record),
    "v2": (_split_v2, _decode_v2_record),
}


def normalize_cursor(cursor: Optional[str]) -> str:
    if cursor is None or cursor in EXHAUSTED_CURSORS:
        return ""
    return cursor


def decode_page(payload: Any, api_version: str) -> FlowPage:
    """Decode one page payload; ``has_more`` is left for the paginator."""
    try:
        split, decode_record = DECODERS[api_version]
    except KeyError:
        raise ValueError(f"Unknown api_version '{api_version}'") from None

    items, next_cursor = split(payload)
    records: List[RawFlowRecord] = []
    undecodable = 0
    for item in items:
        record = decode_record(item) if isinstance(item, dict) else None
        if record is None:
            undecodable += 1
            continue
        records.append(record)

    if undecodable:
        logger.debug("Dropped %d undecodable flow entries", undecodable)

    return FlowPage(
        records=records,
        next_cursor=normalize_cursor(next_cursor),
        returned_count=len(items),
        undecodable_count=undecodable,
    )

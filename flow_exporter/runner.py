"""Single entry point for one extraction run.

Builds the source client, destination, watermark resolver and sync driver
from an explicit :class:`~flow_exporter.config.Settings` and runs them once.
"""

import asyncio
import logging
import uuid
from datetime import timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from .config import Settings
from .destination import Destination, create_destination
from .errors import ConfigurationError
from .models import RunResult, RunStatus, utcnow
from .source import FirewallaClient, Paginator
from .sync import SyncDriver
from .watermark import WatermarkResolver

logger = logging.getLogger(__name__)


def _display_tz(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown display timezone %r, using UTC", name)
        return timezone.utc


def _failed(exc: ConfigurationError) -> RunResult:
    now = utcnow()
    return RunResult(
        run_id=uuid.uuid4().hex[:12],
        status=RunStatus.FAILED,
        started_at=now,
        finished_at=now,
        error=exc,
        error_code=exc.code,
        error_message=exc.message,
    )


async def run_extraction(
    lookback_hours: Optional[int] = None,
    settings: Optional[Settings] = None,
    destination: Optional[Destination] = None,
    source_transport: Optional[httpx.AsyncBaseTransport] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> RunResult:
    """Run one extraction and report the outcome as a ``RunResult``.

    Configuration problems are reported as a failed result, like any other
    run failure. A ``destination`` passed in is used as-is and left open.
    """
    settings = settings or Settings()
    lookback_hours = lookback_hours if lookback_hours is not None else settings.lookback_hours

    try:
        settings.require_credentials()
    except ConfigurationError as exc:
        logger.error("Configuration invalid: %s", exc.message)
        return _failed(exc)

    owns_destination = destination is None
    if destination is None:
        destination = create_destination(
            settings.destination_backend,
            token=settings.axiom_token,
            org_id=settings.axiom_org_id,
            base_url=settings.axiom_url,
            path=settings.destination_path,
            timeout=settings.request_timeout,
        )

    client = FirewallaClient(
        settings.firewalla_url,
        settings.firewalla_key,
        api_version=settings.api_version,
        auth_scheme=settings.firewalla_auth_scheme,
        timeout=settings.request_timeout,
        transport=source_transport,
    )
    driver = SyncDriver(
        resolver=WatermarkResolver(
            destination,
            settings.dataset,
            field=settings.watermark_field,
            fallback_on_error=settings.watermark_fallback_on_error,
        ),
        paginator=Paginator(client, settings.page_size),
        destination=destination,
        dataset=settings.dataset,
        display_tz=_display_tz(settings.display_timezone),
    )

    logger.info(
        "Starting extraction: dataset=%s api_version=%s lookback_hours=%s",
        settings.dataset,
        settings.api_version,
        lookback_hours,
    )
    try:
        return await driver.run(lookback_hours, stop_event=stop_event)
    finally:
        await client.close()
        if owns_destination:
            await destination.close()

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone, tzinfo
from typing import Callable, List, Optional

import structlog

from .destination import Destination
from .errors import ExtractorError
from .mapper import is_complete, map_record
from .models import (
    ExtractionWindow,
    NormalizedEvent,
    RunResult,
    RunStatus,
    utcnow,
)
from .source import Paginator
from .watermark import WatermarkResolver

logger = logging.getLogger(__name__)

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class SyncDriver:
    """Resolve the window, then page, map and append until the source is drained.

    Pages are processed strictly in order. With cursor paging, the lower
    window bound moves up to the newest event seen after every full page and
    never moves backwards within a run. Offset paging keeps the window fixed.
    Failures end the run with a ``FAILED`` result instead of propagating.
    """

    def __init__(
        self,
        resolver: WatermarkResolver,
        paginator: Paginator,
        destination: Destination,
        dataset: str,
        display_tz: tzinfo = timezone.utc,
        clock: Callable[[], float] = time.time,
    ):
        self.resolver = resolver
        self.paginator = paginator
        self.destination = destination
        self.dataset = dataset
        self.display_tz = display_tz
        self.clock = clock

    def _format(self, ts: float) -> str:
        return datetime.fromtimestamp(ts, tz=self.display_tz).strftime(TIME_FORMAT)

    async def run(
        self, lookback_hours: int, stop_event: Optional[asyncio.Event] = None
    ) -> RunResult:
        result = RunResult(
            run_id=uuid.uuid4().hex[:12],
            status=RunStatus.RESOLVING,
            started_at=utcnow(),
        )
        with structlog.contextvars.bound_contextvars(
            dataset=self.dataset, run_id=result.run_id
        ):
            try:
                await self._run(result, lookback_hours, stop_event)
                result.status = RunStatus.DONE
                logger.info(
                    "Extraction completed: processed=%d skipped=%d pages=%d",
                    result.processed_count,
                    result.skipped_count,
                    result.pages_fetched,
                )
            except ExtractorError as exc:
                result.status = RunStatus.FAILED
                result.error = exc
                result.error_code = exc.code
                result.error_message = exc.message
                logger.error(
                    "Extraction failed (%s) after %d records: %s",
                    exc.code,
                    result.processed_count,
                    exc.message,
                )
            finally:
                result.finished_at = utcnow()
        return result

    async def _run(
        self,
        result: RunResult,
        lookback_hours: int,
        stop_event: Optional[asyncio.Event],
    ) -> None:
        window = await self.resolver.resolve(lookback_hours)
        result.window = window
        logger.info(
            "Extraction window start=%s end=%s span=%ds",
            self._format(window.start_time),
            self._format(window.end_time),
            int(window.span_seconds),
        )

        start_time = window.start_time
        cursor = ""
        while True:
            if stop_event is not None and stop_event.is_set():
                logger.info("Stop requested, ending run at page boundary")
                result.cancelled = True
                return

            result.status = RunStatus.PAGING
            page = await self.paginator.fetch_page(
                ExtractionWindow(start_time=start_time, end_time=window.end_time),
                cursor,
            )
            result.pages_fetched += 1

            batch: List[NormalizedEvent] = []
            for record in page.records:
                if not is_complete(record):
                    result.skipped_count += 1
                    continue
                batch.append(map_record(record, ingested_at=self.clock()))
                if (
                    result.max_event_timestamp is None
                    or record.timestamp > result.max_event_timestamp
                ):
                    result.max_event_timestamp = record.timestamp
            result.skipped_count += page.undecodable_count

            result.status = RunStatus.BATCH_APPENDING
            logger.info("Appending %d events", len(batch))
            await self.destination.append(self.dataset, batch)
            result.batches_appended += 1
            result.processed_count += len(batch)

            if not page.has_more:
                return

            cursor = page.next_cursor
            if self.paginator.shrinks_window and result.max_event_timestamp is not None:
                start_time = max(
                    start_time, min(result.max_event_timestamp, window.end_time)
                )

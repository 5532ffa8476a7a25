import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from .destination import Destination
from .errors import ConfigurationError, DestinationError
from .models import ExtractionWindow

logger = logging.getLogger(__name__)

LEGACY_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_watermark(value: Any) -> float:
    """Epoch seconds from a number, ISO-8601 string or legacy timestamp."""
    if isinstance(value, bool):
        raise ValueError(f"Unsupported watermark value {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return float(text)
        except ValueError:
            pass
        try:
            parsed = datetime.strptime(text, LEGACY_TIME_FORMAT)
        except ValueError:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    raise ValueError(f"Unsupported watermark value {value!r}")


class WatermarkResolver:
    """Derives the extraction window from what the destination already holds.

    The start is the later of the newest stored event and ``now - lookback``,
    so a run never reaches back past the lookback window and never re-reads
    earlier than the last ingested record.
    """

    def __init__(
        self,
        destination: Destination,
        dataset: str,
        field: str = "event_timestamp",
        fallback_on_error: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.destination = destination
        self.dataset = dataset
        self.field = field
        self.fallback_on_error = fallback_on_error
        self.clock = clock

    def _match_timestamp(self, match: Mapping[str, Any]) -> Optional[float]:
        value = match.get(self.field, match.get("_time"))
        if value is None:
            return None
        try:
            return parse_watermark(value)
        except ValueError as exc:
            raise DestinationError(
                f"Unparseable watermark in field '{self.field}'",
                details={"value": value},
            ) from exc

    async def resolve(self, lookback_hours: int) -> ExtractionWindow:
        if not isinstance(lookback_hours, int) or lookback_hours <= 0:
            raise ConfigurationError(
                f"lookback_hours must be a positive integer, got {lookback_hours!r}"
            )

        now = self.clock()
        floor = now - lookback_hours * 3600
        start = floor

        try:
            match = await self.destination.query_latest(self.dataset, since=floor)
        except DestinationError:
            if not self.fallback_on_error:
                raise
            logger.warning(
                "Watermark query failed, falling back to full %dh lookback",
                lookback_hours,
                exc_info=True,
            )
            match = None

        if match is None:
            logger.info("No prior events in dataset %s", self.dataset)
        else:
            found = self._match_timestamp(match)
            if found is not None and found > start:
                start = found

        return ExtractionWindow(start_time=min(start, now), end_time=now)

"""
One-shot entry point for scheduled invocations.

Usage:
    python -m flow_exporter

Runs a single extraction with the configured lookback and exits non-zero
when the run failed.
"""

import asyncio
import logging
import sys

from .config import get_settings
from .logging_config import configure_logging
from .runner import run_extraction

logger = logging.getLogger(__name__)


async def main() -> int:
    settings = get_settings()
    configure_logging(log_level=settings.log_level, json_output=settings.json_logs)

    result = await run_extraction(settings.lookback_hours, settings=settings)
    if not result.succeeded:
        logger.error(
            "Run %s failed: %s (processed %d)",
            result.run_id,
            result.error_code,
            result.processed_count,
        )
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))

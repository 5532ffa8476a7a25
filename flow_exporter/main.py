import asyncio
from typing import Optional

from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse

from .config import get_settings
from .errors import ConfigurationError
from .logging_config import configure_logging
from .models import RunResult
from .runner import run_extraction

settings = get_settings()
configure_logging(log_level=settings.log_level, json_output=settings.json_logs)

app = FastAPI(
    title="Flow Log Exporter",
    version="0.1.0",
    description="Incremental export of firewall flow logs into a log-analytics dataset.",
)

_run_lock = asyncio.Lock()
last_result: Optional[RunResult] = None


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.post("/extraction/run")
async def extraction_run(lookback_hours: Optional[int] = Query(default=None, gt=0)):
    global last_result
    if _run_lock.locked():
        return {"status": "skipped", "result": None}

    async with _run_lock:
        result = await run_extraction(lookback_hours, settings=settings)
    last_result = result

    body = {
        "status": "completed" if result.succeeded else "failed",
        "result": result.model_dump(mode="json"),
    }
    if result.succeeded:
        return body
    status_code = 500 if result.error_code == ConfigurationError.code else 502
    return JSONResponse(status_code=status_code, content=body)


@app.get("/extraction/status")
async def extraction_status() -> dict:
    if last_result:
        return {"last_run": last_result.model_dump(mode="json")}
    return {"last_run": None}

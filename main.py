"""
Transcript fetcher: main entry point.

Starts:
    • Structured JSON logging
    • Document gateway (shared httpx connection pool)
    • Batch runner for the /batch REST API
    • Telegram bot (long polling, only when TELEGRAM_BOT_TOKEN is set)
    • FastAPI HTTP server (/proxy and /batch)
"""

import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from dotenv import load_dotenv

load_dotenv()  # must run before any module-level os.getenv() calls

from fastapi import BackgroundTasks, Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from bot.telegram_bot import TELEGRAM_BOT_TOKEN, create_bot_app
from gateway.upstream import (
    PDF_MEDIA_TYPE,
    DocumentGateway,
    Existence,
    GatewayError,
)
from workers.batch_runner import BatchBusy, BatchError, BatchRunner


# ── Structured JSON logging ────────────────────────────────────────────────────

class _JSONFormatter(logging.Formatter):
    """One JSON object per log line, machine-readable and grep-friendly."""

    _SKIP = frozenset({
        "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
        "module", "exc_info", "exc_text", "stack_info", "lineno", "funcName",
        "created", "msecs", "relativeCreated", "thread", "threadName",
        "processName", "process", "message", "taskName",
    })

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        out: dict = {
            "ts":     self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level":  record.levelname,
            "logger": record.name,
            "msg":    record.message,
        }
        if record.exc_info:
            out["exc"] = self.formatException(record.exc_info)
        # Bubble up any extra= fields passed by callers
        for k, v in record.__dict__.items():
            if k not in self._SKIP:
                out[k] = v
        return json.dumps(out, default=str)


def setup_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(_JSONFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    # Keep uvicorn access logs readable but structured
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True
    # httpx logs every request at INFO; the gateway already does
    logging.getLogger("httpx").setLevel(logging.WARNING)


setup_logging(os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

_HTTP_ERRORS = {404: "not found", 405: "method not allowed"}


# ── Lifespan ───────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    gateway = DocumentGateway()
    app.state.gateway = gateway
    app.state.runner = BatchRunner(gateway)
    logger.info("Gateway ready", extra={"upstream": gateway.url_template})

    bot = None
    if TELEGRAM_BOT_TOKEN:
        bot = create_bot_app(gateway)
        await bot.initialize()
        await bot.start()
        await bot.updater.start_polling(drop_pending_updates=True)
        logger.info("Telegram bot polling started")
    else:
        logger.info("TELEGRAM_BOT_TOKEN not set, bot disabled")

    yield

    logger.info("Shutting down")
    if bot is not None:
        await bot.updater.stop()
        await bot.stop()
        await bot.shutdown()
    await gateway.aclose()


# ── FastAPI app ────────────────────────────────────────────────────────────────

app = FastAPI(title="Transcript Fetcher", version="0.1.0", lifespan=lifespan)


def get_gateway(request: Request) -> DocumentGateway:
    return request.app.state.gateway


def get_runner(request: Request) -> BatchRunner:
    return request.app.state.runner


def relay_status(status_code: int) -> int:
    """Status to relay; informational and bodyless codes become 502."""
    if status_code < 200 or status_code in (204, 304):
        return 502
    return status_code


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    return JSONResponse({"error": exc.message}, status_code=relay_status(exc.status_code))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = _HTTP_ERRORS.get(exc.status_code, str(exc.detail).lower())
    return JSONResponse({"error": message}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(BatchError)
async def batch_error_handler(request: Request, exc: BatchError):
    status_code = 409 if isinstance(exc, BatchBusy) else 400
    return JSONResponse({"error": exc.message}, status_code=status_code)


@app.get("/health")
async def health():
    return {"status": "ok"}


# ── Proxy ──────────────────────────────────────────────────────────────────────

@app.get("/proxy/{identifier}")
async def proxy_document(identifier: str, gateway=Depends(get_gateway)):
    payload = await gateway.fetch_document(identifier)
    return Response(content=payload.content, headers=payload.headers)


@app.head("/proxy/{identifier}")
async def proxy_document_head(identifier: str, gateway=Depends(get_gateway)):
    headers = {"Content-Type": PDF_MEDIA_TYPE}
    try:
        check = await gateway.check_existence(identifier)
    except GatewayError as exc:
        return Response(status_code=exc.status_code, headers=headers)

    if check.existence == Existence.EXISTS:
        status_code = 200
    elif check.existence == Existence.NOT_FOUND:
        status_code = 404
    else:
        status_code = relay_status(check.status_code)
    return Response(status_code=status_code, headers=headers)


# ── Batch ──────────────────────────────────────────────────────────────────────

class JobOut(BaseModel):
    id: str
    identifier: str
    status: str
    error: Optional[str] = None
    file_path: Optional[str] = None
    created_at: str
    updated_at: Optional[str] = None


class SummaryOut(BaseModel):
    total: int
    pending: int
    downloading: int
    completed: int
    error: int
    processing: bool


class BatchState(BaseModel):
    processing: bool
    summary: SummaryOut
    jobs: list[JobOut]


def _batch_state(runner: BatchRunner) -> dict:
    return {
        "processing": runner.processing,
        "summary": runner.summary().to_dict(),
        "jobs": [job.to_dict() for job in runner.jobs],
    }


@app.post("/batch", status_code=202, response_model=BatchState)
async def start_batch(
    request: Request,
    background_tasks: BackgroundTasks,
    runner: BatchRunner = Depends(get_runner),
):
    """Body is the identifier list as plain text, one per line."""
    body = await request.body()
    runner.load(body.decode("utf-8", errors="ignore"))
    runner.begin()
    background_tasks.add_task(runner.process)
    logger.info("Batch accepted", extra={"jobs": len(runner.jobs)})
    return _batch_state(runner)


@app.get("/batch", response_model=BatchState)
async def get_batch(runner: BatchRunner = Depends(get_runner)):
    return _batch_state(runner)


@app.delete("/batch", response_model=BatchState)
async def clear_batch(runner: BatchRunner = Depends(get_runner)):
    runner.clear()
    return _batch_state(runner)


# ── Entry point ────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=False,
        log_config=None,   # let our handler take over
    )

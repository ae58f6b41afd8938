"""
Telegram bot: long-polling front end for the gateway and batch runner.

Commands:
    /start | /help          show help
    /libreta <cui>          fetch one transcript PDF
    /check <cui>            check that a transcript exists (no download)
    /status                 show the current batch for this chat
    /clear                  discard the current batch
    (send a .txt file)      download every CUI listed in it, one by one
"""

import asyncio
import logging
import os
from pathlib import Path

from telegram import Update
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from gateway.upstream import (
    DocumentNotFound,
    Existence,
    GatewayError,
    InvalidIdentifier,
    UpstreamConnectionError,
    UpstreamError,
)
from models.job import BatchSummary, Job, JobStatus
from workers.batch_runner import BATCH_DELAY_SECONDS, DOWNLOAD_DIR, BatchError, BatchRunner

logger = logging.getLogger(__name__)

TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")

# In-memory map of chat_id → that chat's batch runner
_runners: dict[int, BatchRunner] = {}

# Keeps running batch tasks referenced until they finish
_tasks: set[asyncio.Task] = set()

_STATUS_TAGS = {
    JobStatus.PENDING: "⏳",
    JobStatus.DOWNLOADING: "⬇️",
    JobStatus.COMPLETED: "✅",
    JobStatus.ERROR: "❌",
}

# ── Help text ──────────────────────────────────────────────────────────────────

_HELP = """
*Transcript Fetcher* 📄

/libreta `<cui>` — download a transcript
  _e.g. /libreta 20233489_
/check `<cui>` — check that a transcript exists

Send a `.txt` file with one CUI per line to download them all.
/status — show the current batch
/clear — discard the current batch

/help — show this message
""".strip()


def describe_error(exc: GatewayError) -> str:
    """User-facing text for one error category."""
    if isinstance(exc, InvalidIdentifier):
        return "Invalid CUI. It must be exactly 8 digits."
    if isinstance(exc, DocumentNotFound):
        return f"No transcript found for CUI {exc.identifier}."
    if isinstance(exc, UpstreamConnectionError):
        return "Could not reach the university document server."
    if isinstance(exc, UpstreamError):
        return f"The document server answered with status {exc.status_code}."
    return str(exc)


def format_summary(summary: BatchSummary) -> str:
    errors = "error" if summary.error == 1 else "errors"
    return f"✅ {summary.completed} completed · ❌ {summary.error} {errors} · {summary.total} total"


def format_jobs(jobs: list[Job]) -> str:
    lines = []
    for job in jobs:
        line = f"{_STATUS_TAGS[job.status]} {job.identifier}"
        if job.status == JobStatus.ERROR:
            line += " (error)"
        lines.append(line)
    return "\n".join(lines)


def _gateway(context: ContextTypes.DEFAULT_TYPE):
    return context.application.bot_data["gateway"]


def _runner_for(chat_id: int, context: ContextTypes.DEFAULT_TYPE) -> BatchRunner:
    runner = _runners.get(chat_id)
    if runner is None:
        runner = BatchRunner(
            _gateway(context),
            download_dir=Path(DOWNLOAD_DIR) / str(chat_id),
            delay=BATCH_DELAY_SECONDS,
        )
        _runners[chat_id] = runner
    return runner


# ── /help & /start ─────────────────────────────────────────────────────────────

async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(_HELP, parse_mode="Markdown")


# ── /libreta ───────────────────────────────────────────────────────────────────

async def libreta_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not context.args:
        await update.message.reply_text("Usage: /libreta <cui>\nExample: /libreta 20233489")
        return

    try:
        payload = await _gateway(context).fetch_document(context.args[0])
    except GatewayError as exc:
        await update.message.reply_text(describe_error(exc))
        return

    await update.message.reply_document(document=payload.content, filename=payload.filename)


# ── /check ─────────────────────────────────────────────────────────────────────

async def check_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not context.args:
        await update.message.reply_text("Usage: /check <cui>")
        return

    try:
        check = await _gateway(context).check_existence(context.args[0])
    except GatewayError as exc:
        await update.message.reply_text(describe_error(exc))
        return

    if check.exists:
        await update.message.reply_text(f"Transcript for CUI {check.identifier} is available ✅")
    elif check.existence == Existence.NOT_FOUND:
        await update.message.reply_text(f"No transcript found for CUI {check.identifier}.")
    else:
        await update.message.reply_text(
            f"The document server answered with status {check.status_code}."
        )


# ── Batch upload ───────────────────────────────────────────────────────────────

async def batch_upload(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    chat_id = update.effective_chat.id
    runner = _runner_for(chat_id, context)

    tg_file = await update.message.document.get_file()
    data = await tg_file.download_as_bytearray()

    try:
        jobs = runner.load(bytes(data).decode("utf-8", errors="ignore"))
        runner.begin()
    except BatchError as exc:
        if not runner.jobs and not runner.processing:
            _runners.pop(chat_id, None)
        await update.message.reply_text(f"Batch not started: {exc.message}.")
        return

    await update.message.reply_text(f"Downloading {len(jobs)} transcripts, one at a time... 📥")

    async def on_update(job: Job) -> None:
        if job.status == JobStatus.COMPLETED and job.file_path:
            path = Path(job.file_path)
            await context.bot.send_document(chat_id=chat_id, document=path, filename=path.name)
            # Sent PDFs are not kept on disk
            path.unlink(missing_ok=True)

    async def _run() -> None:
        runner.on_update = on_update
        try:
            summary = await runner.process()
        except Exception as exc:
            logger.error("Batch crashed", extra={"chat_id": chat_id, "error": str(exc)}, exc_info=True)
            await context.bot.send_message(chat_id=chat_id, text="Batch stopped unexpectedly ❌")
            return
        finally:
            runner.on_update = None
        await context.bot.send_message(chat_id=chat_id, text=f"Batch done.\n{format_summary(summary)}")

    task = asyncio.create_task(_run())
    _tasks.add(task)
    task.add_done_callback(_tasks.discard)


# ── /status ────────────────────────────────────────────────────────────────────

async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    runner = _runners.get(update.effective_chat.id)
    if runner is None or not runner.jobs:
        await update.message.reply_text("No batch loaded. Send a .txt file with one CUI per line.")
        return

    state = "processing" if runner.processing else "idle"
    await update.message.reply_text(
        f"Batch ({state})\n{format_jobs(runner.jobs)}\n\n{format_summary(runner.summary())}"
    )


# ── /clear ─────────────────────────────────────────────────────────────────────

async def clear_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    runner = _runners.get(update.effective_chat.id)
    if runner is None:
        await update.message.reply_text("Nothing to clear.")
        return
    try:
        runner.clear()
    except BatchError:
        await update.message.reply_text("A batch is still running; wait for it to finish.")
        return
    _runners.pop(update.effective_chat.id, None)
    await update.message.reply_text("Batch cleared.")


# ── Fallback ───────────────────────────────────────────────────────────────────

async def fallback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text("Unknown command. Use /help to see available commands.")


# ── App factory ────────────────────────────────────────────────────────────────

def create_bot_app(gateway) -> Application:
    if not TELEGRAM_BOT_TOKEN:
        raise ValueError("TELEGRAM_BOT_TOKEN is not set in environment")

    app = Application.builder().token(TELEGRAM_BOT_TOKEN).build()
    app.bot_data["gateway"] = gateway

    app.add_handler(CommandHandler("start", help_command))
    app.add_handler(CommandHandler("help", help_command))
    app.add_handler(CommandHandler("libreta", libreta_command))
    app.add_handler(CommandHandler("check", check_command))
    app.add_handler(CommandHandler("status", status_command))
    app.add_handler(CommandHandler("clear", clear_command))
    app.add_handler(MessageHandler(filters.Document.FileExtension("txt"), batch_upload))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, fallback))

    return app

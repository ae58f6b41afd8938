"""
Download every transcript listed in a text file, one at a time.

Usage:
    python scripts/batch_download.py ids.txt
    python scripts/batch_download.py ids.txt --out downloads --delay-ms 800
    python scripts/batch_download.py ids.txt --gateway http://localhost:8000

Without --gateway the upstream server is called directly; with it, requests
go through a running gateway's /proxy endpoint. Lines that aren't 8-digit
CUIs (headers, typos) are skipped.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

load_dotenv()

from gateway.proxy_client import ProxyClient
from gateway.upstream import DocumentGateway
from models.job import Job, JobStatus
from workers.batch_runner import BATCH_DELAY_SECONDS, DOWNLOAD_DIR, BatchError, BatchRunner


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Batch transcript download")
    parser.add_argument("source", type=Path, help="text file, one CUI per line")
    parser.add_argument("--out", type=Path, default=Path(DOWNLOAD_DIR), help="download directory")
    parser.add_argument("--gateway", default=None, help="base URL of a running gateway")
    parser.add_argument(
        "--delay-ms", type=int, default=int(BATCH_DELAY_SECONDS * 1000),
        help="pause between downloads",
    )
    return parser.parse_args(argv)


async def _print_progress(job: Job) -> None:
    if job.status == JobStatus.COMPLETED:
        print(f"  ✅ {job.identifier} → {job.file_path}")
    elif job.status == JobStatus.ERROR:
        print(f"  ❌ {job.identifier}: {job.error}")


async def main(argv=None) -> int:
    args = parse_args(argv)
    text = args.source.read_text(encoding="utf-8", errors="ignore")

    client = ProxyClient(args.gateway) if args.gateway else DocumentGateway()
    async with client:
        runner = BatchRunner(
            client,
            download_dir=args.out,
            delay=args.delay_ms / 1000,
            on_update=_print_progress,
        )
        try:
            jobs = runner.load(text)
        except BatchError as exc:
            print(f"Nothing to do: {exc.message}.")
            return 1

        print(f"Downloading {len(jobs)} transcripts into {args.out}/ ...")
        summary = await runner.run()

    print(f"\nDone: {summary.completed} completed, {summary.error} errors.")
    return 0 if summary.error == 0 else 2


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)
    sys.exit(asyncio.run(main()))

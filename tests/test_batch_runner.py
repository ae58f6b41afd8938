import asyncio
import time

import pytest

from gateway.upstream import UpstreamConnectionError
from models.job import JobStatus
from upstream_stub import PDF_BYTES, FakeGateway, StubUpstream, make_gateway
from workers.batch_runner import BatchBusy, BatchRunner, NoValidIdentifiers


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class BlockingGateway(FakeGateway):
    """Holds every fetch until released, so a test can act mid-batch."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def fetch_document(self, identifier):
        await self.release.wait()
        return await super().fetch_document(identifier)


def test_load_builds_pending_jobs_in_order(runner):
    jobs = runner.load("CUI\n20233489\n2023348\n20228741")

    assert [j.identifier for j in jobs] == ["20233489", "20228741"]
    assert all(j.status == JobStatus.PENDING for j in jobs)
    assert runner.summary().pending == 2
    assert not runner.processing


def test_load_without_valid_identifiers(runner):
    with pytest.raises(NoValidIdentifiers):
        runner.load("CUI\n2023348\n\n")
    assert runner.jobs == []


def test_load_replaces_previous_jobs(runner):
    runner.load("20233489")
    runner.load("20228741\n20215634")
    assert [j.identifier for j in runner.jobs] == ["20228741", "20215634"]


@pytest.mark.asyncio
async def test_failure_does_not_stop_the_batch(runner, fake_gateway, tmp_path):
    runner.load("20233489\n00000000\n20228741")
    summary = await runner.run()

    assert [j.status for j in runner.jobs] == [
        JobStatus.COMPLETED, JobStatus.ERROR, JobStatus.COMPLETED,
    ]
    assert summary.completed == 2
    assert summary.error == 1
    assert not summary.processing
    assert fake_gateway.calls == ["20233489", "00000000", "20228741"]

    failed = runner.jobs[1]
    assert failed.error == "not found"
    assert failed.file_path is None

    saved = tmp_path / "Document_20233489.pdf"
    assert saved.read_bytes() == PDF_BYTES
    assert runner.jobs[0].file_path == str(saved)
    assert sorted(p.name for p in tmp_path.iterdir()) == [
        "Document_20228741.pdf", "Document_20233489.pdf",
    ]


@pytest.mark.asyncio
async def test_every_error_kind_becomes_a_job_error(fake_gateway, tmp_path):
    fake_gateway.failures["20228741"] = UpstreamConnectionError("20228741")
    runner = BatchRunner(fake_gateway, download_dir=tmp_path, delay=0)

    summary = await runner.start("00000000\n99999999\n20228741")

    assert summary.error == 3
    assert [j.error for j in runner.jobs] == [
        "not found", "upstream error (status 503)", "connection error",
    ]


@pytest.mark.asyncio
async def test_pacing_between_jobs_but_not_after_last(fake_gateway, tmp_path):
    sleep = RecordingSleep()
    runner = BatchRunner(fake_gateway, download_dir=tmp_path, delay=0.8, sleep=sleep)

    await runner.start("20233489\n20228741\n20215634\n20191234")

    assert sleep.delays == [0.8, 0.8, 0.8]


@pytest.mark.asyncio
async def test_single_job_is_not_paced(fake_gateway, tmp_path):
    sleep = RecordingSleep()
    runner = BatchRunner(fake_gateway, download_dir=tmp_path, sleep=sleep)

    await runner.start("20233489")

    assert sleep.delays == []


@pytest.mark.asyncio
async def test_default_pacing_is_enforced_in_real_time(fake_gateway, tmp_path):
    runner = BatchRunner(fake_gateway, download_dir=tmp_path)
    assert runner.delay == 0.8

    started = time.monotonic()
    await runner.start("20233489\n20228741\n20215634")
    elapsed = time.monotonic() - started

    # asyncio may wake up to one clock tick early
    assert elapsed >= 2 * 0.8 - 0.005


@pytest.mark.asyncio
async def test_observer_sees_every_transition(runner):
    seen = []

    async def on_update(job):
        seen.append((job.identifier, job.status))

    runner.on_update = on_update
    await runner.start("20233489\n00000000")

    assert seen == [
        ("20233489", JobStatus.DOWNLOADING),
        ("20233489", JobStatus.COMPLETED),
        ("00000000", JobStatus.DOWNLOADING),
        ("00000000", JobStatus.ERROR),
    ]


@pytest.mark.asyncio
async def test_failing_observer_does_not_stop_the_batch(runner):
    async def on_update(job):
        raise RuntimeError("observer down")

    runner.on_update = on_update
    summary = await runner.start("20233489\n20228741")

    assert summary.completed == 2


@pytest.mark.asyncio
async def test_save_failure_marks_job_as_error(fake_gateway, tmp_path):
    not_a_dir = tmp_path / "downloads"
    not_a_dir.write_text("occupied")
    runner = BatchRunner(fake_gateway, download_dir=not_a_dir, delay=0)

    summary = await runner.start("20233489\n20228741")

    assert summary.error == 2
    assert runner.jobs[0].error == "could not save file"
    assert fake_gateway.calls == ["20233489", "20228741"]


@pytest.mark.asyncio
async def test_busy_runner_refuses_load_clear_and_run(tmp_path):
    gateway = BlockingGateway()
    runner = BatchRunner(gateway, download_dir=tmp_path, delay=0)
    runner.load("20233489\n20228741")

    task = asyncio.create_task(runner.run())
    await asyncio.sleep(0)

    assert runner.processing
    assert runner.jobs[0].status == JobStatus.DOWNLOADING
    assert runner.jobs[1].status == JobStatus.PENDING
    with pytest.raises(BatchBusy):
        runner.load("20215634")
    with pytest.raises(BatchBusy):
        runner.clear()
    with pytest.raises(BatchBusy):
        await runner.run()

    gateway.release.set()
    summary = await task

    assert summary.completed == 2
    assert not runner.processing
    runner.clear()
    assert runner.jobs == []


@pytest.mark.asyncio
async def test_process_requires_begin(runner):
    runner.load("20233489")
    with pytest.raises(RuntimeError):
        await runner.process()


@pytest.mark.asyncio
async def test_duplicates_are_processed_separately(runner, fake_gateway):
    summary = await runner.start("20233489\n20233489")

    assert summary.completed == 2
    assert fake_gateway.calls == ["20233489", "20233489"]
    assert runner.jobs[0].id != runner.jobs[1].id


@pytest.mark.asyncio
async def test_closed_gateway_client_fails_jobs_not_the_batch(tmp_path):
    gateway = make_gateway(StubUpstream())
    await gateway._client.aclose()
    runner = BatchRunner(gateway, download_dir=tmp_path, delay=0)

    summary = await runner.start("20233489\n20228741")

    assert [j.status for j in runner.jobs] == [JobStatus.ERROR, JobStatus.ERROR]
    assert [j.error for j in runner.jobs] == ["unexpected error", "unexpected error"]
    assert summary.error == 2
    assert not runner.processing


@pytest.mark.asyncio
async def test_broken_url_template_fails_jobs_not_the_batch(tmp_path):
    gateway = make_gateway(StubUpstream())
    gateway.url_template = "http://docs.example/{cui}.pdf"
    runner = BatchRunner(gateway, download_dir=tmp_path, delay=0)

    summary = await runner.start("20233489\n20228741")

    assert summary.error == 2
    assert summary.pending == 0

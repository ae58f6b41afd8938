from main import app, get_runner
from workers.batch_runner import BatchRunner


def test_post_batch_runs_in_background(client, fake_gateway, tmp_path):
    r = client.post(
        "/batch",
        content="CUI\n20233489\n2023348\n00000000\n20228741",
        headers={"Content-Type": "text/plain"},
    )

    assert r.status_code == 202
    body = r.json()
    assert body["processing"] is True
    assert [j["identifier"] for j in body["jobs"]] == ["20233489", "00000000", "20228741"]
    assert {j["status"] for j in body["jobs"]} == {"pending"}

    # TestClient finishes background tasks before returning
    state = client.get("/batch").json()
    assert state["processing"] is False
    assert [j["status"] for j in state["jobs"]] == ["completed", "error", "completed"]
    assert state["summary"]["completed"] == 2
    assert state["summary"]["error"] == 1
    assert fake_gateway.calls == ["20233489", "00000000", "20228741"]
    assert (tmp_path / "Document_20233489.pdf").exists()
    assert not (tmp_path / "Document_00000000.pdf").exists()


def test_post_batch_without_identifiers(client, fake_gateway):
    r = client.post("/batch", content="CUI\nnombre\n123")
    assert r.status_code == 400
    assert r.json() == {"error": "no valid identifiers"}
    assert fake_gateway.calls == []
    assert client.get("/batch").json()["jobs"] == []


def test_batch_is_refused_while_processing(client, fake_gateway, tmp_path):
    busy = BatchRunner(fake_gateway, download_dir=tmp_path, delay=0)
    busy.load("20233489")
    busy.begin()
    app.dependency_overrides[get_runner] = lambda: busy

    r = client.post("/batch", content="20228741")
    assert r.status_code == 409
    assert r.json() == {"error": "batch in progress"}

    r = client.delete("/batch")
    assert r.status_code == 409
    assert [j.identifier for j in busy.jobs] == ["20233489"]


def test_delete_batch_clears_jobs(client):
    client.post("/batch", content="20233489\n20228741")
    assert len(client.get("/batch").json()["jobs"]) == 2

    r = client.delete("/batch")
    assert r.status_code == 200
    assert r.json()["jobs"] == []
    assert r.json()["summary"]["total"] == 0


def test_get_batch_when_empty(client):
    state = client.get("/batch").json()
    assert state == {
        "processing": False,
        "summary": {
            "total": 0, "pending": 0, "downloading": 0,
            "completed": 0, "error": 0, "processing": False,
        },
        "jobs": [],
    }

import pytest
from fastapi.testclient import TestClient

from gateway.upstream import DocumentNotFound, UpstreamError
from main import app, get_gateway, get_runner
from upstream_stub import FakeGateway, StubUpstream, make_gateway
from workers.batch_runner import BatchRunner


@pytest.fixture
def upstream():
    return StubUpstream()


@pytest.fixture
def gateway(upstream):
    return make_gateway(upstream)


@pytest.fixture
def fake_gateway():
    return FakeGateway(failures={
        "00000000": DocumentNotFound("00000000"),
        "99999999": UpstreamError("99999999", status_code=503),
    })


@pytest.fixture
def runner(fake_gateway, tmp_path):
    return BatchRunner(fake_gateway, download_dir=tmp_path, delay=0)


@pytest.fixture
def client(gateway, runner):
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_runner] = lambda: runner
    yield TestClient(app)
    app.dependency_overrides.clear()

"""Unit tests for the HTTP API."""

from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from adguard_sync.api import create_app
from adguard_sync.config import ApiConfig, Config, Instance
from adguard_sync.models import RewriteEntry
from adguard_sync.sync import SyncAlreadyRunningError, Worker

from fakes import FakeAdGuardClient, client_factory, make_origin

AUTH = ApiConfig(port=8080, username="admin", password="secret")


def make_worker(origin=None, replica=None) -> Worker:
    config = Config(origin=Instance(url="http://origin:3000"), replicas=(Instance(url="http://replica:3000"),))
    return Worker(
        config,
        client_factory=client_factory(
            {"http://origin:3000": origin or make_origin(), "http://replica:3000": replica or FakeAdGuardClient()}
        ),
    )


class TestSyncEndpoint:
    """Tests for POST /api/v1/sync."""

    def test_sync_returns_status(self) -> None:
        """Test a triggered pass runs and returns the resulting status."""
        replica = FakeAdGuardClient()
        worker = make_worker(make_origin(rewrites=[RewriteEntry("a.com", "1.1.1.1")]), replica)
        client = TestClient(create_app(worker))

        r = client.post("/api/v1/sync")

        assert r.status_code == 200
        data = r.json()
        assert data["last_outcome"] == "success"
        assert data["healthy"] is True
        assert data["sync_running"] is False
        assert data["origin"]["status"] == "success"
        assert data["replicas"][0]["host"] == "replica:3000"
        assert data["replicas"][0]["version_match"] is True
        assert replica.calls == [("add_rewrite", "a.com#1.1.1.1")]

    def test_sync_already_running(self) -> None:
        """Test a trigger during a pass is rejected with 409."""
        worker = MagicMock()
        worker.run_sync.side_effect = SyncAlreadyRunningError("sync already running")
        client = TestClient(create_app(worker))

        r = client.post("/api/v1/sync")

        assert r.status_code == 409
        assert r.json() == {"error": "sync already running"}

    def test_get_not_allowed(self) -> None:
        """Test the trigger only accepts POST."""
        client = TestClient(create_app(make_worker()))

        assert client.get("/api/v1/sync").status_code == 405


class TestStatusEndpoint:
    """Tests for GET /api/v1/status."""

    def test_status_before_first_pass(self) -> None:
        """Test every instance is pending before the first pass."""
        client = TestClient(create_app(make_worker()))

        r = client.get("/api/v1/status")

        assert r.status_code == 200
        data = r.json()
        assert data["origin"]["status"] == "pending"
        assert data["replicas"][0]["status"] == "pending"
        assert data["last_outcome"] is None
        assert data["healthy"] is False


class TestHealthz:
    """Tests for the health probe."""

    def test_unhealthy_before_first_pass(self) -> None:
        """Test the probe fails until a pass succeeded."""
        client = TestClient(create_app(make_worker()))

        r = client.get("/healthz")

        assert r.status_code == 503
        assert r.text == "unhealthy"

    def test_healthy_after_successful_pass(self) -> None:
        """Test the probe passes after a successful pass."""
        worker = make_worker()
        worker.run_sync()
        client = TestClient(create_app(worker))

        r = client.get("/healthz")

        assert r.status_code == 200
        assert r.text == "ok"

    def test_unhealthy_after_failed_replica(self) -> None:
        """Test a failed replica makes the probe fail."""
        replica = FakeAdGuardClient()
        replica.read_failures = {"status"}
        worker = make_worker(replica=replica)
        worker.run_sync()
        client = TestClient(create_app(worker))

        assert client.get("/healthz").status_code == 503

    def test_healthz_needs_no_auth(self) -> None:
        """Test the probe stays open when API auth is configured."""
        worker = MagicMock()
        worker.healthy.return_value = True
        client = TestClient(create_app(worker, AUTH))

        assert client.get("/healthz").status_code == 200
        assert client.head("/healthz").status_code == 200


class TestAuth:
    """Tests for basic auth on the API."""

    def test_missing_credentials(self) -> None:
        """Test protected routes reject requests without credentials."""
        worker = MagicMock()
        client = TestClient(create_app(worker, AUTH))

        r = client.post("/api/v1/sync")

        assert r.status_code == 401
        assert r.headers["WWW-Authenticate"] == "Basic"
        worker.run_sync.assert_not_called()

    def test_wrong_credentials(self) -> None:
        """Test wrong credentials are rejected."""
        client = TestClient(create_app(make_worker(), AUTH))

        assert client.get("/api/v1/status", auth=("admin", "wrong")).status_code == 401

    def test_valid_credentials(self) -> None:
        """Test valid credentials are accepted."""
        client = TestClient(create_app(make_worker(), AUTH))

        assert client.get("/api/v1/status", auth=("admin", "secret")).status_code == 200
        r = client.get("/", auth=("admin", "secret"))
        assert r.status_code == 200
        assert r.text == "adguard-sync"

    def test_no_auth_configured(self) -> None:
        """Test routes are open when no API credentials are set."""
        client = TestClient(create_app(make_worker(), ApiConfig(port=8080)))

        assert client.get("/").status_code == 200

"""Unit tests for AdGuardHomeClient."""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests
import responses

from adguard_sync.client import AdGuardClientError, AdGuardHomeClient, SetupNeededError
from adguard_sync.config import Instance
from adguard_sync.models import Client, DhcpStaticLease, Filter, RewriteEntry, SafeSearchConfig


def make_client(**overrides) -> AdGuardHomeClient:
    values = dict(url="http://adguard.local", username="admin", password="secret")
    values.update(overrides)
    return AdGuardHomeClient(Instance(**values))


def ok_response(data=None) -> MagicMock:
    response = MagicMock()
    response.status_code = 200
    response.text = json.dumps(data) if data is not None else ""
    response.json.return_value = data
    return response


class TestClientSetup:
    """Tests for session construction."""

    def test_basic_auth(self) -> None:
        """Test username and password are sent as basic auth."""
        client = make_client()

        assert isinstance(client._session.auth, requests.auth.HTTPBasicAuth)
        assert client._session.auth.username == "admin"
        assert client._session.auth.password == "secret"

    def test_cookie_replaces_basic_auth(self) -> None:
        """Test a configured cookie is used instead of basic auth."""
        client = make_client(cookie="agh_session=abc123")

        assert client._session.auth is None
        assert client._session.cookies.get("agh_session") == "abc123"

    def test_headers_and_tls_verification(self) -> None:
        """Test extra headers are set and insecure mode disables verification."""
        client = make_client(request_headers={"X-Auth": "token"}, insecure_skip_verify=True)

        assert client._session.headers["X-Auth"] == "token"
        assert client._session.verify is False

    def test_custom_api_path(self) -> None:
        """Test the API path is joined onto the base URL."""
        client = make_client(url="https://adguard.local/", api_path="/custom/control")

        with patch.object(client._session, "get") as mock_get:
            mock_get.return_value = ok_response({"version": "v0.107.43"})

            client.status()

            mock_get.assert_called_once_with(
                "https://adguard.local/custom/control/status", timeout=10.0, allow_redirects=False
            )


class TestClientReads:
    """Tests for reading resources."""

    def test_status(self) -> None:
        """Test status parses the response and records the version."""
        client = make_client()

        with patch.object(client._session, "get") as mock_get:
            mock_get.return_value = ok_response({"version": "v0.107.43", "protection_enabled": True})

            status = client.status()

            assert status.version == "v0.107.43"
            assert status.protection_enabled is True
            assert client.version == "v0.107.43"
            mock_get.assert_called_once_with("http://adguard.local/control/status", timeout=10.0, allow_redirects=False)

    def test_rewrite_list(self) -> None:
        """Test rewrite entries are parsed and malformed items skipped."""
        client = make_client()

        with patch.object(client._session, "get") as mock_get:
            mock_get.return_value = ok_response([{"domain": "a.com", "answer": "1.1.1.1"}, "garbage"])

            entries = client.rewrite_list()

            assert entries == [RewriteEntry("a.com", "1.1.1.1")]

    def test_empty_body_reads_as_empty(self) -> None:
        """Test an empty response body yields an empty collection."""
        client = make_client()

        with patch.object(client._session, "get") as mock_get:
            mock_get.return_value = ok_response(None)

            assert client.rewrite_list() == []
            assert client.clients() == []

    def test_clients_reads_clients_key(self) -> None:
        """Test clients are read from the "clients" key of the response."""
        client = make_client()

        with patch.object(client._session, "get") as mock_get:
            mock_get.return_value = ok_response(
                {"clients": [{"name": "pc", "ids": ["10.0.0.2"]}], "auto_clients": [{"name": "ignored"}]}
            )

            clients = client.clients()

            assert clients == [Client(name="pc", ids=["10.0.0.2"])]

    def test_toggle_status(self) -> None:
        """Test safe browsing reads the enabled flag of its status endpoint."""
        client = make_client()

        with patch.object(client._session, "get") as mock_get:
            mock_get.return_value = ok_response({"enabled": True})

            assert client.safe_browsing() is True
            mock_get.assert_called_once_with(
                "http://adguard.local/control/safebrowsing/status", timeout=10.0, allow_redirects=False
            )

    def test_invalid_json(self) -> None:
        """Test an unparseable body raises a client error."""
        client = make_client()

        with patch.object(client._session, "get") as mock_get:
            response = ok_response({"x": 1})
            response.text = "<html>"
            response.reason = "OK"
            response.json.side_effect = ValueError("Expecting value")
            mock_get.return_value = response

            with pytest.raises(AdGuardClientError, match="invalid JSON"):
                client.status()


class TestClientWrites:
    """Tests for write requests."""

    def test_add_rewrite(self) -> None:
        """Test a rewrite is posted as domain and answer."""
        client = make_client()

        with patch.object(client._session, "post") as mock_post:
            mock_post.return_value = ok_response()

            client.add_rewrite(RewriteEntry("a.com", "1.1.1.1"))

            mock_post.assert_called_once_with(
                "http://adguard.local/control/rewrite/add",
                timeout=10.0,
                allow_redirects=False,
                json={"domain": "a.com", "answer": "1.1.1.1"},
            )

    def test_update_filter(self) -> None:
        """Test a filter update wraps the new values in a data object."""
        client = make_client()

        with patch.object(client._session, "post") as mock_post:
            mock_post.return_value = ok_response()

            client.update_filter(True, Filter(url="https://lists/a.txt", name="A", enabled=False, id=3))

            mock_post.assert_called_once_with(
                "http://adguard.local/control/filtering/set_url",
                timeout=10.0,
                allow_redirects=False,
                json={
                    "url": "https://lists/a.txt",
                    "whitelist": True,
                    "data": {"name": "A", "url": "https://lists/a.txt", "enabled": False},
                },
            )

    def test_update_client(self) -> None:
        """Test a client update is keyed by the client name."""
        client = make_client()

        with patch.object(client._session, "post") as mock_post:
            mock_post.return_value = ok_response()

            client.update_client(Client(name="pc", tags=["device_pc"]))

            mock_post.assert_called_once_with(
                "http://adguard.local/control/clients/update",
                timeout=10.0,
                allow_redirects=False,
                json={"name": "pc", "data": {"name": "pc", "tags": ["device_pc"]}},
            )

    def test_toggle_uses_enable_and_disable(self) -> None:
        """Test parental control toggles post to enable or disable."""
        client = make_client()

        with patch.object(client._session, "post") as mock_post:
            mock_post.return_value = ok_response()

            client.toggle_parental(False)

            mock_post.assert_called_once_with(
                "http://adguard.local/control/parental/disable", timeout=10.0, allow_redirects=False
            )

    def test_safe_search_uses_put(self) -> None:
        """Test safe search settings are written with PUT."""
        client = make_client()

        with patch.object(client._session, "put") as mock_put:
            mock_put.return_value = ok_response()

            client.set_safe_search_config(SafeSearchConfig(enabled=True, youtube=False))

            mock_put.assert_called_once_with(
                "http://adguard.local/control/safesearch/settings",
                timeout=10.0,
                allow_redirects=False,
                json={"enabled": True, "youtube": False},
            )

    def test_remove_static_lease(self) -> None:
        """Test a static lease is removed by posting the full lease."""
        client = make_client()

        with patch.object(client._session, "post") as mock_post:
            mock_post.return_value = ok_response()

            client.delete_dhcp_static_lease(DhcpStaticLease(mac="aa:bb", ip="10.0.0.9", hostname="nas"))

            mock_post.assert_called_once_with(
                "http://adguard.local/control/dhcp/remove_static_lease",
                timeout=10.0,
                allow_redirects=False,
                json={"mac": "aa:bb", "ip": "10.0.0.9", "hostname": "nas"},
            )


class TestClientErrors:
    """Tests for error handling."""

    def test_connection_error(self) -> None:
        """Test transport errors are raised as client errors."""
        client = make_client()

        with patch.object(client._session, "get") as mock_get:
            mock_get.side_effect = requests.exceptions.ConnectionError("Connection refused")

            with pytest.raises(AdGuardClientError, match="Connection refused"):
                client.status()

    def test_non_200_carries_status_and_body(self) -> None:
        """Test a failed write reports code, reason and body."""
        client = make_client()

        with patch.object(client._session, "post") as mock_post:
            response = MagicMock()
            response.status_code = 400
            response.reason = "Bad Request"
            response.text = "filter URL already added"
            response.headers = {}
            mock_post.return_value = response

            with pytest.raises(AdGuardClientError) as exc_info:
                client.add_filter(False, Filter(url="https://lists/a.txt", name="A"))

            assert exc_info.value.status_code == 400
            assert str(exc_info.value) == "400 Bad Request(filter URL already added)"

    def test_redirect_to_install_means_setup_needed(self) -> None:
        """Test a redirect to the install wizard raises SetupNeededError."""
        client = make_client()

        with patch.object(client._session, "get") as mock_get:
            response = MagicMock()
            response.status_code = 302
            response.headers = {"Location": "/install.html"}
            mock_get.return_value = response

            with pytest.raises(SetupNeededError):
                client.status()

    def test_other_redirect_is_an_error(self) -> None:
        """Test a redirect elsewhere is a plain client error."""
        client = make_client()

        with patch.object(client._session, "get") as mock_get:
            response = MagicMock()
            response.status_code = 302
            response.reason = "Found"
            response.text = ""
            response.headers = {"Location": "/login.html"}
            mock_get.return_value = response

            with pytest.raises(AdGuardClientError) as exc_info:
                client.status()

            assert not isinstance(exc_info.value, SetupNeededError)
            assert exc_info.value.status_code == 302


class TestClientSetupWizard:
    """Tests for first-start setup."""

    def test_setup_is_sent_without_session_auth(self) -> None:
        """Test the install request goes out without the session credentials."""
        client = make_client(request_headers={"X-Test": "1"})

        with patch("adguard_sync.client.requests.post") as mock_post:
            mock_post.return_value = ok_response()

            client.setup()

            mock_post.assert_called_once_with(
                "http://adguard.local/control/install/configure",
                timeout=10.0,
                allow_redirects=False,
                json={
                    "web": {"ip": "0.0.0.0", "port": 3000, "status": "", "can_autofix": False},
                    "dns": {"ip": "0.0.0.0", "port": 53, "status": "", "can_autofix": False},
                    "username": "admin",
                    "password": "secret",
                },
                headers={"X-Test": "1"},
                verify=True,
            )


class TestClientOverHttp:
    """Tests against mocked HTTP responses."""

    def test_filtering_status(self) -> None:
        """Test filtering status is fetched with basic auth and parsed."""
        client = make_client()

        with responses.RequestsMock() as rsps:
            rsps.add(
                responses.GET,
                "http://adguard.local/control/filtering/status",
                json={
                    "enabled": True,
                    "interval": 24,
                    "filters": [{"url": "https://lists/a.txt", "name": "A", "enabled": True, "id": 1}],
                    "whitelist_filters": [],
                    "user_rules": ["||ads.example^"],
                },
                status=200,
            )

            status = client.filtering()

            assert status.enabled is True
            assert status.interval == 24
            assert [f.url for f in status.filters] == ["https://lists/a.txt"]
            assert status.user_rules == ["||ads.example^"]
            assert rsps.calls[0].request.headers["Authorization"].startswith("Basic ")

    def test_set_rules_payload(self) -> None:
        """Test user rules are posted as a list."""
        client = make_client()

        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, "http://adguard.local/control/filtering/set_rules", body="OK", status=200)

            client.set_custom_rules(["||a^", "||b^"])

            assert json.loads(rsps.calls[0].request.body) == {"rules": ["||a^", "||b^"]}

    def test_unauthorized(self) -> None:
        """Test a 401 raises with its status code."""
        client = make_client()

        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, "http://adguard.local/control/status", body="Forbidden", status=401)

            with pytest.raises(AdGuardClientError) as exc_info:
                client.status()

            assert exc_info.value.status_code == 401

# SPDX-License-Identifier: MPL-2.0
"""
Offline tests for the UniFi controller client.

All HTTP traffic goes through a mocked requests.Session.
"""

import logging
import socket
from typing import Any, Generator
from unittest.mock import Mock, patch

import pytest
import requests

from thermmode_unifi.errors import AuthenticationError, PreconditionError, UniFiAPIError
from thermmode_unifi.unifi import ClientInfo, UniFiClient


@pytest.fixture(autouse=True)
def block_network_access(monkeypatch):
    """Prevent any real network access during tests."""
    def guard(*args, **kwargs):
        raise RuntimeError(
            "Network access detected! Tests should not make real network calls."
        )

    monkeypatch.setattr(socket, "socket", guard)


@pytest.fixture
def mock_session() -> Generator[Any, None, None]:
    """Replace requests.Session with a mock."""
    with patch('thermmode_unifi.unifi.requests.Session') as mock:
        session = Mock()
        session.headers = {}
        mock.return_value = session
        yield session


def make_response(json_data: Any = None, status_code: int = 200,
                  headers: Any = None) -> Mock:
    """Build a mocked requests.Response."""
    response = Mock()
    response.status_code = status_code
    response.text = str(json_data)
    response.headers = headers or {}
    response.json.return_value = json_data
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            f"{status_code} Error", response=response
        )
    else:
        response.raise_for_status.return_value = None
    return response


CLIENT_RESPONSE = {
    "meta": {"rc": "ok"},
    "data": [{
        "_id": "5f1e0c2a",
        "mac": "aa:bb:cc:dd:ee:ff",
        "hostname": "phone-alice",
        "last_seen": 1700000000,
        "site_id": "5f1e0c00",
    }]
}

UNKNOWN_CLIENT_RESPONSE = {
    "meta": {"rc": "error", "msg": "api.err.UnknownUser"},
    "data": []
}


def logged_in_client(mock_session: Any) -> UniFiClient:
    mock_session.post.return_value = make_response({"unique_id": "abc"})
    client = UniFiClient("https://unifi.local/", site="home")
    client.login("admin", "secret")
    return client


class TestClientInfo:
    """Test the ClientInfo dataclass."""

    def test_from_dict(self) -> None:
        info = ClientInfo.from_dict(CLIENT_RESPONSE["data"][0])
        assert info.mac == "aa:bb:cc:dd:ee:ff"
        assert info.hostname == "phone-alice"
        assert info.last_seen == 1700000000

    def test_from_dict_without_last_seen(self) -> None:
        info = ClientInfo.from_dict({"mac": "11:22:33:44:55:66"})
        assert info.hostname is None
        assert info.last_seen is None

    def test_from_dict_falls_back_to_name(self) -> None:
        info = ClientInfo.from_dict({"mac": "11:22:33:44:55:66", "name": "Laptop"})
        assert info.hostname == "Laptop"


class TestUniFiClientInit:
    """Test UniFiClient initialization."""

    def test_init_defaults(self, mock_session: Any) -> None:
        client = UniFiClient("https://unifi.local/")
        assert client.address == "https://unifi.local"
        assert client.site == "default"
        assert client.verify is True
        assert client.timeout == 10
        assert client.logged_in is False
        assert client.site_url == "https://unifi.local/proxy/network/api/s/default"

    def test_trust_policy_applied_to_session(self, mock_session: Any) -> None:
        UniFiClient("https://unifi.local", verify="/etc/ssl/unifi.pem")
        assert mock_session.verify == "/etc/ssl/unifi.pem"

    def test_insecure_policy_is_logged(self, mock_session: Any, caplog: Any) -> None:
        with caplog.at_level(logging.WARNING, logger="thermmode_unifi.unifi"):
            UniFiClient("https://unifi.local", verify=False)
        assert mock_session.verify is False
        assert "verification disabled" in caplog.text


class TestLogin:
    """Test controller login."""

    def test_login_success(self, mock_session: Any) -> None:
        mock_session.post.return_value = make_response(
            {"unique_id": "abc"}, headers={"X-CSRF-Token": "csrf-123"}
        )
        client = UniFiClient("https://unifi.local", timeout=5)
        client.login("admin", "secret")

        assert client.logged_in is True
        mock_session.post.assert_called_once_with(
            "https://unifi.local/api/auth/login",
            json={"password": "secret", "username": "admin"},
            timeout=5
        )
        assert mock_session.headers["X-CSRF-Token"] == "csrf-123"

    def test_login_rejected(self, mock_session: Any) -> None:
        mock_session.post.return_value = make_response(
            {"code": "AUTHENTICATION_FAILED_INVALID_CREDENTIALS"}, status_code=401
        )
        client = UniFiClient("https://unifi.local")

        with pytest.raises(AuthenticationError, match="401"):
            client.login("admin", "wrong")
        assert client.logged_in is False

    def test_login_malformed_response(self, mock_session: Any) -> None:
        response = make_response()
        response.json.side_effect = ValueError("Expecting value")
        mock_session.post.return_value = response
        client = UniFiClient("https://unifi.local")

        with pytest.raises(AuthenticationError, match="Invalid login response"):
            client.login("admin", "secret")

    def test_login_non_object_response(self, mock_session: Any) -> None:
        mock_session.post.return_value = make_response(["unexpected"])
        client = UniFiClient("https://unifi.local")

        with pytest.raises(AuthenticationError):
            client.login("admin", "secret")

    def test_login_network_error(self, mock_session: Any) -> None:
        mock_session.post.side_effect = requests.exceptions.ConnectionError("refused")
        client = UniFiClient("https://unifi.local")

        with pytest.raises(AuthenticationError, match="request failed"):
            client.login("admin", "secret")

    def test_login_timeout(self, mock_session: Any) -> None:
        mock_session.post.side_effect = requests.exceptions.Timeout()
        client = UniFiClient("https://unifi.local", timeout=3)

        with pytest.raises(AuthenticationError, match="timed out after 3 seconds"):
            client.login("admin", "secret")


class TestGetClient:
    """Test client detail queries."""

    def test_get_client_success(self, mock_session: Any) -> None:
        client = logged_in_client(mock_session)
        mock_session.get.return_value = make_response(CLIENT_RESPONSE)

        info = client.get_client("aa:bb:cc:dd:ee:ff")

        assert info == ClientInfo("aa:bb:cc:dd:ee:ff", "phone-alice", 1700000000)
        mock_session.get.assert_called_once_with(
            "https://unifi.local/proxy/network/api/s/home/stat/user/aa:bb:cc:dd:ee:ff",
            timeout=10
        )

    def test_get_client_unknown_returns_none(self, mock_session: Any) -> None:
        """The controller answers 400 with rc=error for unknown devices."""
        client = logged_in_client(mock_session)
        mock_session.get.return_value = make_response(UNKNOWN_CLIENT_RESPONSE, status_code=400)

        assert client.get_client("00:00:00:00:00:00") is None

    def test_get_client_empty_data_returns_none(self, mock_session: Any) -> None:
        client = logged_in_client(mock_session)
        mock_session.get.return_value = make_response({"meta": {"rc": "ok"}, "data": []})

        assert client.get_client("00:00:00:00:00:00") is None

    def test_get_client_requires_login(self, mock_session: Any) -> None:
        client = UniFiClient("https://unifi.local")

        with pytest.raises(PreconditionError):
            client.get_client("aa:bb:cc:dd:ee:ff")
        mock_session.get.assert_not_called()

    def test_get_client_network_error(self, mock_session: Any) -> None:
        client = logged_in_client(mock_session)
        mock_session.get.side_effect = requests.exceptions.ConnectionError("reset")

        with pytest.raises(UniFiAPIError, match="Request failed"):
            client.get_client("aa:bb:cc:dd:ee:ff")

    def test_get_client_timeout(self, mock_session: Any) -> None:
        client = logged_in_client(mock_session)
        mock_session.get.side_effect = requests.exceptions.Timeout()

        with pytest.raises(UniFiAPIError, match="timed out"):
            client.get_client("aa:bb:cc:dd:ee:ff")

    def test_get_client_html_error_page(self, mock_session: Any) -> None:
        client = logged_in_client(mock_session)
        response = make_response(status_code=502)
        response.text = "<html>Bad Gateway</html>"
        response.json.side_effect = ValueError("Expecting value")
        mock_session.get.return_value = response

        with pytest.raises(UniFiAPIError, match="Invalid JSON response: 502"):
            client.get_client("aa:bb:cc:dd:ee:ff")

    def test_get_client_without_meta(self, mock_session: Any) -> None:
        client = logged_in_client(mock_session)
        mock_session.get.return_value = make_response({"data": []}, status_code=401)

        with pytest.raises(UniFiAPIError, match="Unexpected response"):
            client.get_client("aa:bb:cc:dd:ee:ff")

    def test_get_client_invalid_record(self, mock_session: Any) -> None:
        client = logged_in_client(mock_session)
        mock_session.get.return_value = make_response(
            {"meta": {"rc": "ok"}, "data": [{"hostname": "no-mac"}]}
        )

        with pytest.raises(UniFiAPIError, match="Invalid client record"):
            client.get_client("aa:bb:cc:dd:ee:ff")


    @pytest.mark.parametrize("records", [["garbage"], [42], {"mac": "aa:bb:cc:dd:ee:ff"}])
    def test_get_client_record_not_an_object(self, mock_session: Any, records: Any) -> None:
        client = logged_in_client(mock_session)
        mock_session.get.return_value = make_response({"meta": {"rc": "ok"}, "data": records})

        with pytest.raises(UniFiAPIError, match="Invalid client record"):
            client.get_client("aa:bb:cc:dd:ee:ff")

class TestLogout:
    """Test logout and session release."""

    def test_logout_success(self, mock_session: Any) -> None:
        client = logged_in_client(mock_session)
        mock_session.get.return_value = make_response({"meta": {"rc": "ok"}, "data": []})

        assert client.logout() is True
        assert client.logged_in is False
        mock_session.get.assert_called_once_with(
            "https://unifi.local/proxy/network/api/s/home/logout", timeout=10
        )

    def test_logout_failure_is_not_raised(self, mock_session: Any) -> None:
        client = logged_in_client(mock_session)
        mock_session.get.side_effect = requests.exceptions.ConnectionError("gone")

        assert client.logout() is False
        assert client.logged_in is False

    def test_logout_http_error_is_not_raised(self, mock_session: Any) -> None:
        client = logged_in_client(mock_session)
        mock_session.get.return_value = make_response({}, status_code=500)

        assert client.logout() is False

    def test_logout_without_login_is_noop(self, mock_session: Any) -> None:
        client = UniFiClient("https://unifi.local")

        assert client.logout() is False
        mock_session.get.assert_not_called()

    def test_context_manager_logs_out_and_closes(self, mock_session: Any) -> None:
        mock_session.post.return_value = make_response({"unique_id": "abc"})
        mock_session.get.return_value = make_response({"meta": {"rc": "ok"}, "data": []})

        with UniFiClient("https://unifi.local") as client:
            client.login("admin", "secret")

        mock_session.get.assert_called_once_with(
            "https://unifi.local/proxy/network/api/s/default/logout", timeout=10
        )
        mock_session.close.assert_called_once()

    def test_context_manager_logs_out_on_error(self, mock_session: Any) -> None:
        mock_session.post.return_value = make_response({"unique_id": "abc"})
        mock_session.get.return_value = make_response({"meta": {"rc": "ok"}, "data": []})

        with pytest.raises(RuntimeError):
            with UniFiClient("https://unifi.local") as client:
                client.login("admin", "secret")
                raise RuntimeError("boom")

        assert client.logged_in is False
        mock_session.close.assert_called_once()

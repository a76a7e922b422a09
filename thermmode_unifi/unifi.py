# SPDX-License-Identifier: MPL-2.0
"""
UniFi Network Controller Client Module

Logs in to a UniFi OS controller and looks up known clients (stations) of a
site by hardware address. The session cookie returned by the login call is
kept in a requests.Session owned by the client and dropped on logout.

API Documentation: https://ubntwiki.com/products/software/unifi-controller/api
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import requests

from thermmode_unifi.errors import AuthenticationError, PreconditionError, UniFiAPIError

logger = logging.getLogger(__name__)


@dataclass
class ClientInfo:
    """
    A client device known to the controller site.

    Attributes:
        mac (str): Hardware address of the device
        hostname (str|None): Hostname reported by the device, if any
        last_seen (int|None): Unix timestamp of the last association,
            None if the device is not currently associated
    """
    mac: str
    hostname: Optional[str] = None
    last_seen: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientInfo":
        """Create from a stat/user API record."""
        last_seen = data.get('last_seen')
        return cls(
            mac=data['mac'],
            hostname=data.get('hostname') or data.get('name'),
            last_seen=int(last_seen) if last_seen is not None else None
        )


class UniFiClient:
    """
    Client for the UniFi Network application behind a UniFi OS controller.

    Attributes:
        address (str): Base URL of the controller (e.g. https://192.168.1.1)
        site (str): Site name, "default" unless configured otherwise
        verify (bool|str): TLS trust policy passed to requests. True checks
            against the system CAs, a path pins a CA bundle or certificate,
            False accepts any certificate.
        timeout (int): Request timeout in seconds
        session (requests.Session): HTTP session holding the login cookie
    """

    LOGIN_PATH = "/api/auth/login"
    NETWORK_API_PATH = "/proxy/network/api"

    def __init__(self, address: str, site: str = "default",
                 verify: Union[bool, str] = True, timeout: int = 10):
        self.address = address.rstrip('/')
        self.site = site
        self.verify = verify
        self.timeout = timeout
        self.logged_in = False
        self.session = requests.Session()
        self.session.verify = verify
        self.session.headers.update({
            'Accept': 'application/json'
        })

        if verify is False:
            logger.warning(
                f"TLS certificate verification disabled for {self.address}"
            )

    @property
    def site_url(self) -> str:
        """Base URL of the site scoped network API."""
        return f"{self.address}{self.NETWORK_API_PATH}/s/{self.site}"

    def login(self, username: str, password: str) -> None:
        """
        Authenticate against the controller.

        Args:
            username: Local controller account name
            password: Account password

        Raises:
            AuthenticationError: If the controller rejects the login or
                answers with something that is not a JSON object
        """
        url = f"{self.address}{self.LOGIN_PATH}"
        payload = {"password": password, "username": username}

        try:
            logger.debug(f"Logging in to controller {self.address} as {username}")
            response = self.session.post(url, json=payload, timeout=self.timeout)
            response.raise_for_status()

        except requests.exceptions.HTTPError as e:
            error_msg = f"Controller login failed: {e.response.status_code} - {e.response.text}"
            logger.error(error_msg)
            raise AuthenticationError(error_msg)

        except requests.exceptions.Timeout:
            error_msg = f"Controller login timed out after {self.timeout} seconds"
            logger.error(error_msg)
            raise AuthenticationError(error_msg)

        except requests.exceptions.RequestException as e:
            error_msg = f"Controller login request failed: {str(e)}"
            logger.error(error_msg)
            raise AuthenticationError(error_msg)

        try:
            result = response.json()
            if not isinstance(result, dict):
                raise ValueError("expected a JSON object")
        except ValueError as e:
            error_msg = f"Invalid login response: {str(e)}"
            logger.error(error_msg)
            raise AuthenticationError(error_msg)

        # UniFi OS rejects state changing requests without the CSRF token
        csrf_token = response.headers.get('X-CSRF-Token')
        if csrf_token:
            self.session.headers.update({'X-CSRF-Token': csrf_token})

        self.logged_in = True
        logger.debug("Controller login successful")

    def _ensure_logged_in(self) -> None:
        if not self.logged_in:
            raise PreconditionError("Not logged in to the controller")

    def get_client(self, mac: str) -> Optional[ClientInfo]:
        """
        Get the details of a client known to the site.

        Args:
            mac: Hardware address of the client

        Returns:
            ClientInfo, or None when the controller does not know the device

        Raises:
            PreconditionError: If called before login()
            UniFiAPIError: If the request fails or the response is malformed
        """
        self._ensure_logged_in()
        url = f"{self.site_url}/stat/user/{mac}"

        try:
            logger.debug(f"Getting client details for {mac}")
            response = self.session.get(url, timeout=self.timeout)

        except requests.exceptions.Timeout:
            error_msg = f"Request timed out after {self.timeout} seconds"
            logger.error(error_msg)
            raise UniFiAPIError(error_msg)

        except requests.exceptions.RequestException as e:
            error_msg = f"Request failed: {str(e)}"
            logger.error(error_msg)
            raise UniFiAPIError(error_msg)

        # Unknown clients come back as 400 with meta.rc=error (api.err.UnknownUser)
        try:
            data = response.json()
        except ValueError:
            error_msg = f"Invalid JSON response: {response.status_code} - {response.text}"
            logger.error(error_msg)
            raise UniFiAPIError(error_msg)

        if not isinstance(data, dict) or not isinstance(data.get('meta'), dict):
            error_msg = f"Unexpected response for client {mac}: {response.status_code}"
            logger.error(error_msg)
            raise UniFiAPIError(error_msg)

        meta = data['meta']
        records = data.get('data') or []
        if meta.get('rc') != 'ok' or not records:
            logger.debug(f"Client {mac} not found on site {self.site}: {meta.get('msg', 'no data')}")
            return None

        try:
            if not isinstance(records, list) or not isinstance(records[0], dict):
                raise TypeError("expected a list of JSON objects")
            return ClientInfo.from_dict(records[0])
        except (KeyError, TypeError, ValueError) as e:
            error_msg = f"Invalid client record for {mac}: {str(e)}"
            logger.error(error_msg)
            raise UniFiAPIError(error_msg)

    def logout(self) -> bool:
        """
        Log out from the controller.

        Failures are logged and reported through the return value only.

        Returns:
            True if the controller acknowledged the logout
        """
        if not self.logged_in:
            return False

        url = f"{self.site_url}/logout"
        self.logged_in = False

        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            logger.debug("Logged out from controller")
            return True

        except requests.exceptions.HTTPError as e:
            logger.warning(f"Controller logout failed: {e.response.status_code}")
            return False

        except requests.exceptions.RequestException as e:
            logger.warning(f"Controller logout request failed: {str(e)}")
            return False

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()
        logger.debug("UniFi client session closed")

    def __enter__(self) -> 'UniFiClient':
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit, logging out first if needed."""
        try:
            self.logout()
        finally:
            self.close()

    def __repr__(self) -> str:
        return f"UniFiClient(address={self.address!r}, site={self.site!r})"

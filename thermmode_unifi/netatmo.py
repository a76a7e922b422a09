# SPDX-License-Identifier: MPL-2.0
"""
Netatmo Energy API Client Module

This module handles communication with the Netatmo Smart Thermostat through
the Netatmo Connect cloud API. It provides methods to obtain an access token,
look up the home and read or change the home's thermostat mode.

API Documentation: https://dev.netatmo.com/apidocumentation/energy
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional, Union

import requests

from thermmode_unifi.errors import (
    AuthenticationError,
    ConfigurationError,
    InvalidArgumentError,
    NetatmoAPIError,
    PreconditionError,
)

logger = logging.getLogger(__name__)


class ThermostatMode(Enum):
    """Home thermostat modes handled by this client."""
    SCHEDULE = "schedule"
    AWAY = "away"
    FROSTGUARD = "hg"


class NetatmoClient:
    """
    Client for the Netatmo Connect Energy API.

    Attributes:
        client_id (str): Netatmo app client ID
        client_secret (str): Netatmo app client secret
        timeout (int): Request timeout in seconds
        session (requests.Session): HTTP session for connection pooling
        access_token (str|None): OAuth2 access token, set by authenticate()
    """

    BASE_URL = "https://api.netatmo.com/api"
    TOKEN_URL = "https://api.netatmo.com/oauth2/token"
    SCOPE = "read_thermostat write_thermostat"

    def __init__(self, client_id: str, client_secret: str, timeout: int = 10):
        self.base_url = self.BASE_URL
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.access_token: Optional[str] = None
        self.session = requests.Session()
        self.session.headers.update({
            'Accept': 'application/json'
        })

    def authenticate(self, username: str, password: str) -> str:
        """
        Obtain an access token with the OAuth2 password grant.

        Args:
            username: Netatmo account e-mail
            password: Netatmo account password

        Returns:
            The access token

        Raises:
            AuthenticationError: If the token request fails
        """
        data = {
            'grant_type': 'password',
            'client_id': self.client_id,
            'client_secret': self.client_secret,
            'username': username,
            'password': password,
            'scope': self.SCOPE
        }

        try:
            logger.debug("Requesting OAuth2 access token")
            response = self.session.post(self.TOKEN_URL, data=data, timeout=self.timeout)

        except requests.exceptions.Timeout:
            error_msg = f"Token request timed out after {self.timeout} seconds"
            logger.error(error_msg)
            raise AuthenticationError(error_msg)

        except requests.exceptions.RequestException as e:
            error_msg = f"Token request failed: {str(e)}"
            logger.error(error_msg)
            raise AuthenticationError(error_msg)

        try:
            token_data = response.json()
            if not isinstance(token_data, dict):
                raise ValueError("expected a JSON object")
        except ValueError as e:
            error_msg = f"Invalid token response: {str(e)}"
            logger.error(error_msg)
            raise AuthenticationError(error_msg)

        if 'error' in token_data:
            error_msg = f"OAuth2 token request failed: {_error_message(token_data)}"
            logger.error(error_msg)
            raise AuthenticationError(error_msg)

        access_token = token_data.get('access_token')
        if not access_token:
            error_msg = "Invalid token response: access_token not found in response"
            logger.error(error_msg)
            raise AuthenticationError(error_msg)

        if 'scope' in token_data:
            logger.debug(f"Token scope: {token_data['scope']}")
        if 'expires_in' in token_data:
            logger.debug(f"Access token expires in {token_data['expires_in']} seconds")

        self.access_token = access_token
        self.session.headers.update({
            'Authorization': f'Bearer {self.access_token}'
        })
        return access_token

    def _ensure_token(self) -> None:
        if not self.access_token:
            raise PreconditionError("No Netatmo access token, call authenticate() first")

    def _handle_response(self, response: requests.Response) -> Dict[str, Any]:
        """
        Decode an API response, raising on error bodies and HTTP errors.

        Netatmo reports failures as {"error": {"code": ..., "message": ...}},
        usually with a 4xx status, so the body is checked before the status.
        """
        try:
            data = response.json()
        except ValueError:
            error_msg = f"Invalid JSON response: {response.status_code} - {response.text}"
            logger.error(error_msg)
            raise NetatmoAPIError(error_msg)

        if not isinstance(data, dict):
            error_msg = f"Unexpected response: {response.status_code} - {response.text}"
            logger.error(error_msg)
            raise NetatmoAPIError(error_msg)

        if 'error' in data:
            error_msg = f"API error: {_error_message(data)}"
            logger.error(error_msg)
            raise NetatmoAPIError(error_msg)

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            error_msg = f"HTTP error: {e.response.status_code} - {e.response.text}"
            logger.error(error_msg)
            raise NetatmoAPIError(error_msg)

        return data

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> Dict[str, Any]:
        """
        Call an API endpoint with the bearer token attached.

        Raises:
            PreconditionError: If no access token has been obtained
            NetatmoAPIError: If the request fails
        """
        self._ensure_token()
        url = f"{self.base_url}/{endpoint}"

        try:
            logger.debug(f"{method} {url}")
            if method == 'POST':
                response = self.session.post(url, timeout=self.timeout, **kwargs)
            else:
                response = self.session.get(url, timeout=self.timeout, **kwargs)

        except requests.exceptions.Timeout:
            error_msg = f"Request timed out after {self.timeout} seconds"
            logger.error(error_msg)
            raise NetatmoAPIError(error_msg)

        except requests.exceptions.RequestException as e:
            error_msg = f"Request failed: {str(e)}"
            logger.error(error_msg)
            raise NetatmoAPIError(error_msg)

        return self._handle_response(response)

    def get_homes_data(self) -> Dict[str, Any]:
        """Get the homes and their topology for the account."""
        return self._request('GET', 'homesdata')

    def resolve_home_id(self, home_id: Optional[str] = None) -> str:
        """
        Return the home ID to operate on.

        Args:
            home_id: Configured home ID; when empty the account's first home is used

        Returns:
            Home ID

        Raises:
            ConfigurationError: If the account has no homes
            NetatmoAPIError: If the request fails
        """
        if home_id:
            return home_id

        homes = _body(self.get_homes_data()).get('homes') or []
        if not isinstance(homes, list):
            error_msg = f"Invalid homesdata response: homes is {type(homes).__name__}, not a list"
            logger.error(error_msg)
            raise NetatmoAPIError(error_msg)
        if not homes:
            raise ConfigurationError("No homes found in the Netatmo account")

        try:
            resolved = str(homes[0]['id'])
        except (KeyError, TypeError) as e:
            raise NetatmoAPIError(f"Invalid homesdata response: {str(e)}")

        logger.info(f"Auto-selected first home: {resolved}")
        return resolved

    def get_home_status(self, home_id: str) -> Dict[str, Any]:
        """Get the current status of a home."""
        return self._request('GET', 'homestatus', params={'home_id': home_id})

    def get_mode(self, home_id: str) -> ThermostatMode:
        """
        Get the current thermostat mode of a home.

        Args:
            home_id: Home ID

        Returns:
            Current ThermostatMode

        Raises:
            NetatmoAPIError: If the request fails or the mode is missing or unknown
        """
        home = _body(self.get_home_status(home_id)).get('home') or {}
        rooms = (home.get('rooms') or []) if isinstance(home, dict) else None
        if not isinstance(rooms, list):
            error_msg = f"Unexpected status layout for home {home_id}"
            logger.error(error_msg)
            raise NetatmoAPIError(error_msg)

        mode = home.get('therm_setpoint_mode')
        if mode is None:
            for room in rooms:
                if isinstance(room, dict) and 'therm_setpoint_mode' in room:
                    mode = room['therm_setpoint_mode']
                    break

        if mode is None:
            error_msg = f"No thermostat mode in status of home {home_id}"
            logger.error(error_msg)
            raise NetatmoAPIError(error_msg)

        try:
            return ThermostatMode(mode)
        except ValueError:
            error_msg = f"Unrecognized thermostat mode '{mode}'"
            logger.error(error_msg)
            raise NetatmoAPIError(error_msg)

    def set_mode(self, home_id: str, mode: Union[ThermostatMode, str]) -> Dict[str, Any]:
        """
        Set the thermostat mode of a home.

        Args:
            home_id: Home ID
            mode: Target mode, a ThermostatMode or its string value

        Returns:
            API response dictionary

        Raises:
            InvalidArgumentError: If mode is not one of schedule, away or hg
            NetatmoAPIError: If the request fails
        """
        if not isinstance(mode, ThermostatMode):
            try:
                mode = ThermostatMode(mode)
            except ValueError:
                valid = '|'.join(m.value for m in ThermostatMode)
                raise InvalidArgumentError(f"Thermostat mode should be any of '{valid}', got {mode!r}")

        logger.debug(f"Setting thermostat mode of home {home_id} to {mode.value}")
        return self._request('POST', 'setthermmode', data={'home_id': home_id, 'mode': mode.value})

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()
        logger.debug("Netatmo client session closed")

    def __enter__(self) -> 'NetatmoClient':
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        self.close()


def _body(data: Dict[str, Any]) -> Dict[str, Any]:
    """Return the "body" object of an API response."""
    body = data.get('body')
    if not isinstance(body, dict):
        raise NetatmoAPIError(f"Unexpected response, no body object: {data}")
    return body


def _error_message(data: Dict[str, Any]) -> str:
    """Extract a readable message from a Netatmo error body."""
    error = data.get('error')
    if isinstance(error, dict):
        return f"{error.get('code', '?')} - {error.get('message', 'Unknown error')}"
    description = data.get('error_description')
    if description:
        return f"{error} - {description}"
    return str(error)

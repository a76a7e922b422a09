# SPDX-License-Identifier: MPL-2.0
"""
Netatmo thermostat mode by connected UniFi clients

Geolocation-like functionality for the Netatmo Smart Thermostat: when none of
the monitored devices has been connected to the UniFi network for a while,
the home is switched to away mode, and back to its schedule as soon as one
of them returns.

Each invocation does a single pass:
1. Load and validate the configuration
2. Get a Netatmo access token and resolve the home
3. Read the thermostat mode, stopping early in frost guard mode
4. Log in to the UniFi controller and check every monitored client
5. Switch the thermostat mode if needed

Run it periodically from cron or a systemd timer.
"""

import argparse
import configparser
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from thermmode_unifi.errors import ConfigurationError, ThermmodeError
from thermmode_unifi.netatmo import NetatmoClient, ThermostatMode
from thermmode_unifi.presence import DEFAULT_OFFLINE_SECONDS, decide_mode, evaluate_presence
from thermmode_unifi.unifi import UniFiClient

__version__ = "1.0.0"

# Logger will be configured later based on config/CLI args
logger = logging.getLogger(__name__)

CONFIG_SECTION = "thermmode"

# Validated in this order, the first missing one is reported
MANDATORY_KEYS = [
    "UNIFI_ADDRESS",
    "UNIFI_USERNAME",
    "UNIFI_PASSWORD",
    "UNIFI_SITENAME",
    "UNIFI_CLIENTS",
    "NETATMO_CLIENT_ID",
    "NETATMO_CLIENT_SECRET",
    "NETATMO_USERNAME",
    "NETATMO_PASSWORD",
]

OPTIONAL_KEYS = [
    "UNIFI_CLIENT_OFFLINE_SECONDS",
    "UNIFI_VERIFY_SSL",
    "UNIFI_CA_BUNDLE",
    "NETATMO_HOME_ID",
    "REQUEST_TIMEOUT",
    "LOG_LEVEL",
]

# Older configuration files use this spelling
KEY_ALIASES = {
    "UNIFI_CLIENTS_OFFLINE_SECONDS": "UNIFI_CLIENT_OFFLINE_SECONDS",
}

# Secrets that may be passed as systemd credentials
CREDENTIAL_KEYS = [
    "UNIFI_PASSWORD",
    "NETATMO_CLIENT_SECRET",
    "NETATMO_PASSWORD",
]

DEFAULTS = {
    "UNIFI_SITENAME": "default",
    "UNIFI_CLIENT_OFFLINE_SECONDS": str(DEFAULT_OFFLINE_SECONDS),
}

CONFIG_TEMPLATE = """\
# UniFi controller configuration
UNIFI_ADDRESS  = https://url_or_ip_of_your_controller
UNIFI_USERNAME = ...
UNIFI_PASSWORD = ...
# Optional, default value
UNIFI_SITENAME = default
# List of mac addresses (space separated)
UNIFI_CLIENTS  = aa:aa:aa:aa:aa:aa bb:bb:bb:bb:bb:bb cc:cc:cc:cc:cc:cc
# Optional, default value
UNIFI_CLIENT_OFFLINE_SECONDS = 900
# Optional, set to false to accept a self-signed controller certificate
# or point UNIFI_CA_BUNDLE to the certificate to trust instead
UNIFI_VERIFY_SSL = true
UNIFI_CA_BUNDLE  =

# Netatmo connect configuration
NETATMO_CLIENT_ID     = ...
NETATMO_CLIENT_SECRET = ...
NETATMO_USERNAME      = ...
NETATMO_PASSWORD      = ...
# Optional, the first home of the account is used when empty
NETATMO_HOME_ID       =

# Optional, request timeout in seconds and logging level
REQUEST_TIMEOUT = 10
LOG_LEVEL       = WARNING
"""


@dataclass
class Config:
    """Application configuration."""
    # UniFi controller
    unifi_address: str
    unifi_username: str
    unifi_password: str
    unifi_clients: List[str]

    # Netatmo Connect
    netatmo_client_id: str
    netatmo_client_secret: str
    netatmo_username: str
    netatmo_password: str

    unifi_sitename: str = "default"
    unifi_offline_seconds: int = DEFAULT_OFFLINE_SECONDS  # Seconds before a client counts as away
    unifi_verify_ssl: bool = True
    unifi_ca_bundle: Optional[str] = None  # CA bundle or certificate to trust for the controller
    netatmo_home_id: Optional[str] = None  # First home of the account when not set

    request_timeout: int = 10  # Per request timeout in seconds

    # Logging
    logging_level: str = 'WARNING'  # Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    @property
    def unifi_verify(self) -> Union[bool, str]:
        """TLS trust policy for the controller connection."""
        if self.unifi_ca_bundle:
            return self.unifi_ca_bundle
        return self.unifi_verify_ssl


def _unquote(value: str) -> str:
    """Strip whitespace and one pair of surrounding quotes."""
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        value = value[1:-1]
    return value


def parse_config_file(config_path: str) -> Dict[str, str]:
    """
    Read KEY = value pairs from a configuration file.

    Comments must be on their own line. Quotes around values are optional,
    lines that are not key/value pairs, [section] headers, unknown keys and
    empty values are ignored. An indented line following a value is joined
    to that value as a continuation line.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary of the recognized, non-empty keys

    Raises:
        ConfigurationError: If the file is missing, unreadable or malformed
    """
    path = Path(config_path)
    if not path.is_file():
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    if not os.access(path, os.R_OK):
        raise ConfigurationError(f"Configuration file is not readable: {config_path}")

    parser = configparser.ConfigParser(
        interpolation=None,
        delimiters=('=',),
        allow_no_value=True,
        strict=False,
    )
    parser.optionxform = str  # type: ignore[assignment,method-assign]

    try:
        text = path.read_text().replace('\r', '')
        # Every key lives in the one synthetic section
        text = '\n'.join(
            line for line in text.split('\n')
            if not (line.strip().startswith('[') and line.strip().endswith(']'))
        )
        parser.read_string(f"[{CONFIG_SECTION}]\n{text}", source=config_path)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Cannot read configuration file {config_path}: {e}")
    except configparser.Error as e:
        raise ConfigurationError(f"Invalid configuration: {e}")

    known = set(MANDATORY_KEYS) | set(OPTIONAL_KEYS) | set(KEY_ALIASES)
    values: Dict[str, str] = {}
    for key, raw in parser.items(CONFIG_SECTION):
        if key not in known or raw is None:
            continue
        value = _unquote(raw)
        if value:
            values[KEY_ALIASES.get(key, key)] = value

    return values


def _read_environment() -> Dict[str, str]:
    values: Dict[str, str] = {}
    for key in MANDATORY_KEYS + OPTIONAL_KEYS + list(KEY_ALIASES):
        value = os.environ.get(key, '').strip()
        if value:
            values[KEY_ALIASES.get(key, key)] = value
    return values


def _read_credentials() -> Dict[str, str]:
    """Read secrets from $CREDENTIALS_DIRECTORY, if set."""
    creds_dir = os.getenv('CREDENTIALS_DIRECTORY')
    if not creds_dir:
        return {}

    creds_path = Path(creds_dir)
    if not creds_path.is_dir():
        raise ConfigurationError(f"Credentials directory does not exist: {creds_dir}")

    values: Dict[str, str] = {}
    for key in CREDENTIAL_KEYS:
        cred_file = creds_path / key.lower()
        if cred_file.exists():
            try:
                value = cred_file.read_text().strip()
            except (OSError, UnicodeDecodeError) as e:
                raise ConfigurationError(f"Cannot read credential {cred_file}: {e}")
            if value:
                values[key] = value
                logger.debug(f"Read {key} from {cred_file}")
    return values


def _parse_int(values: Dict[str, str], key: str) -> Optional[int]:
    if key not in values:
        return None
    try:
        result = int(values[key])
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got '{values[key]}'")
    if result <= 0:
        raise ConfigurationError(f"{key} must be positive, got {result}")
    return result


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from the environment, credentials and a config file.

    Later sources override earlier ones: built-in defaults, environment
    variables, files in $CREDENTIALS_DIRECTORY, the configuration file.

    Args:
        config_path: Path to the configuration file, optional

    Returns:
        Config object with all settings

    Raises:
        ConfigurationError: If a mandatory key is missing or a value is invalid
    """
    values = dict(DEFAULTS)
    values.update(_read_environment())
    values.update(_read_credentials())

    if config_path is not None:
        values.update(parse_config_file(config_path))
        logger.debug(f"Read configuration file: {config_path}")

    for key in MANDATORY_KEYS:
        if not values.get(key):
            raise ConfigurationError(f"variable {key} is empty!")

    config = Config(
        unifi_address=values['UNIFI_ADDRESS'],
        unifi_username=values['UNIFI_USERNAME'],
        unifi_password=values['UNIFI_PASSWORD'],
        unifi_clients=values['UNIFI_CLIENTS'].split(),
        netatmo_client_id=values['NETATMO_CLIENT_ID'],
        netatmo_client_secret=values['NETATMO_CLIENT_SECRET'],
        netatmo_username=values['NETATMO_USERNAME'],
        netatmo_password=values['NETATMO_PASSWORD'],
        unifi_sitename=values['UNIFI_SITENAME'],
        unifi_ca_bundle=values.get('UNIFI_CA_BUNDLE'),
        netatmo_home_id=values.get('NETATMO_HOME_ID'),
    )

    offline_seconds = _parse_int(values, 'UNIFI_CLIENT_OFFLINE_SECONDS')
    if offline_seconds is not None:
        config.unifi_offline_seconds = offline_seconds

    timeout = _parse_int(values, 'REQUEST_TIMEOUT')
    if timeout is not None:
        config.request_timeout = timeout

    if 'UNIFI_VERIFY_SSL' in values:
        verify = values['UNIFI_VERIFY_SSL'].lower()
        if verify not in configparser.ConfigParser.BOOLEAN_STATES:
            raise ConfigurationError(f"UNIFI_VERIFY_SSL must be a boolean, got '{values['UNIFI_VERIFY_SSL']}'")
        config.unifi_verify_ssl = configparser.ConfigParser.BOOLEAN_STATES[verify]

    if config.unifi_ca_bundle and not os.path.exists(config.unifi_ca_bundle):
        raise ConfigurationError(f"UNIFI_CA_BUNDLE not found: {config.unifi_ca_bundle}")

    if 'LOG_LEVEL' in values:
        config.logging_level = values['LOG_LEVEL'].upper()

    return config


def apply_cli_overrides(config: Config, args: argparse.Namespace) -> None:
    """
    Apply command line argument overrides to configuration.

    Args:
        config: Configuration object to modify
        args: Parsed command line arguments
    """
    if args.verbose and logging.getLevelName(config.logging_level) in (
            logging.WARNING, logging.ERROR, logging.CRITICAL):
        config.logging_level = 'INFO'

    if args.log_level is not None:
        config.logging_level = args.log_level.upper()


def configure_logging(level: str) -> None:
    """
    Configure logging level for all modules.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    # Map string to logging level
    level_map = {
        'DEBUG': logging.DEBUG,
        'INFO': logging.INFO,
        'WARNING': logging.WARNING,
        'ERROR': logging.ERROR,
        'CRITICAL': logging.CRITICAL,
    }

    log_level = level_map.get(level.upper(), logging.WARNING)

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format='%(name)s - %(levelname)s - %(message)s',
        force=True,
    )

    # Configure module loggers
    logging.getLogger('thermmode_unifi.thermmode').setLevel(log_level)
    logging.getLogger('thermmode_unifi.netatmo').setLevel(log_level)
    logging.getLogger('thermmode_unifi.unifi').setLevel(log_level)
    logging.getLogger('thermmode_unifi.presence').setLevel(log_level)


def run(config: Config) -> int:
    """
    Run a single check and update the thermostat mode if needed.

    Args:
        config: Loaded configuration

    Returns:
        Exit status, 0 when the thermostat is in the wanted mode

    Raises:
        ThermmodeError: On any configuration, authentication or API error
    """
    with NetatmoClient(
        client_id=config.netatmo_client_id,
        client_secret=config.netatmo_client_secret,
        timeout=config.request_timeout
    ) as netatmo:
        netatmo.authenticate(config.netatmo_username, config.netatmo_password)
        home_id = netatmo.resolve_home_id(config.netatmo_home_id)

        mode = netatmo.get_mode(home_id)
        if mode == ThermostatMode.FROSTGUARD:
            print("** Thermostat is in frost guard mode **")
            return 0
        logger.info(f"** Thermostat mode = {mode.value} **")

        with UniFiClient(
            address=config.unifi_address,
            site=config.unifi_sitename,
            verify=config.unifi_verify,
            timeout=config.request_timeout
        ) as unifi:
            unifi.login(config.unifi_username, config.unifi_password)
            present = evaluate_presence(
                unifi, config.unifi_clients, config.unifi_offline_seconds
            )

        next_mode = decide_mode(mode, present)
        if next_mode is None:
            print("** No need to change the thermostat mode **")
            return 0

        print(f"** Set thermostat mode to {next_mode.value} **")
        netatmo.set_mode(home_id, next_mode)

    return 0


def main() -> int:
    """Command line entry point."""
    parser = argparse.ArgumentParser(
        prog='thermmode-unifi',
        description='UniFi client monitoring for geolocation-like functionality '
                    'of the Netatmo Smart Thermostat.'
    )
    parser.add_argument(
        'config_file',
        nargs='?',
        default=None,
        help='Path to the configuration file (default: read from the environment)'
    )
    parser.add_argument(
        '-c', '--config',
        action='store_true',
        help='Print a demo <config_file> with all variables'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Make the operation more talkative'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Logging level (default: WARNING, INFO with --verbose)'
    )
    parser.add_argument(
        '-V', '--version',
        action='version',
        version=f'%(prog)s {__version__}',
        help='Show version number and quit'
    )
    args = parser.parse_args()

    if args.config:
        print(CONFIG_TEMPLATE, end='')
        return 0

    configure_logging(args.log_level or ('INFO' if args.verbose else 'WARNING'))

    try:
        config = load_config(args.config_file)
        apply_cli_overrides(config, args)
        configure_logging(config.logging_level)
        logger.debug("Configuration loaded successfully")
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        return run(config)
    except ThermmodeError as e:
        print(f"** {e} **", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

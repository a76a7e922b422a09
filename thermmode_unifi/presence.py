# SPDX-License-Identifier: MPL-2.0
"""
Presence detection and thermostat mode decision.

Presence is derived from the last time each monitored device associated with
the UniFi controller. The thermostat goes to away when nobody is present and
back to its schedule when somebody returns. Frost guard is left alone.
"""

import logging
import time
from typing import Iterable, Optional

from thermmode_unifi.errors import RemoteError
from thermmode_unifi.netatmo import ThermostatMode
from thermmode_unifi.unifi import UniFiClient

logger = logging.getLogger(__name__)

DEFAULT_OFFLINE_SECONDS = 900


def evaluate_presence(
    controller: UniFiClient,
    macs: Iterable[str],
    offline_seconds: int = DEFAULT_OFFLINE_SECONDS,
    now: Optional[int] = None,
) -> bool:
    """
    Check whether any of the monitored clients is currently connected.

    Every client is queried, in the given order, so each one gets logged.
    A single timestamp is taken before the first query and used for all
    clients.

    Args:
        controller: Logged in UniFi controller client
        macs: Hardware addresses of the monitored clients
        offline_seconds: A client last seen this many seconds ago or longer
            counts as away
        now: Unix timestamp to compare against (default: current time)

    Returns:
        True if at least one client was seen within offline_seconds
    """
    if now is None:
        now = int(time.time())

    present = False

    for mac in macs:
        try:
            client = controller.get_client(mac)
        except RemoteError as e:
            logger.warning(f"Skipping {mac}, query failed: {e}")
            continue

        if client is None:
            logger.info(f"{mac} is not a configured client.")
            continue

        if client.last_seen is None:
            logger.info(f"{mac} {client.hostname or ''} has never been seen.")
            continue

        elapsed = now - client.last_seen
        logger.info(f"{mac} {client.hostname or ''} last seen {elapsed} seconds ago.")

        if elapsed < offline_seconds:
            present = True

    logger.debug(f"Presence detected: {present}")
    return present


def decide_mode(current: ThermostatMode, present: bool) -> Optional[ThermostatMode]:
    """
    Decide the next thermostat mode.

    Args:
        current: Current thermostat mode
        present: Whether anybody is home

    Returns:
        The mode to switch to, or None when no change is needed
    """
    if current == ThermostatMode.SCHEDULE and not present:
        return ThermostatMode.AWAY
    if current == ThermostatMode.AWAY and present:
        return ThermostatMode.SCHEDULE
    return None

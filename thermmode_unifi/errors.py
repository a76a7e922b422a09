# SPDX-License-Identifier: MPL-2.0
"""Exceptions raised by the thermmode-unifi modules."""


class ThermmodeError(Exception):
    """Base exception for thermmode-unifi errors."""
    pass


class ConfigurationError(ThermmodeError):
    """Raised when configuration is invalid or missing."""
    pass


class AuthenticationError(ThermmodeError):
    """Login or token request failed."""
    pass


class RemoteError(ThermmodeError):
    """A remote API reported an error or returned an unexpected response."""
    pass


class UniFiAPIError(RemoteError):
    """UniFi controller API error."""
    pass


class NetatmoAPIError(RemoteError):
    """Netatmo Connect API error."""
    pass


class InvalidArgumentError(ThermmodeError, ValueError):
    """A caller passed a value outside the accepted set."""
    pass


class PreconditionError(ThermmodeError, RuntimeError):
    """An operation was called before the client was ready for it."""
    pass

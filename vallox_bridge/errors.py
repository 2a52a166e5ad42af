"""Exception taxonomy for the decode, aggregate and persist pipeline."""

from __future__ import annotations


class BridgeError(RuntimeError):
    """Base class for errors raised by vallox-bridge."""


class ConfigurationError(BridgeError):
    """Raised when the configuration file is missing a required value."""


class OutOfRange(BridgeError):
    """Raised when a fixed-width read would run past the end of a buffer."""


class MalformedFrame(BridgeError):
    """Raised when a frame or record cannot be decoded."""


class SizeMismatch(BridgeError):
    """Raised when a data frame disagrees with the declared page count."""


class UnexpectedFrame(BridgeError):
    """Raised when a frame arrives while a completed pair is being handed off."""


class ConversionError(BridgeError):
    """Raised when a decoded value does not fit its storage column."""


class StorageUnavailable(BridgeError):
    """Raised when the store cannot be reached or a statement fails."""


class DeviceNotConnected(BridgeError):
    """Raised when sending to the device while no websocket is open."""

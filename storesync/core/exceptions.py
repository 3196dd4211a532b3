"""
Error taxonomy for the sync engine.
"""


class StoreSyncError(Exception):
    """Base class for all sync engine errors."""


class ConfigurationError(StoreSyncError):
    """Missing or invalid credentials, or a transport that cannot be built."""


class TransportError(StoreSyncError):
    """Network, timeout or non-success response while fetching a page."""


class ParseError(StoreSyncError):
    """A payload could not be decoded, even after recovery attempts."""


class RecordError(StoreSyncError):
    """A single record could not be converted or stored."""

    def __init__(self, message: str, remote_id=None):
        super().__init__(message)
        self.remote_id = remote_id


class PrefixNotFoundError(StoreSyncError):
    """No table prefix could be discovered in the source schema."""

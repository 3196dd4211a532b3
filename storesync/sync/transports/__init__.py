"""
Transport selection.
"""

from typing import Any, Dict

from ...core.exceptions import ConfigurationError
from ..models import ApiCredentials, Connection, DatastoreCredentials, TransportMode
from ..settings import SyncSettings
from .base import Transport
from .direct_datastore import DirectDatastoreTransport
from .remote_api import RemoteApiTransport


def build_transport(connection: Connection, credentials: Dict[str, Any], settings: SyncSettings) -> Transport:
    """Build the transport for a connection's mode from decrypted credentials."""
    if connection.mode == TransportMode.REMOTE_API.value:
        return RemoteApiTransport(ApiCredentials.from_dict(credentials), settings)
    if connection.mode == TransportMode.DIRECT_DATASTORE.value:
        return DirectDatastoreTransport(DatastoreCredentials.from_dict(credentials), settings)
    raise ConfigurationError(f"Unknown transport mode {connection.mode!r} for connection {connection.id}")


__all__ = ['Transport', 'RemoteApiTransport', 'DirectDatastoreTransport', 'build_transport']

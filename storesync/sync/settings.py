"""
Tunables for a sync run, read from config.yaml.
"""

from dataclasses import dataclass

from ..core.config import Config


@dataclass
class SyncSettings:
    remote_per_page: int = 50
    remote_connect_timeout: float = 10.0
    remote_read_timeout: float = 30.0
    fixture_fallback: bool = True
    user_agent: str = 'StoreSync/1.0'
    datastore_page_size: int = 200
    datastore_connect_timeout: int = 10
    datastore_read_timeout: int = 60
    max_concurrent_syncs: int = 4
    progress_retention_seconds: int = 3600

    @classmethod
    def from_config(cls, config: Config) -> 'SyncSettings':
        defaults = cls()
        return cls(
            remote_per_page=config.get_int('remote_api', 'per_page', default=defaults.remote_per_page),
            remote_connect_timeout=config.get_float(
                'remote_api', 'connect_timeout', default=defaults.remote_connect_timeout),
            remote_read_timeout=config.get_float(
                'remote_api', 'read_timeout', default=defaults.remote_read_timeout),
            fixture_fallback=config.get_bool('remote_api', 'fixture_fallback', default=defaults.fixture_fallback),
            user_agent=config.get('remote_api', 'user_agent', default=defaults.user_agent),
            datastore_page_size=config.get_int(
                'direct_datastore', 'page_size', default=defaults.datastore_page_size),
            datastore_connect_timeout=config.get_int(
                'direct_datastore', 'connect_timeout', default=defaults.datastore_connect_timeout),
            datastore_read_timeout=config.get_int(
                'direct_datastore', 'read_timeout', default=defaults.datastore_read_timeout),
            max_concurrent_syncs=config.get_int(
                'sync', 'max_concurrent_syncs', default=defaults.max_concurrent_syncs),
            progress_retention_seconds=config.get_int(
                'sync', 'progress_retention_seconds', default=defaults.progress_retention_seconds),
        )

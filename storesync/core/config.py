"""
Configuration for StoreSync.

Settings live in config.yaml next to the project (or wherever
STORESYNC_CONFIG points). Sections:

    general           data dir, database file, log file and level
    sync              concurrency and progress retention
    remote_api        REST paging, timeouts, fixture fallback
    direct_datastore  MySQL paging and timeouts
    security          credential encryption key
    connections       store connections for `cli.py connections import`
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "STORESYNC_CONFIG"

REQUIRED_SECTIONS = ('general', 'sync')

# (section, key) -> (min, max); WooCommerce caps per_page at 100
_BOUNDS = {
    ('remote_api', 'per_page'): (1, 100),
    ('direct_datastore', 'page_size'): (1, 5000),
    ('sync', 'max_concurrent_syncs'): (1, 64),
}


class Config:
    """Singleton configuration manager."""

    _instance: Optional['Config'] = None
    _data: dict = {}
    _path: Optional[Path] = None
    _project_root: Path = None

    def __new__(cls, config_path: Optional[str] = None) -> 'Config':
        if cls._instance is None:
            instance = super().__new__(cls)
            instance._project_root = Path(__file__).resolve().parent.parent.parent
            instance._load(config_path or os.environ.get(CONFIG_ENV_VAR))
            cls._instance = instance
        return cls._instance

    def _load(self, config_path: Optional[str]) -> None:
        path = Path(config_path) if config_path else self._project_root / "config.yaml"
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a mapping at the top level")

        missing = [s for s in REQUIRED_SECTIONS if s not in data]
        if missing:
            raise ValueError(f"Missing required config sections: {missing}")

        self._data = data
        self._path = path
        self._check_bounds()
        logger.info(f"Configuration loaded from {path}")

    def _check_bounds(self) -> None:
        for keys, (low, high) in _BOUNDS.items():
            value = self.get(*keys)
            if value is None:
                continue
            if not isinstance(value, int) or not low <= value <= high:
                raise ValueError(f"{'.'.join(keys)} must be an integer between {low} and {high}, got {value!r}")

    @classmethod
    def reset(cls) -> None:
        """Forget the loaded instance so the next access reloads from disk."""
        cls._instance = None

    def get(self, *keys: str, default: Any = None) -> Any:
        """
        Nested lookup, e.g. config.get('remote_api', 'per_page').
        Returns default when any key along the way is missing.
        """
        value = self._data
        for key in keys:
            if not isinstance(value, dict) or key not in value:
                return default
            value = value[key]
        return value

    def get_int(self, *keys: str, default: int = 0) -> int:
        value = self.get(*keys)
        return default if value is None else int(value)

    def get_float(self, *keys: str, default: float = 0.0) -> float:
        value = self.get(*keys)
        return default if value is None else float(value)

    def get_bool(self, *keys: str, default: bool = False) -> bool:
        value = self.get(*keys, default=default)
        if isinstance(value, str):
            return value.strip().lower() in ('true', 'yes', '1', 'on')
        return bool(value)

    def get_list(self, *keys: str, default: list = None) -> list:
        value = self.get(*keys)
        if value is None:
            return list(default or [])
        return value if isinstance(value, list) else [value]

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def project_root(self) -> Path:
        return self._project_root

    def _resolve(self, name: str) -> Path:
        # Relative paths are taken from the project root, not the working dir
        path = Path(name)
        return path if path.is_absolute() else self._project_root / path

    @property
    def data_dir(self) -> Path:
        """Data directory, created on first access."""
        path = self._resolve(self.get('general', 'data_dir', default='data'))
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.get('general', 'database', default='storesync.db')

    @property
    def log_path(self) -> Path:
        return self._resolve(self.get('general', 'log_file', default='storesync.log'))

    @property
    def log_level(self) -> str:
        return str(self.get('general', 'log_level', default='INFO')).upper()

    @property
    def data_key(self) -> Optional[str]:
        """Credential encryption key from security.data_key, if set."""
        return self.get('security', 'data_key') or None

    @property
    def connection_entries(self) -> List[Dict[str, Any]]:
        """Raw `connections:` entries; anything that is not a mapping is skipped."""
        entries = []
        for entry in self.get_list('connections'):
            if isinstance(entry, dict):
                entries.append(entry)
            else:
                logger.warning(f"Ignoring connections entry that is not a mapping: {entry!r}")
        return entries


def get_config() -> Config:
    """Get the global config instance."""
    return Config()

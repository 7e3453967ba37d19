"""
Configuration for cl-channeldb

Holds the plugin options that control where and how the channel store
opens its SQLite database. Values come from the plugin's channeldb-*
options (see cl-channeldb.py) or are passed directly in tests.
"""

import os
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional


DEFAULT_DB_PATH = "~/.lightning/channeldb.sqlite3"
DEFAULT_BUSY_TIMEOUT_SECONDS = 30.0
DEFAULT_JOURNAL_MODE = "WAL"

VALID_JOURNAL_MODES = {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"}

# Plugin option name -> config field
PLUGIN_OPTIONS = {
    "channeldb-path": "db_path",
    "channeldb-busy-timeout": "busy_timeout_seconds",
    "channeldb-journal-mode": "journal_mode",
    "channeldb-metrics": "metrics_enabled",
}


@dataclass
class ChannelDbConfig:
    """
    Settings for the channel store.

    Attributes:
        db_path: SQLite file path, or ':memory:'
        busy_timeout_seconds: How long a statement waits on a locked database
        journal_mode: SQLite journal mode applied when the connection opens
        metrics_enabled: Record per-operation timing and failure counts
    """
    db_path: str = DEFAULT_DB_PATH
    busy_timeout_seconds: float = DEFAULT_BUSY_TIMEOUT_SECONDS
    journal_mode: str = DEFAULT_JOURNAL_MODE
    metrics_enabled: bool = True

    def resolved_db_path(self) -> str:
        if self.db_path == ":memory:":
            return self.db_path
        return os.path.expanduser(self.db_path)

    def validate(self) -> Optional[str]:
        """Return an error message for the first invalid setting, or None."""
        if not self.db_path:
            return "db_path must not be empty"
        if self.busy_timeout_seconds < 0:
            return "busy_timeout_seconds must be >= 0"
        if self.journal_mode.upper() not in VALID_JOURNAL_MODES:
            return f"journal_mode must be one of {sorted(VALID_JOURNAL_MODES)}"
        return None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_plugin_options(cls, options: Dict[str, Any]) -> 'ChannelDbConfig':
        """
        Build a config from the plugin's option values.

        pyln hands option values over as strings; missing or empty
        options fall back to the defaults.
        """
        config = cls()
        for option, field_name in PLUGIN_OPTIONS.items():
            raw = options.get(option)
            if raw is None or raw == "":
                continue
            if field_name == "busy_timeout_seconds":
                value = float(raw)
            elif field_name == "metrics_enabled":
                value = _parse_bool(raw)
            elif field_name == "journal_mode":
                value = str(raw).upper()
            else:
                value = str(raw)
            setattr(config, field_name, value)
        return config


def _parse_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in ("1", "true", "yes", "on")

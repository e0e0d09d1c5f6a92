"""Flag models and the ConfigStore collection."""

from rbx_configs.config.models import Flag, FlagValue, ValueKind
from rbx_configs.config.store import ConfigStore, read_local, write_local

__all__ = [
    "ConfigStore",
    "Flag",
    "FlagValue",
    "ValueKind",
    "read_local",
    "write_local",
]

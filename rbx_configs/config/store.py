"""ConfigStore — an in-memory collection of named flags.

The same type represents the local flag file and the remote universe
configuration, so the two can be compared directly.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Iterator, Mapping

import yaml

from rbx_configs.config.models import Flag
from rbx_configs.errors import LocalFileError, MalformedConfig

YAML_SUFFIXES = (".yaml", ".yml")


class ConfigStore:
    """Mapping from flag name to :class:`Flag`."""

    def __init__(self, flags: Mapping[str, Flag] | None = None):
        self._flags: dict[str, Flag] = dict(flags or {})

    # -- parsing / serialization ---------------------------------------------

    @classmethod
    def load(cls, data: bytes, fmt: str = "json") -> ConfigStore:
        """Parse a flag file.

        Args:
            data: Raw file contents.
            fmt: ``"json"`` or ``"yaml"``.

        Raises:
            MalformedConfig: if the data does not parse or is not an
                object of ``{"description"?, "value"}`` objects.
        """
        try:
            if fmt == "yaml":
                if not data.strip():
                    return cls()  # An empty YAML document
                parsed = yaml.safe_load(data)
            else:
                parsed = json.loads(data)
        except (ValueError, yaml.YAMLError) as e:
            raise MalformedConfig(f"could not parse {fmt}: {e}") from e

        return cls.from_dict(parsed)

    @classmethod
    def from_dict(cls, parsed) -> ConfigStore:
        if not isinstance(parsed, dict):
            raise MalformedConfig("top level must be an object keyed by flag name")

        flags = {}
        for name, entry in parsed.items():
            if not isinstance(name, str):
                raise MalformedConfig(f"flag name {name!r} is not a string")
            flags[name] = Flag.from_json(name, entry)
        return cls(flags)

    def to_dict(self) -> dict:
        return {name: self._flags[name].to_json() for name in self.names()}

    def to_bytes(self, fmt: str = "json") -> bytes:
        """Serialize with names in lexicographic order."""
        if fmt == "yaml":
            text = yaml.safe_dump(
                self.to_dict(), sort_keys=True, allow_unicode=True, default_flow_style=False
            )
        else:
            text = json.dumps(self.to_dict(), indent=2, sort_keys=True, ensure_ascii=False) + "\n"
        return text.encode("utf-8")

    # -- mapping protocol ----------------------------------------------------

    def get(self, name: str) -> Flag | None:
        return self._flags.get(name)

    def names(self) -> list[str]:
        return sorted(self._flags)

    def __getitem__(self, name: str) -> Flag:
        return self._flags[name]

    def __contains__(self, name: object) -> bool:
        return name in self._flags

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self._flags)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConfigStore):
            return NotImplemented
        return self._flags == other._flags

    def __repr__(self) -> str:
        return f"ConfigStore({len(self)} flags)"


# ---------------------------------------------------------------------------
# Local file helpers
# ---------------------------------------------------------------------------


def file_format(path: str | Path) -> str:
    """Pick the serialization format from the file suffix."""
    return "yaml" if Path(path).suffix.lower() in YAML_SUFFIXES else "json"


def read_local(path: str | Path) -> ConfigStore:
    """Load the local flag file at ``path``."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise LocalFileError(f"Failed to read config file {path}: {e}") from e
    return ConfigStore.load(data, fmt=file_format(path))


def write_local(store: ConfigStore, path: str | Path) -> None:
    """Write ``store`` to ``path``.

    The content is serialized before the file is touched and swapped in
    with a single rename, so the file is either fully replaced or left
    as it was.
    """
    path = Path(path)
    data = store.to_bytes(fmt=file_format(path))

    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.chmod(tmp_name, 0o644)  # mkstemp creates 0600
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise LocalFileError(f"Failed to write config file {path}: {e}") from e

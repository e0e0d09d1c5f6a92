"""Flag data models — immutable flags and their tagged JSON-like values."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from rbx_configs.errors import MalformedConfig


class ValueKind(Enum):
    """The shape of a flag value."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"  # Accepted by the remote service, kept verbatim
    NULL = "null"


@dataclass(frozen=True)
class FlagValue:
    """A JSON-like value tagged with its kind.

    Equality compares the kind as well as the data, so ``true`` never
    equals ``1`` and ``1`` never equals ``1.0``.

    ``data`` holds a plain scalar for scalar kinds, a tuple of
    FlagValues for arrays and a tuple of ``(key, FlagValue)`` pairs
    sorted by key for objects.
    """

    kind: ValueKind
    data: Any = None

    @classmethod
    def from_json(cls, obj: Any, path: str = "value") -> FlagValue:
        """Build a FlagValue from parsed JSON/YAML data.

        Raises:
            MalformedConfig: if ``obj`` (or anything nested in it) is not JSON-like.
        """
        # bool is a subclass of int, so it must be checked first
        if isinstance(obj, bool):
            return cls(ValueKind.BOOLEAN, obj)
        if isinstance(obj, int):
            return cls(ValueKind.INTEGER, obj)
        if isinstance(obj, float):
            if obj != obj or obj in (float("inf"), float("-inf")):
                raise MalformedConfig("non-finite numbers are not allowed", path)
            return cls(ValueKind.FLOAT, obj)
        if isinstance(obj, str):
            return cls(ValueKind.STRING, obj)
        if obj is None:
            return cls(ValueKind.NULL)
        if isinstance(obj, (list, tuple)):
            return cls(
                ValueKind.ARRAY,
                tuple(cls.from_json(item, f"{path}[{i}]") for i, item in enumerate(obj)),
            )
        if isinstance(obj, dict):
            items = []
            for key in sorted(obj, key=str):
                if not isinstance(key, str):
                    raise MalformedConfig(f"object key {key!r} is not a string", path)
                items.append((key, cls.from_json(obj[key], f"{path}.{key}")))
            return cls(ValueKind.OBJECT, tuple(items))

        raise MalformedConfig(f"unsupported value of type {type(obj).__name__}", path)

    def to_json(self) -> Any:
        """Return the value as plain Python data."""
        if self.kind == ValueKind.ARRAY:
            return [item.to_json() for item in self.data]
        if self.kind == ValueKind.OBJECT:
            return {key: item.to_json() for key, item in self.data}
        return self.data


@dataclass(frozen=True)
class Flag:
    """A single flag / experiment entry.

    Flags are compared on description and value together.
    """

    value: FlagValue
    description: str | None = None

    @classmethod
    def from_json(cls, name: str, entry: Any) -> Flag:
        """Parse one ``{"description": ..., "value": ...}`` entry."""
        if not isinstance(entry, dict):
            raise MalformedConfig("flag entry must be an object", name)
        if "value" not in entry:
            raise MalformedConfig("missing required 'value'", name)

        description = entry.get("description")
        if description is not None and not isinstance(description, str):
            raise MalformedConfig("'description' must be a string", f"{name}.description")

        return cls(
            value=FlagValue.from_json(entry["value"], f"{name}.value"),
            description=description,
        )

    @classmethod
    def of(cls, value: Any, description: str | None = None) -> Flag:
        """Shorthand for building a flag from plain Python data."""
        return cls(value=FlagValue.from_json(value), description=description)

    def to_json(self) -> dict:
        data: dict[str, Any] = {}
        if self.description is not None:
            data["description"] = self.description
        data["value"] = self.value.to_json()
        return data

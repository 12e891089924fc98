from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from typing_extensions import Self

from multisource_resolution_engine.internal.util.toml import (
    dump_toml_to_str,
    load_toml_text,
)


def _normalize(value: Any) -> Any:
    """
    Reduce a value to plain JSON/TOML friendly data with a deterministic shape.
    """
    match value:
        case Path():
            return value.as_posix()
        case Enum():
            return value.value
        case Mapping():
            return {str(k): _normalize(value[k]) for k in sorted(value, key=str)}
        case set() | frozenset():
            return sorted(_normalize(v) for v in value)
        case list() | tuple():
            return [_normalize(v) for v in value]
        case datetime() | date():
            return value.isoformat()
        case _:
            return value


def drop_none(value: Any) -> Any:
    # TOML has no null.
    if isinstance(value, Mapping):
        return {k: drop_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [drop_none(v) for v in value if v is not None]
    return value


class MultiformatSerializableMixin:
    __slots__ = ()

    def to_mapping(self, *args: Any, **kwargs: Any) -> Mapping[str, Any]:
        raise NotImplementedError(
            f"{type(self).__name__} must implement to_mapping()"
        )

    def mapping_hash(self) -> str:
        payload = json.dumps(_normalize(self.to_mapping()), sort_keys=True).encode(
            "utf-8"
        )
        return hashlib.new("sha512", payload).hexdigest()

    def to_json(self, *, indent: int | None = 2) -> str:
        return json.dumps(_normalize(self.to_mapping()), indent=indent, sort_keys=True)

    def to_toml(self) -> str:
        return dump_toml_to_str(drop_none(_normalize(self.to_mapping())))

    def serialize(self, fmt: str = "json") -> str:
        match fmt:
            case "json":
                return self.to_json()
            case "toml":
                return self.to_toml()
            case _:
                raise ValueError(f"Unrecognized serialization format: {fmt!r}")


class MultiformatDeserializableMixin:
    __slots__ = ()

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], **_: Any) -> Self:
        raise NotImplementedError(f"{cls.__name__} must implement from_mapping()")

    @classmethod
    def deserialize(cls, text: str, fmt: str) -> Self:
        raw = cls._parse_text(text, fmt)
        return cls.from_mapping(cls._coerce_root_mapping(raw))

    @classmethod
    def from_json(cls, text: str) -> Self:
        return cls.deserialize(text, "json")

    @classmethod
    def from_toml(cls, text: str) -> Self:
        return cls.deserialize(text, "toml")

    @classmethod
    def from_file(cls, path: str | Path, fmt: str | None = None) -> Self:
        path = Path(path)
        text = path.read_text(encoding="utf-8")
        return cls.deserialize(text, fmt or cls._infer_format_from_suffix(path))

    @staticmethod
    def _infer_format_from_suffix(path: Path) -> str:
        match path.suffix.lower():
            case ".json":
                return "json"
            case ".toml":
                return "toml"
            case _:
                raise ValueError(f"Cannot infer format from file suffix: {path.name!r}")

    @staticmethod
    def _parse_text(text: str, fmt: str) -> Any:
        match fmt:
            case "json":
                return json.loads(text)
            case "toml":
                return load_toml_text(text)
            case _:
                raise ValueError(f"Unrecognized serialization format: {fmt!r}")

    @staticmethod
    def _coerce_root_mapping(raw: Any) -> Mapping[str, Any]:
        if isinstance(raw, Mapping):
            return raw
        raise TypeError(f"Expected a mapping at document root, got {type(raw).__name__}")


class MultiformatModelMixin(MultiformatSerializableMixin, MultiformatDeserializableMixin):
    __slots__ = ()

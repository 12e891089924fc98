from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from multisource_resolution_engine.model.resolution import ManifestParseError
from multisource_resolution_engine.model.version import BaseSource, LocalPathSource
from multisource_resolution_engine.registries import SourceClient


@dataclass(frozen=True)
class LocalPathReader(SourceClient[Mapping[str, Any]]):
    """
    Reads ``package.json`` from a directory on disk.

    Relative paths are taken relative to ``base_dir``.
    """

    base_dir: Path = Path(".")
    manifest_filename: str = "package.json"

    def fetch_source(self, name: str, source: BaseSource) -> Mapping[str, Any] | None:
        if not isinstance(source, LocalPathSource):
            raise ValueError(f"local reader needs a local path source, got {source}")

        path = Path(source.path)
        if not path.is_absolute():
            path = self.base_dir / path
        manifest_path = path / self.manifest_filename if path.is_dir() else path
        if not manifest_path.is_file():
            return None

        try:
            return json.loads(manifest_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ManifestParseError(f"invalid JSON in {manifest_path}: {e}") from e

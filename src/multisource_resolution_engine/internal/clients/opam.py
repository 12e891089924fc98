from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from multisource_resolution_engine.model.resolution import (
    RegistryError,
    UnknownPackageError,
)
from multisource_resolution_engine.registries import RegistryClient

OPAM_FILENAME = "opam"


@dataclass(frozen=True)
class OpamRepositoryClient(RegistryClient[str]):
    """
    Reads a local opam-repository checkout.

    Layout: ``packages/<name>/<name>.<version>/opam``. Listing only yields an index of
    version -> opam file path; manifests are read one at a time by ``fetch_version``.
    Names are expected without the ``@opam/`` scope.
    """

    root: Path

    def _package_dir(self, name: str) -> Path:
        return self.root / "packages" / name

    def list_versions(self, name: str) -> list[tuple[str, Path]]:
        if not self.root.is_dir():
            raise RegistryError(f"opam repository not found at {self.root}")

        package_dir = self._package_dir(name)
        if not package_dir.is_dir():
            raise UnknownPackageError(name)

        prefix = f"{name}."
        index: list[tuple[str, Path]] = []
        for entry in sorted(package_dir.iterdir()):
            opam_file = entry / OPAM_FILENAME
            if not entry.name.startswith(prefix) or not opam_file.is_file():
                logging.debug(f"opam: skipping {entry}")
                continue
            index.append((entry.name[len(prefix):], opam_file))
        return index

    def fetch_version(self, name: str, version: str) -> str | None:
        opam_file = self._package_dir(name) / f"{name}.{version}" / OPAM_FILENAME
        if not opam_file.is_file():
            return None
        return opam_file.read_text(encoding="utf-8")

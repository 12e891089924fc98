from __future__ import annotations

import logging

from multisource_resolution_engine.model.version import BaseVersion


class VersionIdentityMap:
    """
    Bidirectional (name, version) <-> solver version id map for one run.

    Ids are allocated per package name starting at 1 (0 is the root sentinel) and are
    only meaningful for equality within that name.
    """

    def __init__(self) -> None:
        self._ids: dict[str, dict[BaseVersion, int]] = {}
        self._versions: dict[str, dict[int, BaseVersion]] = {}

    def id_for(self, name: str, version: BaseVersion) -> int:
        by_version = self._ids.setdefault(name, {})
        solver_id = by_version.get(version)
        if solver_id is None:
            solver_id = len(by_version) + 1
            by_version[version] = solver_id
            self._versions.setdefault(name, {})[solver_id] = version
            logging.debug(f"Allocated solver id {name}#{solver_id} for {version}")
        return solver_id

    def version_for(self, name: str, solver_id: int) -> BaseVersion | None:
        return self._versions.get(name, {}).get(solver_id)

    def ids(self, name: str) -> dict[BaseVersion, int]:
        return dict(self._ids.get(name, {}))

    def __len__(self) -> int:
        return sum(len(v) for v in self._ids.values())

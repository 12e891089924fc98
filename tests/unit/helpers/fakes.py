from __future__ import annotations

import threading
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping

from multisource_resolution_engine.internal.normalizers import (
    NpmManifestNormalizer,
    OpamManifestNormalizer,
)
from multisource_resolution_engine.model.config import ResolverConfig
from multisource_resolution_engine.model.resolution import UnknownPackageError
from multisource_resolution_engine.model.version import (
    BaseSource,
    GithubSource,
    LocalPathSource,
)
from multisource_resolution_engine.registries import RegistryClient, SourceClient
from multisource_resolution_engine.services import ResolutionServices


def npm_manifest(
    name: str, version: str, deps: Mapping[str, str] | None = None
) -> dict[str, Any]:
    return {"name": name, "version": version, "dependencies": dict(deps or {})}


class _Calls:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.counts: Counter[tuple[str, ...]] = Counter()

    def record(self, *key: str) -> None:
        with self._lock:
            self.counts[key] += 1


@dataclass
class FakeNpmClient(RegistryClient[Mapping[str, Any]]):
    """
    In-memory npm registry: ``packuments[name][version] -> manifest``.
    """

    packuments: dict[str, dict[str, Mapping[str, Any]]] = field(default_factory=dict)
    calls: _Calls = field(default_factory=_Calls)
    closed: bool = False

    def publish(
        self, name: str, version: str, deps: Mapping[str, str] | None = None
    ) -> FakeNpmClient:
        self.packuments.setdefault(name, {})[version] = npm_manifest(name, version, deps)
        return self

    def list_versions(self, name: str) -> list[tuple[str, Any]]:
        self.calls.record("list", name)
        if name not in self.packuments:
            raise UnknownPackageError(name)
        return list(self.packuments[name].items())

    def fetch_version(self, name: str, version: str) -> Mapping[str, Any] | None:
        self.calls.record("fetch", name, version)
        return self.packuments.get(name, {}).get(version)

    def close(self) -> None:
        self.closed = True


@dataclass
class FakeOpamClient(RegistryClient[str]):
    """
    In-memory opam repository: ``files[name][version] -> opam file text``.
    """

    files: dict[str, dict[str, str]] = field(default_factory=dict)
    calls: _Calls = field(default_factory=_Calls)

    def publish(self, name: str, version: str, depends: str = "") -> FakeOpamClient:
        text = f'opam-version: "2.0"\ndepends: [\n{depends}\n]\n'
        self.files.setdefault(name, {})[version] = text
        return self

    def list_versions(self, name: str) -> list[tuple[str, Any]]:
        self.calls.record("list", name)
        if name not in self.files:
            raise UnknownPackageError(name)
        return [
            (v, f"packages/{name}/{name}.{v}/opam") for v in sorted(self.files[name])
        ]

    def fetch_version(self, name: str, version: str) -> str | None:
        self.calls.record("fetch", name, version)
        return self.files.get(name, {}).get(version)


@dataclass
class FakeSourceClient(SourceClient[Mapping[str, Any]]):
    """
    Source client keyed by the source's string form (``github:u/r#ref``, ``path:...``).
    """

    manifests: dict[str, Mapping[str, Any]] = field(default_factory=dict)
    calls: _Calls = field(default_factory=_Calls)

    def add(self, source: BaseSource, manifest: Mapping[str, Any]) -> FakeSourceClient:
        self.manifests[str(source)] = manifest
        return self

    def fetch_source(self, name: str, source: BaseSource) -> Mapping[str, Any] | None:
        self.calls.record("fetch", name, str(source))
        if not isinstance(source, (GithubSource, LocalPathSource)):
            raise ValueError(f"unexpected source {source}")
        return self.manifests.get(str(source))


def make_services(
    *,
    npm: FakeNpmClient | None = None,
    opam: FakeOpamClient | None = None,
    github: FakeSourceClient | None = None,
    local: FakeSourceClient | None = None,
) -> ResolutionServices:
    return ResolutionServices(
        npm=npm or FakeNpmClient(),
        opam=opam or FakeOpamClient(),
        github=github or FakeSourceClient(),
        local=local or FakeSourceClient(),
        npm_normalizer=NpmManifestNormalizer(),
        opam_normalizer=OpamManifestNormalizer(),
    )


@dataclass
class FakeServicesFactory:
    """
    Stands in for ``services.open_services``; counts how often it was opened.
    """

    services: ResolutionServices
    opened: int = 0
    closed: int = 0

    @contextmanager
    def __call__(self, config: ResolverConfig) -> Iterator[ResolutionServices]:
        self.opened += 1
        try:
            yield self.services
        finally:
            self.closed += 1

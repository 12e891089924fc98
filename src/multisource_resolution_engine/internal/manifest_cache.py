from __future__ import annotations

import asyncio
import logging

from multisource_resolution_engine.internal.util.memo import AsyncMemo
from multisource_resolution_engine.model.package import Package, PackageKey
from multisource_resolution_engine.model.requirement import opam_registry_name
from multisource_resolution_engine.model.resolution import (
    UnknownPackageError,
    UnsupportedSourceError,
)
from multisource_resolution_engine.model.version import (
    ArchiveSource,
    BaseVersion,
    GithubSource,
    GitSource,
    LocalPathSource,
    NoSource,
    NpmVersion,
    OpamVersion,
    SourceVersion,
)
from multisource_resolution_engine.services import ResolutionServices


class ManifestStore:
    """
    Process-wide, append-only store of normalized manifests.

    Created by the caller (typically once per process), passed into every resolution
    run, and flushed explicitly with ``clear``. Entries are write-once: the first
    manifest materialized for a (name, version) key is the one every later run sees.
    """

    def __init__(self) -> None:
        self._memo: AsyncMemo[PackageKey, Package] = AsyncMemo(label="manifest")

    def __len__(self) -> int:
        return len(self._memo)

    def __contains__(self, key: object) -> bool:
        return key in self._memo

    @property
    def memo(self) -> AsyncMemo[PackageKey, Package]:
        return self._memo

    def clear(self) -> None:
        logging.debug(f"Clearing manifest store ({len(self._memo)} entries)")
        self._memo.clear()


class ManifestCache:
    """
    Memoized ``(name, version) -> Package`` lookup for one resolution run.

    Concurrent callers for the same key share one in-flight fetch. Blocking client
    calls run in worker threads so fetches for different keys overlap.
    """

    def __init__(self, store: ManifestStore, services: ResolutionServices) -> None:
        self._store = store
        self._services = services

    async def fetch_manifest(self, name: str, version: BaseVersion) -> Package:
        return await self._store.memo.get_or_compute(
            (name, version), lambda: self._fetch(name, version)
        )

    def prime(self, package: Package) -> Package:
        """
        Pre-warm the cache with a manifest built elsewhere (a registry listing that
        already carried it). Returns the stored package, which is the earlier one if
        the key was already present.
        """
        return self._store.memo.put_if_absent(package.key, package)

    def peek(self, name: str, version: BaseVersion) -> Package | None:
        return self._store.memo.peek((name, version))

    async def _fetch(self, name: str, version: BaseVersion) -> Package:
        logging.debug(f"Fetching manifest {name}@{version}")
        match version:
            case NpmVersion():
                raw = await asyncio.to_thread(
                    self._services.npm.fetch_version, name, str(version)
                )
                if raw is None:
                    raise UnknownPackageError(name, version)
                return self._services.npm_normalizer.parse(name, raw, version)

            case OpamVersion():
                opam_name = opam_registry_name(name)
                raw = await asyncio.to_thread(
                    self._services.opam.fetch_version, opam_name, str(version)
                )
                if raw is None:
                    raise UnknownPackageError(name, version)
                return self._services.opam_normalizer.parse(opam_name, raw, version)

            case SourceVersion(source=GithubSource(ref=ref) as source) if ref:
                raw = await asyncio.to_thread(
                    self._services.github.fetch_source, name, source
                )
                if raw is None:
                    raise UnknownPackageError(name, version)
                return self._services.npm_normalizer.parse(name, raw, version)

            case SourceVersion(
                source=GithubSource()
                | GitSource()
                | ArchiveSource()
                | NoSource()
                | LocalPathSource()
            ):
                raise UnsupportedSourceError(
                    f"cannot fetch a manifest for {name}@{version}: "
                    f"{version.source.kind.value} sources are not fetchable"
                )

            case _:
                raise UnsupportedSourceError(
                    f"cannot fetch a manifest for {name}@{version}: unknown version kind"
                )

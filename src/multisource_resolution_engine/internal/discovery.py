from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Final

from multisource_resolution_engine.internal.manifest_cache import ManifestCache
from multisource_resolution_engine.internal.util.memo import AsyncMemo
from multisource_resolution_engine.model.package import Package
from multisource_resolution_engine.model.requirement import (
    FormulaKind,
    Requirement,
    VersionFormula,
    opam_registry_name,
)
from multisource_resolution_engine.model.resolution import (
    UnknownPackageError,
    UnsupportedSpecError,
)
from multisource_resolution_engine.model.version import (
    ArchiveSource,
    BaseSource,
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

# Rank of a candidate pinned by a source reference or a forced exact version. Registry
# candidates rank by their ascending position in the registry listing (>= 0).
PINNED_RANK: Final[int] = -1

Listing = list[tuple[BaseVersion, Any]]


@dataclass(frozen=True, slots=True)
class Candidate:
    """
    One discovered version for a requirement.

    ``rank`` is the registry index (higher is fresher) or ``PINNED_RANK``. It is a
    preference hint for the solver, not a solver version id.
    """

    package: Package
    rank: int

    @property
    def is_pinned(self) -> bool:
        return self.rank == PINNED_RANK


def _parse_listing(
    name: str, entries: list[tuple[str, Any]], version_type: type[BaseVersion]
) -> Listing:
    parsed: Listing = []
    for raw_version, payload in entries:
        try:
            parsed.append((version_type(raw_version), payload))
        except ValueError:
            logging.debug(f"Skipping unparseable version {name}@{raw_version!r}")
    parsed.sort(key=lambda item: item[0])
    return parsed


class VersionDiscovery:
    """
    Lists, filters and ranks candidate versions for a requirement, filling the
    manifest cache on the way.

    Registry listings are memoized per name for the lifetime of this object, which
    is one resolution run.
    """

    def __init__(self, cache: ManifestCache, services: ResolutionServices) -> None:
        self._cache = cache
        self._services = services
        self._listings: AsyncMemo[tuple[FormulaKind, str], Listing] = AsyncMemo(
            label="listing"
        )

    # :: FeatureFlow | type=feature_start | name=version_discovery
    async def discover_versions(self, requirement: Requirement) -> list[Candidate]:
        name = requirement.name
        match requirement.spec:
            case VersionFormula(kind=FormulaKind.NPM) as formula:
                candidates = await self._discover_npm(name, formula)
            case VersionFormula(kind=FormulaKind.OPAM) as formula:
                candidates = await self._discover_opam(name, formula)
            case BaseSource() as source:
                candidates = await self._discover_source(requirement, source)
            case SourceVersion(source=source):
                candidates = await self._discover_source(requirement, source)
            case NpmVersion() | OpamVersion() as version:
                package = await self._cache.fetch_manifest(name, version)
                candidates = [Candidate(package, PINNED_RANK)]
            case other:
                raise TypeError(f"unexpected requirement spec: {other!r}")

        logging.debug(
            f"Discovered {len(candidates)} candidate(s) for {requirement}: "
            f"{[str(c.package.version) for c in candidates]}"
        )
        return candidates

    # -------------------------
    # registries
    # -------------------------

    async def _npm_listing(self, name: str) -> Listing:
        async def compute() -> Listing:
            entries = await asyncio.to_thread(self._services.npm.list_versions, name)
            return _parse_listing(name, entries, NpmVersion)

        return await self._listings.get_or_compute((FormulaKind.NPM, name), compute)

    async def _opam_listing(self, name: str) -> Listing:
        async def compute() -> Listing:
            entries = await asyncio.to_thread(
                self._services.opam.list_versions, opam_registry_name(name)
            )
            return _parse_listing(name, entries, OpamVersion)

        return await self._listings.get_or_compute((FormulaKind.OPAM, name), compute)

    async def _discover_npm(self, name: str, formula: VersionFormula) -> list[Candidate]:
        candidates: list[Candidate] = []
        for index, (version, raw) in enumerate(await self._npm_listing(name)):
            if not formula.matches(version):
                continue
            # The packument already carries the manifest; pre-warm the cache with it.
            package = self._cache.peek(name, version)
            if package is None:
                package = self._cache.prime(
                    self._services.npm_normalizer.parse(name, raw, version)
                )
            candidates.append(Candidate(package, index))
        return candidates

    async def _discover_opam(self, name: str, formula: VersionFormula) -> list[Candidate]:
        listing = await self._opam_listing(name)
        matched = [
            (index, version)
            for index, (version, _) in enumerate(listing)
            if formula.matches(version)
        ]
        if not matched:
            # Second pass: accept prereleases (1.0~beta) whose release satisfies the formula.
            matched = [
                (index, version)
                for index, (version, _) in enumerate(listing)
                if formula.matches(version, release_only=True)
            ]
            logging.debug(
                f"opam: no release of {name} matches {formula}; "
                f"{len(matched)} prerelease candidate(s)"
            )

        packages = await asyncio.gather(
            *(self._cache.fetch_manifest(name, version) for _, version in matched)
        )
        return [
            Candidate(package, index)
            for (index, _), package in zip(matched, packages)
        ]

    # -------------------------
    # sources
    # -------------------------

    async def _discover_source(
        self, requirement: Requirement, source: BaseSource
    ) -> list[Candidate]:
        name = requirement.name
        version = SourceVersion(source)
        match source:
            case GithubSource(ref=ref) if ref:
                package = await self._cache.fetch_manifest(name, version)
            case LocalPathSource():
                package = await self._read_local(name, source, version)
            case GithubSource() | GitSource() | ArchiveSource() | NoSource():
                raise UnsupportedSpecError(requirement)
            case other:
                raise TypeError(f"unexpected source: {other!r}")
        return [Candidate(package, PINNED_RANK)]

    async def _read_local(
        self, name: str, source: LocalPathSource, version: SourceVersion
    ) -> Package:
        package = self._cache.peek(name, version)
        if package is not None:
            return package

        raw = await asyncio.to_thread(self._services.local.fetch_source, name, source)
        if raw is None:
            raise UnknownPackageError(name, version)
        return self._cache.prime(self._services.npm_normalizer.parse(name, raw, version))

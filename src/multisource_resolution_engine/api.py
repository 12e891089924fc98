from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import AbstractContextManager
from typing import Any, Mapping

from multisource_resolution_engine.internal.discovery import VersionDiscovery
from multisource_resolution_engine.internal.invoker import map_installed, solve
from multisource_resolution_engine.internal.manifest_cache import (
    ManifestCache,
    ManifestStore,
)
from multisource_resolution_engine.internal.universe import UniverseBuilder
from multisource_resolution_engine.model.config import ResolverConfig
from multisource_resolution_engine.model.resolution import (
    ResolutionParams,
    ResolutionResult,
    UnsatisfiableError,
)
from multisource_resolution_engine.services import ResolutionServices, open_services

ServicesFactory = Callable[[ResolverConfig], AbstractContextManager[ResolutionServices]]


async def resolve_with_services(
    params: ResolutionParams,
    services: ResolutionServices,
    store: ManifestStore,
) -> ResolutionResult:
    """
    Run one resolution against already-open services.

    Discovery fills ``store``; the identity map, seen set and universe live only for
    this call.

    Raises:
        ResolutionError: the first discovery failure (with breadcrumbs naming the
            requirement that triggered it), UnsatisfiableError when the solver finds
            no solution, or MissingPackageError on an internal inconsistency.
    """
    cache = ManifestCache(store, services)
    builder = UniverseBuilder(
        VersionDiscovery(cache, services),
        params.resolutions,
        root_name=params.root_name,
    )
    build = await builder.build(params.requirements)

    installed = await solve(
        params.root_name,
        [build.translate(r) for r in build.root_requirements],
        build.universe,
        strategy=params.strategy,
        timeout_s=params.solver_timeout_s,
    )
    if installed is None:
        raise UnsatisfiableError(
            f"no solution for {params.root_name} "
            f"[{', '.join(str(r) for r in build.root_requirements)}] "
            f"(strategy={params.strategy.value}, timeout={params.solver_timeout_s}s)"
        )

    packages = map_installed(
        installed, root_name=params.root_name, identities=build.identities, cache=cache
    )
    return ResolutionResult(root_name=params.root_name, packages=packages)


class ResolutionEngine:
    """
    Entry point: resolves a package's requirements into a consistent installed set.

    The manifest store outlives single runs; pass the same store to several engines
    (or keep one engine) to reuse manifests already fetched. Registry clients are
    opened per call and closed when it ends.
    """

    def __init__(
        self,
        config: ResolverConfig | None = None,
        store: ManifestStore | None = None,
        *,
        services_factory: ServicesFactory = open_services,
    ) -> None:
        self._config = config or ResolverConfig()
        self._store = store if store is not None else ManifestStore()
        self._services_factory = services_factory

    @property
    def store(self) -> ManifestStore:
        return self._store

    def params_from_manifest(self, manifest: Mapping[str, Any]) -> ResolutionParams:
        """
        Params for a package.json-shaped manifest, with this engine's configured
        strategy and solver timeout.
        """
        return ResolutionParams.from_manifest(
            manifest,
            strategy=self._config.strategy,
            solver_timeout_s=self._config.solver_timeout_s,
        )

    # :: FeatureFlow | type=feature_start | name=full_resolution
    def resolve(self, params: ResolutionParams) -> ResolutionResult:
        return asyncio.run(self.resolve_async(params))

    async def resolve_async(self, params: ResolutionParams) -> ResolutionResult:
        if not params.requirements:
            logging.log(logging.INFO, f"{params.root_name}: nothing to resolve")
            return ResolutionResult(root_name=params.root_name)

        logging.log(
            logging.INFO,
            f"Resolving {params.root_name}: {len(params.requirements)} requirement(s), "
            f"strategy={params.strategy.value}",
        )
        with self._services_factory(self._config) as services:
            result = await resolve_with_services(params, services, self._store)

        logging.log(
            logging.INFO,
            f"Resolved {params.root_name}: {len(result.packages)} package(s)",
        )
        return result

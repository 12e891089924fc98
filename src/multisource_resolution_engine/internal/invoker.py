from __future__ import annotations

import asyncio
import logging
from typing import Final, Iterable, Sequence

from multisource_resolution_engine.internal.discovery import PINNED_RANK
from multisource_resolution_engine.internal.identity import VersionIdentityMap
from multisource_resolution_engine.internal.manifest_cache import ManifestCache
from multisource_resolution_engine.internal.resolvelib import run_solver
from multisource_resolution_engine.internal.resolvelib_types import (
    Preamble,
    Request,
    SolverConstraint,
    SolverPackage,
    Universe,
)
from multisource_resolution_engine.model.package import Package
from multisource_resolution_engine.model.resolution import (
    DEFAULT_SOLVER_TIMEOUT_S,
    MissingPackageError,
    SolverStrategy,
)

# Solver version of the synthetic root record. Real ids start at 1.
ROOT_SOLVER_VERSION: Final[int] = 0
PREAMBLE: Final[Preamble] = Preamble(properties=("rank",))


async def solve(
    root_name: str,
    root_dependencies: Sequence[SolverConstraint],
    universe: Universe,
    *,
    strategy: SolverStrategy = SolverStrategy.INITIAL,
    timeout_s: float = DEFAULT_SOLVER_TIMEOUT_S,
) -> list[SolverPackage] | None:
    """
    Add a synthetic root record depending on ``root_dependencies`` and ask the solver
    to install exactly that record.

    Returns the installed records (the root included), or None when the solver found
    no solution within ``timeout_s``. Nothing is retried.
    """
    universe.add(
        SolverPackage(
            name=root_name,
            version=ROOT_SOLVER_VERSION,
            depends=tuple(root_dependencies),
            properties={"rank": PINNED_RANK},
        )
    )
    request = Request(
        install=(SolverConstraint(root_name, frozenset({ROOT_SOLVER_VERSION})),)
    )
    # The solver is CPU bound; keep the event loop free while it runs.
    return await asyncio.to_thread(
        run_solver, PREAMBLE, universe, request, strategy, timeout_s
    )


def map_installed(
    installed: Iterable[SolverPackage],
    *,
    root_name: str,
    identities: VersionIdentityMap,
    cache: ManifestCache,
) -> tuple[Package, ...]:
    """
    Turn installed solver records back into the cached packages they stand for.
    """
    packages: list[Package] = []
    for record in installed:
        if record.name == root_name and record.version == ROOT_SOLVER_VERSION:
            continue

        version = identities.version_for(record.name, record.version)
        if version is None:
            raise MissingPackageError(
                f"solver installed {record}, which has no known version"
            )

        package = cache.peek(record.name, version)
        if package is None:
            raise MissingPackageError(
                f"solver installed {record.name}@{version}, which was never cached"
            )
        packages.append(package)

    logging.debug(f"Installed set: {[p.identifier for p in packages]}")
    return tuple(packages)

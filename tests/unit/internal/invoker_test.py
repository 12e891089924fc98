from __future__ import annotations

import asyncio

import pytest

# Unit under test
import multisource_resolution_engine.internal.invoker as uut
from multisource_resolution_engine.internal.discovery import PINNED_RANK
from multisource_resolution_engine.internal.identity import VersionIdentityMap
from multisource_resolution_engine.internal.manifest_cache import (
    ManifestCache,
    ManifestStore,
)
from multisource_resolution_engine.internal.resolvelib_types import (
    SolverConstraint,
    SolverPackage,
    Universe,
)
from multisource_resolution_engine.model.package import Package
from multisource_resolution_engine.model.resolution import (
    MissingPackageError,
    SolverStrategy,
)
from multisource_resolution_engine.model.version import NpmVersion
from unit.helpers.fakes import make_services

# ==============================================================================
# BRANCH LEDGER: internal.invoker (C000)
# ==============================================================================
# C000F001B0001: solve: synthetic root added, solution returned
# C000F001B0002: solve: no solution -> None
# C000F002B0001: map_installed: root skipped, records -> cached packages
# C000F002B0002: map_installed: unknown solver id -> MissingPackageError
# C000F002B0003: map_installed: version never cached -> MissingPackageError
# ==============================================================================


def _universe(*packages: SolverPackage) -> Universe:
    universe = Universe()
    for package in packages:
        universe.add(package)
    return universe


def test_solve_adds_root():
    # C000F001B0001
    universe = _universe(
        SolverPackage("a", 1, properties={"rank": 0}),
        SolverPackage("a", 2, properties={"rank": 1}),
    )

    installed = asyncio.run(
        uut.solve(
            "app",
            [SolverConstraint("a", frozenset({1, 2}))],
            universe,
            strategy=SolverStrategy.INITIAL,
        )
    )

    assert sorted(str(p) for p in installed) == ["a#2", "app#0"]
    root = universe.get("app", uut.ROOT_SOLVER_VERSION)
    assert root.depends == (SolverConstraint("a", frozenset({1, 2})),)
    assert root.rank == PINNED_RANK


def test_solve_without_solution():
    # C000F001B0002
    universe = _universe(SolverPackage("a", 1))
    installed = asyncio.run(
        uut.solve("app", [SolverConstraint("a", frozenset())], universe, timeout_s=1.0)
    )
    assert installed is None


@pytest.fixture
def run_state():
    identities = VersionIdentityMap()
    cache = ManifestCache(ManifestStore(), make_services())
    package = cache.prime(Package("a", NpmVersion("1.0.0")))
    identities.id_for("a", NpmVersion("1.0.0"))
    identities.id_for("b", NpmVersion("2.0.0"))
    return identities, cache, package


def test_map_installed(run_state):
    # C000F002B0001
    identities, cache, package = run_state
    installed = [SolverPackage("app", uut.ROOT_SOLVER_VERSION), SolverPackage("a", 1)]

    packages = uut.map_installed(
        installed, root_name="app", identities=identities, cache=cache
    )

    assert packages == (package,)
    assert packages[0] is package


@pytest.mark.parametrize(
    "record, message",
    [
        (SolverPackage("a", 7), "no known version"),  # C000F002B0002
        (SolverPackage("b", 1), "never cached"),  # C000F002B0003
    ],
    ids=["unknown_id", "not_cached"],
)
def test_map_installed_inconsistencies(run_state, record, message):
    identities, cache, _ = run_state
    with pytest.raises(MissingPackageError, match=message):
        uut.map_installed([record], root_name="app", identities=identities, cache=cache)

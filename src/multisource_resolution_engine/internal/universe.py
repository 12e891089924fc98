from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Sequence

from multisource_resolution_engine.internal.discovery import (
    Candidate,
    VersionDiscovery,
)
from multisource_resolution_engine.internal.identity import VersionIdentityMap
from multisource_resolution_engine.internal.resolvelib_types import (
    SolverConstraint,
    SolverPackage,
    Universe,
)
from multisource_resolution_engine.model.package import Package, PackageKey
from multisource_resolution_engine.model.requirement import (
    Requirement,
    Resolutions,
    apply_resolutions,
)
from multisource_resolution_engine.model.resolution import (
    DEFAULT_ROOT_NAME,
    ResolutionError,
    RootNameConflictError,
)


@dataclass(slots=True)
class BuildResult:
    """
    Everything the universe builder produced for one run.

    Attributes:
        universe (Universe): Solver records of every reachable package version.
        identities (VersionIdentityMap): Solver version ids handed out while building.
        seen (set[PackageKey]): (name, version) pairs already expanded.
        root_requirements (tuple[Requirement, ...]): Top-level requirements after
            resolutions were applied.
        candidates (dict[Requirement, tuple[Candidate, ...]]): What discovery returned
            for each distinct requirement; constraint translation reads from here.
    """

    universe: Universe = field(default_factory=Universe)
    identities: VersionIdentityMap = field(default_factory=VersionIdentityMap)
    seen: set[PackageKey] = field(default_factory=set)
    root_requirements: tuple[Requirement, ...] = ()
    candidates: dict[Requirement, tuple[Candidate, ...]] = field(default_factory=dict)
    ranks: dict[PackageKey, int] = field(default_factory=dict)

    def translate(self, requirement: Requirement) -> SolverConstraint:
        """
        The solver constraint for a requirement: the ids of every candidate discovery
        found for it. A pinned requirement has a single candidate, so this is an
        equality constraint; an unsatisfiable formula yields an empty set.
        """
        found = self.candidates.get(requirement)
        if found is None:
            raise KeyError(f"requirement {requirement} was never discovered")
        return SolverConstraint(
            name=requirement.name,
            versions=frozenset(
                self.identities.id_for(c.package.name, c.package.version) for c in found
            ),
        )


@dataclass(slots=True)
class _Frame:
    package: Package | None
    requirements: tuple[Requirement, ...]
    parent: _Frame | None = None
    expanded: bool = False


class UniverseBuilder:
    """
    Walks the dependency graph from the root requirements and registers every
    reachable package version in a solver universe exactly once.

    The walk is an explicit depth-first worklist. A package is marked seen when it
    is first discovered, its dependencies are expanded next, and it is registered
    after all of them (dependencies before dependents). Discovery for the
    requirements of one package runs concurrently; seen-set updates and
    registration happen afterwards, one at a time.

    Any discovery failure aborts the build.
    """

    def __init__(
        self,
        discovery: VersionDiscovery,
        resolutions: Resolutions | None = None,
        *,
        root_name: str = DEFAULT_ROOT_NAME,
    ) -> None:
        self._discovery = discovery
        self._resolutions: Resolutions = resolutions or {}
        self._root_name = root_name

    def _rewrite(self, requirements: Sequence[Requirement]) -> tuple[Requirement, ...]:
        return tuple(apply_resolutions(r, self._resolutions) for r in requirements)

    # :: FeatureFlow | type=feature_start | name=universe_build
    async def build(self, root_requirements: Sequence[Requirement]) -> BuildResult:
        result = BuildResult(root_requirements=self._rewrite(root_requirements))
        stack: list[_Frame] = [
            _Frame(package=None, requirements=result.root_requirements)
        ]

        while stack:
            frame = stack[-1]
            if not frame.expanded:
                frame.expanded = True
                children = await self._expand(frame, result)
                for package in reversed(children):
                    stack.append(
                        _Frame(
                            package=package,
                            requirements=self._rewrite(package.dependencies),
                            parent=frame,
                        )
                    )
                continue

            stack.pop()
            if frame.package is not None:
                self._register(frame.package, result)

        logging.debug(
            f"Universe built: {len(result.universe)} record(s), "
            f"{len(result.candidates)} distinct requirement(s)"
        )
        return result

    async def _expand(self, frame: _Frame, result: BuildResult) -> list[Package]:
        pending = list(
            dict.fromkeys(r for r in frame.requirements if r not in result.candidates)
        )
        tasks = [
            asyncio.ensure_future(self._discover(r, frame)) for r in pending
        ]
        try:
            found = await asyncio.gather(*tasks)
        except BaseException as e:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if isinstance(e, ResolutionError):
                ancestor = frame.parent
                while ancestor is not None and ancestor.package is not None:
                    e.add_breadcrumb(f"required by {ancestor.package}")
                    ancestor = ancestor.parent
            raise

        for requirement, candidates in zip(pending, found):
            result.candidates[requirement] = tuple(candidates)

        children: list[Package] = []
        for requirement in frame.requirements:
            for candidate in result.candidates[requirement]:
                key = candidate.package.key
                if key in result.seen:
                    continue
                result.seen.add(key)
                result.ranks[key] = candidate.rank
                children.append(candidate.package)
        return children

    async def _discover(self, requirement: Requirement, frame: _Frame) -> list[Candidate]:
        try:
            if requirement.name == self._root_name:
                raise RootNameConflictError(requirement)
            return await self._discovery.discover_versions(requirement)
        except ResolutionError as e:
            parent = frame.package.identifier if frame.package else self._root_name
            e.add_breadcrumb(f"while resolving {requirement} required by {parent}")
            raise

    def _register(self, package: Package, result: BuildResult) -> None:
        solver_id = result.identities.id_for(package.name, package.version)
        depends = tuple(
            result.translate(r) for r in self._rewrite(package.dependencies)
        )
        result.universe.add(
            SolverPackage(
                name=package.name,
                version=solver_id,
                depends=depends,
                properties={"rank": result.ranks.get(package.key, 0)},
            )
        )

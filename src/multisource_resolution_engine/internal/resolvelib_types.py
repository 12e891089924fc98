from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Collection, Mapping, Protocol

from resolvelib import BaseReporter
from resolvelib.structs import RequirementInformation, State

if TYPE_CHECKING:
    from resolvelib.structs import Criterion


class Preference(Protocol):
    def __lt__(self, __other: Any) -> bool: ...


@dataclass(frozen=True, slots=True)
class SolverConstraint:
    """
    Solver-side requirement: package ``name`` at one of the integer ``versions``.
    """

    name: str
    versions: frozenset[int]

    def accepts(self, version: int) -> bool:
        return version in self.versions

    def __str__(self) -> str:
        return f"{self.name}{{{','.join(str(v) for v in sorted(self.versions))}}}"


@dataclass(frozen=True, slots=True)
class SolverPackage:
    """
    Solver-side record of one package version.

    ``properties`` carries the values declared in the preamble (``rank``); they are
    preference hints only and take no part in equality.
    """

    name: str
    version: int
    depends: tuple[SolverConstraint, ...] = ()
    properties: Mapping[str, int] = field(default_factory=dict, compare=False)

    @property
    def rank(self) -> int:
        return self.properties.get("rank", 0)

    def __str__(self) -> str:
        return f"{self.name}#{self.version}"


@dataclass(frozen=True, slots=True)
class Preamble:
    """
    Names of the properties every solver record may carry.
    """

    properties: tuple[str, ...] = ("rank",)

    def check(self, package: SolverPackage) -> None:
        unknown = set(package.properties) - set(self.properties)
        if unknown:
            raise ValueError(
                f"{package} carries undeclared properties: {sorted(unknown)}"
            )


@dataclass(frozen=True, slots=True)
class Request:
    install: tuple[SolverConstraint, ...]


class Universe:
    """
    Every solver record visible to one solve, by name and integer version.
    """

    def __init__(self) -> None:
        self._packages: dict[str, dict[int, SolverPackage]] = {}

    def add(self, package: SolverPackage) -> None:
        by_version = self._packages.setdefault(package.name, {})
        if package.version in by_version:
            raise ValueError(f"{package} is already registered in the universe")
        by_version[package.version] = package
        logging.debug(
            f"Registered {package} depends=[{', '.join(str(d) for d in package.depends)}]"
        )

    def get(self, name: str, version: int) -> SolverPackage | None:
        return self._packages.get(name, {}).get(version)

    def packages(self, name: str) -> list[SolverPackage]:
        return list(self._packages.get(name, {}).values())

    def names(self) -> list[str]:
        return list(self._packages)

    def constraints_on(self, name: str) -> list[SolverConstraint]:
        return [
            dep
            for package in self
            for dep in package.depends
            if dep.name == name
        ]

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        name, version = key
        return version in self._packages.get(name, {})

    def __iter__(self) -> Iterator[SolverPackage]:
        for by_version in self._packages.values():
            yield from by_version.values()

    def __len__(self) -> int:
        return sum(len(v) for v in self._packages.values())


class SolverTimeoutError(Exception):
    def __init__(self, rounds: int, timeout_s: float) -> None:
        super().__init__(f"solver gave up after {rounds} round(s) ({timeout_s}s)")
        self.rounds = rounds
        self.timeout_s = timeout_s


class MultisourceResolutionReporter(
    BaseReporter[SolverConstraint, SolverPackage, str]
):
    def __init__(self, *, timeout_s: float | None = None) -> None:
        self._timeout_s = timeout_s
        self._deadline = (
            None if timeout_s is None else time.monotonic() + timeout_s
        )

    def starting(self) -> None:
        logging.log(logging.DEBUG, "Starting solver...")

    def starting_round(self, index: int) -> None:
        logging.log(logging.DEBUG, f"Starting round {index}")
        if self._deadline is not None and time.monotonic() > self._deadline:
            raise SolverTimeoutError(index, self._timeout_s or 0.0)

    def ending_round(
        self, index: int, state: State[SolverConstraint, SolverPackage, str]
    ) -> None:
        logging.log(logging.DEBUG, f"Ending round {index}")

    def ending(self, state) -> None:
        logging.log(logging.DEBUG, "Solver finished.")

    def adding_requirement(self, requirement, parent) -> None:
        logging.log(logging.DEBUG, f"Adding requirement: {requirement} (parent={parent})")

    def pinning(self, candidate) -> None:
        logging.log(logging.DEBUG, f"Pinning candidate: {candidate}")

    def rejecting_candidate(
            self,
            criterion: Criterion[SolverConstraint, SolverPackage],
            candidate: SolverPackage) -> None:
        logging.log(logging.DEBUG, f"Rejecting candidate: {candidate}")

    def resolving_conflicts(
            self,
            causes: Collection[RequirementInformation[SolverConstraint, SolverPackage]]) -> None:
        logging.log(logging.DEBUG, f"Resolving conflicts: {[str(c.requirement) for c in causes]}")

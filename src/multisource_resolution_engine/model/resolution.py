from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence

from typing_extensions import Self

from multisource_resolution_engine.internal.util.multiformat import (
    MultiformatModelMixin,
)
from multisource_resolution_engine.model.package import Package
from multisource_resolution_engine.model.requirement import (
    Requirement,
    Resolutions,
    parse_requirement,
    parse_resolutions,
)

DEFAULT_SOLVER_TIMEOUT_S = 5.0
# Not a valid npm or opam package name.
DEFAULT_ROOT_NAME = "<root>"


class SolverStrategy(str, Enum):
    """
    Named preference policy handed to the solver.

    INITIAL: prefer versions that are not outdated.
    GREATEST_OVERLAP: prefer the least disruptive choice (the version most of the
        universe agrees on), then versions that are not outdated.
    """

    INITIAL = "initial"
    GREATEST_OVERLAP = "greatestOverlap"


@dataclass(kw_only=True, frozen=True, slots=True)
class ResolutionParams:
    """
    Input of one resolution run.

    Attributes:
        root_name (str): Name of the package being resolved; used for the synthetic
            root record handed to the solver. No requirement in the graph may use
            the same name.
        requirements (Sequence[Requirement]): Top-level requirements.
        resolutions (Resolutions): Forced exact versions by package name. They apply
            to every requirement on that name anywhere in the graph.
        strategy (SolverStrategy): Solver preference policy.
        solver_timeout_s (float): Upper bound for the solver call.
    """

    root_name: str
    requirements: Sequence[Requirement] = field(default=())
    resolutions: Resolutions = field(default_factory=dict)
    strategy: SolverStrategy = SolverStrategy.INITIAL
    solver_timeout_s: float = DEFAULT_SOLVER_TIMEOUT_S

    @classmethod
    def from_manifest(
        cls,
        manifest: Mapping[str, Any],
        *,
        strategy: SolverStrategy = SolverStrategy.INITIAL,
        solver_timeout_s: float = DEFAULT_SOLVER_TIMEOUT_S,
    ) -> Self:
        """
        Build params from a package.json-shaped mapping (``name``, ``dependencies``,
        ``resolutions``).
        """
        deps: Mapping[str, str] = manifest.get("dependencies", {})
        return cls(
            root_name=manifest.get("name", DEFAULT_ROOT_NAME),
            requirements=tuple(parse_requirement(n, s) for n, s in deps.items()),
            resolutions=parse_resolutions(manifest.get("resolutions", {})),
            strategy=strategy,
            solver_timeout_s=solver_timeout_s,
        )


@dataclass(frozen=True, slots=True)
class ResolutionResult(MultiformatModelMixin):
    root_name: str
    packages: tuple[Package, ...] = field(default=())

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.packages, key=lambda p: (p.name, str(p.version))))
        object.__setattr__(self, "packages", ordered)

    def by_name(self) -> dict[str, Package]:
        return {p.name: p for p in self.packages}

    def to_mapping(self, *args, **kwargs) -> dict[str, Any]:
        return {
            "root": self.root_name,
            "packages": [p.to_mapping() for p in self.packages],
        }

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], **_: Any) -> Self:
        return cls(
            root_name=mapping["root"],
            packages=tuple(Package.from_mapping(p) for p in mapping.get("packages", ())),
        )


class ResolutionError(Exception):
    """
    Base error type for resolution failures.

    ``breadcrumbs`` are added while the error unwinds through the traversal, innermost
    first, so the message names the requirement that failed and what pulled it in.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.breadcrumbs: list[str] = []

    def add_breadcrumb(self, crumb: str) -> Self:
        self.breadcrumbs.append(crumb)
        return self

    def __str__(self) -> str:
        if not self.breadcrumbs:
            return self.message
        trail = "\n".join(f"  {c}" for c in self.breadcrumbs)
        return f"{self.message}\n{trail}"


class UnsupportedSpecError(ResolutionError):
    """
    A requirement names a source kind that cannot be resolved (git URL, archive URL,
    GitHub reference without a ref, no-source).
    """

    def __init__(self, requirement: Requirement) -> None:
        super().__init__(f"unsupported dependency spec: {requirement}")
        self.requirement = requirement


class UnsupportedSourceError(ResolutionError):
    """
    A manifest was requested for a version whose source kind cannot be fetched.
    """


class UnknownPackageError(ResolutionError):
    def __init__(self, name: str, version: object | None = None) -> None:
        what = name if version is None else f"{name}@{version}"
        super().__init__(f"unknown package: {what}")
        self.name = name
        self.version = version


class ManifestParseError(ResolutionError):
    """
    A raw manifest could not be normalized into a Package.
    """


class RegistryError(ResolutionError):
    """
    A registry could not be reached or answered with an unexpected failure.
    """


class UnsatisfiableError(ResolutionError):
    """
    The solver found no solution (or ran out of time; the two are not distinguished).
    """


class MissingPackageError(ResolutionError):
    """
    The solver installed a version the run never materialized a manifest for.
    """


class RootNameConflictError(ResolutionError):
    """
    A requirement names the package being resolved. The synthetic root record owns
    that name in the solver, so such a graph cannot be expressed.
    """

    def __init__(self, requirement: Requirement) -> None:
        super().__init__(
            f"requirement {requirement} has the same name as the root package"
        )
        self.requirement = requirement

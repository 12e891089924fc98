from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any, Mapping, Union

import semantic_version
from typing_extensions import Self

from multisource_resolution_engine.internal.util.multiformat import (
    MultiformatModelMixin,
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

OPAM_SCOPE = "@opam/"

_ANY_VERSION_TOKENS = frozenset({"", "*", "x", "X", "latest"})
_GITHUB_SHORTHAND = re.compile(
    r"^(?:github:)?(?P<user>[A-Za-z0-9_.-]+)/(?P<repo>[A-Za-z0-9_.-]+?)(?:\.git)?"
    r"(?:#(?P<ref>.+))?$"
)
# NpmSpec wants the comparator glued to its version: ">= 1.0.0" -> ">=1.0.0".
_COMPARATOR_GAP = re.compile(r"(>=|<=|>|<|=|~|\^)\s+(?=[0-9vxX*])")
_NPM_ALIAS_PREFIX = "npm:"


def opam_registry_name(name: str) -> str:
    """
    The opam repository knows packages without the ``@opam/`` scope.
    """
    return name[len(OPAM_SCOPE):] if name.startswith(OPAM_SCOPE) else name


def opam_package_name(name: str) -> str:
    return name if name.startswith(OPAM_SCOPE) else f"{OPAM_SCOPE}{name}"


def is_opam_name(name: str) -> bool:
    return name.startswith(OPAM_SCOPE)


@lru_cache(maxsize=4096)
def _npm_spec(text: str) -> semantic_version.NpmSpec:
    return semantic_version.NpmSpec(text)


def _normalize_disjunct(text: str) -> str:
    stripped = " ".join(text.split())
    if stripped in _ANY_VERSION_TOKENS:
        return "*"
    return _COMPARATOR_GAP.sub(r"\1", stripped)


class FormulaKind(Enum):
    NPM = "npm"
    OPAM = "opam"


@dataclass(frozen=True, slots=True)
class VersionFormula(MultiformatModelMixin):
    """
    A version formula in disjunctive normal form.

    Each entry of ``disjuncts`` is one conjunction of comparators written in npm range
    syntax (``>=1.2.0 <2.0.0``, ``^1.2``, ``~0.4.1``); the formula holds when any of
    them holds. ``kind`` records which registry's versions the formula ranges over.
    """

    kind: FormulaKind
    disjuncts: tuple[str, ...]

    def __post_init__(self) -> None:
        normalized = tuple(_normalize_disjunct(d) for d in self.disjuncts)
        if not normalized:
            normalized = ("*",)
        for d in normalized:
            _npm_spec(d)  # ValueError on a malformed comparator set
        object.__setattr__(self, "disjuncts", normalized)

    @classmethod
    def parse(cls, text: str, kind: FormulaKind = FormulaKind.NPM) -> Self:
        return cls(kind=kind, disjuncts=tuple(text.split("||")))

    @classmethod
    def any_version(cls, kind: FormulaKind = FormulaKind.NPM) -> Self:
        return cls(kind=kind, disjuncts=("*",))

    def _applies_to(self, version: BaseVersion) -> bool:
        match self.kind:
            case FormulaKind.NPM:
                return isinstance(version, NpmVersion)
            case FormulaKind.OPAM:
                return isinstance(version, OpamVersion)

    def matches(self, version: BaseVersion, *, release_only: bool = False) -> bool:
        """
        True when ``version`` satisfies any disjunct.

        With ``release_only`` the version's prerelease and build parts are ignored, so
        ``1.2.0-beta`` is judged as ``1.2.0``.
        """
        if not self._applies_to(version):
            return False
        semver = version.semver
        if release_only:
            semver = semver.truncate()
        return any(_npm_spec(d).match(semver) for d in self.disjuncts)

    def __str__(self) -> str:
        return " || ".join(self.disjuncts)

    def to_mapping(self, *args, **kwargs) -> dict[str, Any]:
        return {"kind": self.kind.value, "disjuncts": list(self.disjuncts)}

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], **_: Any) -> Self:
        return cls(
            kind=FormulaKind(mapping["kind"]), disjuncts=tuple(mapping["disjuncts"])
        )


VersionSpec = Union[VersionFormula, BaseSource, BaseVersion]


@dataclass(frozen=True, slots=True)
class Requirement(MultiformatModelMixin):
    """
    A named request for a package version.

    ``spec`` is either a version formula over a registry, a source reference, or an
    exact version (what a resolutions override turns a requirement into).
    """

    name: str
    spec: VersionSpec

    def __str__(self) -> str:
        return f"{self.name}@{self.spec}"

    def to_mapping(self, *args, **kwargs) -> dict[str, Any]:
        match self.spec:
            case VersionFormula():
                spec_type = "formula"
            case BaseSource():
                spec_type = "source"
            case _:
                spec_type = "version"
        return {
            "name": self.name,
            "spec_type": spec_type,
            "spec": self.spec.to_mapping(),
        }

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], **_: Any) -> Self:
        spec_mapping = mapping["spec"]
        spec: VersionSpec
        match mapping["spec_type"]:
            case "formula":
                spec = VersionFormula.from_mapping(spec_mapping)
            case "source":
                spec = BaseSource.from_mapping(spec_mapping)
            case "version":
                spec = BaseVersion.from_mapping(spec_mapping)
            case other:
                raise ValueError(f"Unknown requirement spec type: {other!r}")
        return cls(name=mapping["name"], spec=spec)


Resolutions = Mapping[str, BaseVersion]


def parse_source(value: str) -> BaseSource | None:
    """
    Recognize a source reference in a manifest dependency value.

    Returns None when the value is not a source reference (so it is a version range).
    """
    text = value.strip()
    if text.startswith("no-source:"):
        return NoSource()
    if text.startswith(("file:", "link:")):
        return LocalPathSource(path=text.split(":", 1)[1])
    if text.startswith(("./", "../", "/")):
        return LocalPathSource(path=text)
    if text.startswith(("git+", "git://", "git@")) or (
        "://" in text and text.split("#", 1)[0].endswith(".git")
    ):
        url, _, ref = text.partition("#")
        return GitSource(url=url, ref=ref or None)
    if text.startswith(("http://", "https://")):
        return ArchiveSource(url=text)

    m = _GITHUB_SHORTHAND.match(text)
    if m is not None:
        return GithubSource(user=m["user"], repo=m["repo"], ref=m["ref"] or None)
    return None


def parse_npm_alias(text: str) -> tuple[str, str] | None:
    """
    Split an npm alias (``npm:bar@^1.0.0``, ``npm:@scope/bar``) into the target
    package name and its range. Returns None when ``text`` is not an alias.
    """
    stripped = text.strip()
    if not stripped.startswith(_NPM_ALIAS_PREFIX):
        return None
    target = stripped[len(_NPM_ALIAS_PREFIX):]
    # the first character may be the "@" of a scope
    at = target.find("@", 1)
    if at == -1:
        name, formula = target, "*"
    else:
        name, formula = target[:at], target[at + 1:]
    if not name:
        raise ValueError(f"npm alias without a package name: {text!r}")
    return name, formula


def parse_requirement(name: str, text: str) -> Requirement:
    """
    Classify one manifest dependency value.

    An npm alias resolves the target package, so ``"foo": "npm:bar@^1.0.0"`` becomes
    a requirement on ``bar``.
    """
    alias = parse_npm_alias(text)
    if alias is not None:
        target, formula = alias
        return Requirement(name=target, spec=VersionFormula.parse(formula))

    source = parse_source(text)
    if source is not None:
        return Requirement(name=name, spec=source)

    kind = FormulaKind.OPAM if is_opam_name(name) else FormulaKind.NPM
    return Requirement(name=name, spec=VersionFormula.parse(text, kind))


def parse_resolution_version(name: str, text: str) -> BaseVersion:
    """
    Turn a resolutions entry (``"react": "16.0.0"``) into the forced exact version.
    """
    source = parse_source(text)
    if source is not None:
        return SourceVersion(source)
    if is_opam_name(name):
        return OpamVersion(text)
    return NpmVersion(text)


def parse_resolutions(raw: Mapping[str, str]) -> dict[str, BaseVersion]:
    return {name: parse_resolution_version(name, text) for name, text in raw.items()}


def apply_resolutions(requirement: Requirement, resolutions: Resolutions) -> Requirement:
    forced = resolutions.get(requirement.name)
    if forced is None:
        return requirement
    return Requirement(name=requirement.name, spec=forced)

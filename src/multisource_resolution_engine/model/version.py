from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from functools import total_ordering
from typing import Any, Mapping

import semantic_version

from multisource_resolution_engine.internal.util.multiformat import (
    MultiformatModelMixin,
)

_OPAM_LEADING_V = re.compile(r"^[vV](?=\d)")


class VersionKind(Enum):
    NPM = "npm"
    OPAM = "opam"
    SOURCE = "source"


class SourceKind(Enum):
    GITHUB = "github"
    GIT = "git"
    LOCAL_PATH = "local_path"
    ARCHIVE = "archive"
    NO_SOURCE = "no_source"


def coerce_opam_semver(raw: str) -> semantic_version.Version:
    """
    Best-effort semver view of an opam version string.

    opam uses ``~`` to sort before the release (``1.0~beta`` < ``1.0``), which is what
    a semver prerelease does, so it maps onto ``-``. A leading ``v`` is dropped.
    """
    text = _OPAM_LEADING_V.sub("", raw.strip()).replace("~", "-")
    return semantic_version.Version.coerce(text)


# --------------------------------------------------------------------------- #
# sources
# --------------------------------------------------------------------------- #


@dataclass(frozen=True, slots=True)
class BaseSource(ABC, MultiformatModelMixin):
    kind: SourceKind

    @property
    def is_pinned(self) -> bool:
        return False

    # :: MechanicalOperation | type=deserialization
    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], **_: Any) -> BaseSource:
        kind_mapping = mapping.get("kind", "no_source")
        kind = SourceKind(kind_mapping)
        match kind:
            case SourceKind.GITHUB:
                return GithubSource(
                    user=mapping["user"], repo=mapping["repo"], ref=mapping.get("ref")
                )
            case SourceKind.GIT:
                return GitSource(url=mapping["url"], ref=mapping.get("ref"))
            case SourceKind.LOCAL_PATH:
                return LocalPathSource(path=mapping["path"])
            case SourceKind.ARCHIVE:
                return ArchiveSource(url=mapping["url"])
            case SourceKind.NO_SOURCE:
                return NoSource()


@dataclass(frozen=True, slots=True)
class GithubSource(BaseSource):
    user: str
    repo: str
    ref: str | None = None
    kind: SourceKind = field(default=SourceKind.GITHUB, init=False)

    @property
    def is_pinned(self) -> bool:
        return bool(self.ref)

    def __str__(self) -> str:
        base = f"github:{self.user}/{self.repo}"
        return f"{base}#{self.ref}" if self.ref else base

    def to_mapping(self, *args, **kwargs) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "user": self.user,
            "repo": self.repo,
            "ref": self.ref,
        }


@dataclass(frozen=True, slots=True)
class GitSource(BaseSource):
    url: str
    ref: str | None = None
    kind: SourceKind = field(default=SourceKind.GIT, init=False)

    def __str__(self) -> str:
        return f"{self.url}#{self.ref}" if self.ref else self.url

    def to_mapping(self, *args, **kwargs) -> dict[str, Any]:
        return {"kind": self.kind.value, "url": self.url, "ref": self.ref}


@dataclass(frozen=True, slots=True)
class LocalPathSource(BaseSource):
    path: str
    kind: SourceKind = field(default=SourceKind.LOCAL_PATH, init=False)

    @property
    def is_pinned(self) -> bool:
        return True

    def __str__(self) -> str:
        return f"path:{self.path}"

    def to_mapping(self, *args, **kwargs) -> dict[str, Any]:
        return {"kind": self.kind.value, "path": self.path}


@dataclass(frozen=True, slots=True)
class ArchiveSource(BaseSource):
    url: str
    kind: SourceKind = field(default=SourceKind.ARCHIVE, init=False)

    def __str__(self) -> str:
        return f"archive:{self.url}"

    def to_mapping(self, *args, **kwargs) -> dict[str, Any]:
        return {"kind": self.kind.value, "url": self.url}


@dataclass(frozen=True, slots=True)
class NoSource(BaseSource):
    kind: SourceKind = field(default=SourceKind.NO_SOURCE, init=False)

    def __str__(self) -> str:
        return "no-source:"

    def to_mapping(self, *args, **kwargs) -> dict[str, Any]:
        return {"kind": self.kind.value}


# --------------------------------------------------------------------------- #
# versions
# --------------------------------------------------------------------------- #


@dataclass(frozen=True, slots=True)
class BaseVersion(ABC, MultiformatModelMixin):
    """
    A concrete version of a package, tagged by where it comes from.

    Versions only order against versions of the same kind; registry semver has no
    meaning next to a git ref or a local path.
    """

    kind: VersionKind

    @abstractmethod
    def __str__(self) -> str: ...

    def _check_comparable(self, other: object) -> None:
        if not isinstance(other, BaseVersion) or other.kind is not self.kind:
            raise TypeError(
                f"cannot order {type(self).__name__} against {type(other).__name__}"
            )

    # :: MechanicalOperation | type=deserialization
    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], **_: Any) -> BaseVersion:
        kind_mapping = mapping.get("kind")
        match VersionKind(kind_mapping):
            case VersionKind.NPM:
                return NpmVersion(mapping["version"])
            case VersionKind.OPAM:
                return OpamVersion(mapping["version"])
            case VersionKind.SOURCE:
                return SourceVersion(BaseSource.from_mapping(mapping["source"]))


@total_ordering
@dataclass(frozen=True, slots=True)
class NpmVersion(BaseVersion):
    raw: str
    kind: VersionKind = field(default=VersionKind.NPM, init=False)

    def __post_init__(self) -> None:
        # Raises ValueError for anything that is not strict semver.
        object.__setattr__(self, "raw", str(semantic_version.Version(self.raw.strip())))

    @property
    def semver(self) -> semantic_version.Version:
        return semantic_version.Version(self.raw)

    def __lt__(self, other: NpmVersion) -> bool:
        self._check_comparable(other)
        return self.semver < other.semver

    def __str__(self) -> str:
        return self.raw

    def to_mapping(self, *args, **kwargs) -> dict[str, Any]:
        return {"kind": self.kind.value, "version": self.raw}


@total_ordering
@dataclass(frozen=True, slots=True)
class OpamVersion(BaseVersion):
    raw: str
    kind: VersionKind = field(default=VersionKind.OPAM, init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "raw", self.raw.strip())
        coerce_opam_semver(self.raw)

    @property
    def semver(self) -> semantic_version.Version:
        return coerce_opam_semver(self.raw)

    def __lt__(self, other: OpamVersion) -> bool:
        self._check_comparable(other)
        return (self.semver, self.raw) < (other.semver, other.raw)

    def __str__(self) -> str:
        return self.raw

    def to_mapping(self, *args, **kwargs) -> dict[str, Any]:
        return {"kind": self.kind.value, "version": self.raw}


@dataclass(frozen=True, slots=True)
class SourceVersion(BaseVersion):
    source: BaseSource
    kind: VersionKind = field(default=VersionKind.SOURCE, init=False)

    def __str__(self) -> str:
        return str(self.source)

    def to_mapping(self, *args, **kwargs) -> dict[str, Any]:
        return {"kind": self.kind.value, "source": self.source.to_mapping()}

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from typing_extensions import Self

from multisource_resolution_engine.internal.util.multiformat import (
    MultiformatModelMixin,
)
from multisource_resolution_engine.model.requirement import Requirement
from multisource_resolution_engine.model.version import BaseVersion

PackageKey = tuple[str, BaseVersion]


@dataclass(frozen=True, slots=True)
class Package(MultiformatModelMixin):
    """
    A normalized package manifest: one version of one package and what it requires.

    Instances are immutable. Once a manifest cache has materialized a package for a
    (name, version) key, that object is the one every consumer of the run sees.
    """

    name: str
    version: BaseVersion
    dependencies: tuple[Requirement, ...] = field(default=(), compare=False)

    @property
    def key(self) -> PackageKey:
        return self.name, self.version

    @property
    def identifier(self) -> str:
        return f"{self.name}@{self.version}"

    def __str__(self) -> str:
        return self.identifier

    def to_mapping(self, *args, **kwargs) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version.to_mapping(),
            "dependencies": [d.to_mapping() for d in self.dependencies],
        }

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], **_: Any) -> Self:
        return cls(
            name=mapping["name"],
            version=BaseVersion.from_mapping(mapping["version"]),
            dependencies=tuple(
                Requirement.from_mapping(d) for d in mapping.get("dependencies", ())
            ),
        )

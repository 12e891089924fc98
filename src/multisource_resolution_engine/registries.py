from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from multisource_resolution_engine.model.package import Package
from multisource_resolution_engine.model.version import BaseSource, BaseVersion

RawManifest = TypeVar("RawManifest")


class RegistryClient(Generic[RawManifest], ABC):
    """
    Transport for one registry kind.

    ``list_versions`` returns every published version with whatever the registry hands
    back for it: a full raw manifest (npm) or a locator for one (the opam index).
    """

    @abstractmethod
    def list_versions(self, name: str) -> list[tuple[str, Any]]:
        """
        Raise:
          - UnknownPackageError when the registry has no entry for ``name``
          - RegistryError for transport failures
        """
        ...

    @abstractmethod
    def fetch_version(self, name: str, version: str) -> RawManifest | None:
        """
        Return the raw manifest of one version, or None when it does not exist.
        """
        ...

    def close(self) -> None:
        """
        Cleanup hook for clients holding resources (sessions, file handles).

        The default implementation is a no-op.
        """
        return None


class SourceClient(Generic[RawManifest], ABC):
    @abstractmethod
    def fetch_source(self, name: str, source: BaseSource) -> RawManifest | None: ...

    def close(self) -> None:
        return None


class ManifestNormalizer(Generic[RawManifest], ABC):
    @abstractmethod
    def parse(self, name: str, raw: RawManifest, version: BaseVersion) -> Package:
        """
        Turn a raw registry payload into a Package.

        Raise:
          - ManifestParseError when the payload cannot be normalized
        """
        ...

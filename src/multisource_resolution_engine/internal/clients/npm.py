from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping
from urllib.parse import quote

import requests

from multisource_resolution_engine.internal.clients.http import get_json_or_none
from multisource_resolution_engine.model.config import (
    DEFAULT_NPM_REGISTRY_URL,
    DEFAULT_USER_AGENT,
)
from multisource_resolution_engine.model.resolution import (
    RegistryError,
    UnknownPackageError,
)
from multisource_resolution_engine.registries import RegistryClient


def _package_path(name: str) -> str:
    # Scoped names keep the "@" but encode the "/": @scope%2Fpkg
    return quote(name, safe="@")


@dataclass(frozen=True)
class NpmRegistryClient(RegistryClient[Mapping[str, Any]]):
    """
    npm registry client.

    The packument already carries a full manifest per version, so ``list_versions``
    returns (version, manifest) pairs and discovery can pre-warm the manifest cache
    without another request per version.
    """

    session: requests.Session = field(default_factory=requests.Session)
    base_url: str = DEFAULT_NPM_REGISTRY_URL
    timeout_s: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT

    def _url(self, *parts: str) -> str:
        return "/".join((self.base_url.rstrip("/"), *parts))

    def list_versions(self, name: str) -> list[tuple[str, Mapping[str, Any]]]:
        packument = get_json_or_none(
            self.session,
            self._url(_package_path(name)),
            timeout_s=self.timeout_s,
            user_agent=self.user_agent,
        )
        if packument is None:
            raise UnknownPackageError(name)

        versions = packument.get("versions")
        if not isinstance(versions, Mapping):
            raise RegistryError(f"npm packument for {name!r} has no versions mapping")
        return list(versions.items())

    def fetch_version(self, name: str, version: str) -> Mapping[str, Any] | None:
        return get_json_or_none(
            self.session,
            self._url(_package_path(name), quote(version, safe="")),
            timeout_s=self.timeout_s,
            user_agent=self.user_agent,
        )

    def close(self) -> None:
        self.session.close()

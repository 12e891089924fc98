from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import requests

from multisource_resolution_engine.internal.clients.github import GithubSourceClient
from multisource_resolution_engine.internal.clients.local import LocalPathReader
from multisource_resolution_engine.internal.clients.npm import NpmRegistryClient
from multisource_resolution_engine.internal.clients.opam import OpamRepositoryClient
from multisource_resolution_engine.internal.normalizers import (
    NpmManifestNormalizer,
    OpamManifestNormalizer,
)
from multisource_resolution_engine.model.config import ResolverConfig
from multisource_resolution_engine.registries import (
    ManifestNormalizer,
    RegistryClient,
    SourceClient,
)


# -------------------------
# service wiring
# -------------------------


@dataclass(frozen=True, slots=True)
class ResolutionServices:
    """
    Wires registry clients, source clients and manifest normalizers.

    The engine layer should depend on this object, not on concrete clients.
    """

    npm: RegistryClient[Mapping[str, Any]]
    opam: RegistryClient[str]
    github: SourceClient[Mapping[str, Any]]
    local: SourceClient[Mapping[str, Any]]
    npm_normalizer: ManifestNormalizer[Mapping[str, Any]]
    opam_normalizer: ManifestNormalizer[str]

    def close(self) -> None:
        for client in (self.npm, self.opam, self.github, self.local):
            client.close()


def build_services(
    *,
    config: ResolverConfig,
    session: requests.Session,
    base_dir: Path = Path("."),
) -> ResolutionServices:
    return ResolutionServices(
        npm=NpmRegistryClient(
            session=session,
            base_url=config.npm_registry_url,
            timeout_s=config.http_timeout_s,
            user_agent=config.user_agent,
        ),
        opam=OpamRepositoryClient(root=Path(config.opam_repository)),
        github=GithubSourceClient(
            session=session,
            raw_base_url=config.github_raw_url,
            timeout_s=config.http_timeout_s,
            user_agent=config.user_agent,
        ),
        local=LocalPathReader(base_dir=base_dir),
        npm_normalizer=NpmManifestNormalizer(),
        opam_normalizer=OpamManifestNormalizer(),
    )


# :: FeatureFlow | type=feature_start | name=service_loading
@contextmanager
def open_services(
    config: ResolverConfig, *, base_dir: Path = Path(".")
) -> Iterator[ResolutionServices]:
    """
    Build the built-in services over one shared HTTP session and close them on exit.
    """
    session = requests.Session()
    services = build_services(config=config, session=session, base_dir=base_dir)
    logging.debug(
        f"Opened services: npm={config.npm_registry_url} "
        f"opam={config.opam_repository} github={config.github_raw_url}"
    )
    try:
        yield services
    finally:
        services.close()
        session.close()

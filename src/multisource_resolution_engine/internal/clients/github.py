from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping
from urllib.parse import quote

import requests

from multisource_resolution_engine.internal.clients.http import get_json_or_none
from multisource_resolution_engine.model.config import (
    DEFAULT_GITHUB_RAW_URL,
    DEFAULT_USER_AGENT,
)
from multisource_resolution_engine.model.version import BaseSource, GithubSource
from multisource_resolution_engine.registries import SourceClient


@dataclass(frozen=True)
class GithubSourceClient(SourceClient[Mapping[str, Any]]):
    """
    Reads ``package.json`` of a GitHub repository at a pinned ref.
    """

    session: requests.Session = field(default_factory=requests.Session)
    raw_base_url: str = DEFAULT_GITHUB_RAW_URL
    timeout_s: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT
    manifest_filename: str = "package.json"

    def fetch_source(self, name: str, source: BaseSource) -> Mapping[str, Any] | None:
        if not isinstance(source, GithubSource) or not source.ref:
            raise ValueError(f"GitHub client needs a GitHub source with a ref, got {source}")

        url = "/".join(
            (
                self.raw_base_url.rstrip("/"),
                quote(source.user, safe=""),
                quote(source.repo, safe=""),
                quote(source.ref, safe=""),
                self.manifest_filename,
            )
        )
        return get_json_or_none(
            self.session, url, timeout_s=self.timeout_s, user_agent=self.user_agent
        )

    def close(self) -> None:
        self.session.close()

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

from typing_extensions import Self

from multisource_resolution_engine.internal.util.multiformat import (
    MultiformatModelMixin,
    drop_none,
)
from multisource_resolution_engine.internal.util.toml import (
    dump_toml_to_file,
    load_toml_file,
)
from multisource_resolution_engine.model.resolution import (
    DEFAULT_SOLVER_TIMEOUT_S,
    SolverStrategy,
)

DEFAULT_NPM_REGISTRY_URL = "https://registry.npmjs.org"
DEFAULT_GITHUB_RAW_URL = "https://raw.githubusercontent.com"
DEFAULT_USER_AGENT = "multisource-resolution-engine/0"
DEFAULT_OPAM_REPOSITORY = Path("opam-repository")


@dataclass(kw_only=True, frozen=True, slots=True)
class ResolverConfig(MultiformatModelMixin):
    """
    Settings for the registry collaborators and the solver call.

    The resolution core does not look inside these values; they are consumed when
    the collaborators are built (see ``services.open_services``).

    Attributes:
        npm_registry_url (str): Base URL of the npm registry.
        github_raw_url (str): Base URL serving raw repository files.
        opam_repository (Path | None): Local opam-repository checkout. Defaults to
            ``<cache_dir>/opam-repository``, or
            ``./opam-repository`` when no ``cache_dir`` is set either.
        cache_dir (Path | None): Working directory for fetched registry data.
        http_timeout_s (float): Per-request HTTP timeout.
        user_agent (str): User-Agent header sent to registries.
        solver_timeout_s (float): Default solver timeout.
        strategy (SolverStrategy): Default solver strategy.
    """

    npm_registry_url: str = DEFAULT_NPM_REGISTRY_URL
    github_raw_url: str = DEFAULT_GITHUB_RAW_URL
    opam_repository: Path | None = None
    cache_dir: Path | None = None
    http_timeout_s: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT
    solver_timeout_s: float = DEFAULT_SOLVER_TIMEOUT_S
    strategy: SolverStrategy = SolverStrategy.INITIAL

    def __post_init__(self) -> None:
        if self.opam_repository is None:
            opam_repository = (
                Path(self.cache_dir) / "opam-repository"
                if self.cache_dir is not None
                else DEFAULT_OPAM_REPOSITORY
            )
            object.__setattr__(self, "opam_repository", opam_repository)
        if self.http_timeout_s <= 0 or self.solver_timeout_s <= 0:
            raise ValueError("timeouts must be positive")

    def to_mapping(self, *args, **kwargs) -> dict[str, Any]:
        return {
            "npm_registry_url": self.npm_registry_url,
            "github_raw_url": self.github_raw_url,
            "opam_repository": (
                self.opam_repository.as_posix() if self.opam_repository else None
            ),
            "cache_dir": self.cache_dir.as_posix() if self.cache_dir else None,
            "http_timeout_s": self.http_timeout_s,
            "user_agent": self.user_agent,
            "solver_timeout_s": self.solver_timeout_s,
            "strategy": self.strategy.value,
        }

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], **_: Any) -> Self:
        allowed = {f.name for f in fields(cls)}
        unknown = set(mapping) - allowed
        if unknown:
            raise ValueError(f"Invalid resolver config keys: {sorted(unknown)}")

        kwargs: dict[str, Any] = dict(mapping)
        for key in ("opam_repository", "cache_dir"):
            if kwargs.get(key) is not None:
                kwargs[key] = Path(kwargs[key])
        for key in ("http_timeout_s", "solver_timeout_s"):
            if key in kwargs:
                kwargs[key] = float(kwargs[key])
        if "strategy" in kwargs:
            kwargs["strategy"] = SolverStrategy(kwargs["strategy"])
        return cls(**kwargs)


def load_resolver_config(path: str | Path) -> ResolverConfig:
    """
    Read a TOML config file. Settings live under a ``[resolver]`` table, or at the
    top level when the file has no such table.
    """
    data = load_toml_file(path)
    section = data.get("resolver", data)
    if not isinstance(section, Mapping):
        raise ValueError(f"[resolver] in {path} must be a table")
    return ResolverConfig.from_mapping(section)


def write_resolver_config(config: ResolverConfig, path: str | Path) -> None:
    dump_toml_to_file({"resolver": drop_none(config.to_mapping())}, path)

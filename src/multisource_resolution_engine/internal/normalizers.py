from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Final, Mapping

from multisource_resolution_engine.model.package import Package
from multisource_resolution_engine.model.requirement import (
    FormulaKind,
    Requirement,
    VersionFormula,
    opam_package_name,
    parse_requirement,
)
from multisource_resolution_engine.model.resolution import ManifestParseError
from multisource_resolution_engine.model.version import BaseVersion, coerce_opam_semver
from multisource_resolution_engine.registries import ManifestNormalizer

_OPAM_TOKEN: Final[re.Pattern[str]] = re.compile(
    r'"(?P<string>[^"]*)"'
    r"|(?P<op>>=|<=|!=|=|<|>|&|\||!)"
    r"|(?P<punct>[\[\]{}()])"
    r"|(?P<ident>[A-Za-z0-9_:+.\-]+)"
    r"|(?P<comment>#[^\n]*)"
    r"|(?P<ws>\s+)"
    r"|(?P<other>.)"
)
_OPAM_COMPARATORS: Final[frozenset[str]] = frozenset({">=", "<=", "!=", "=", "<", ">"})
_OPAM_TEST_ONLY_FLAGS: Final[frozenset[str]] = frozenset({"with-test", "with-doc"})


@dataclass(frozen=True)
class NpmManifestNormalizer(ManifestNormalizer[Mapping[str, Any]]):
    """
    package.json -> Package. Only ``dependencies`` participate in resolution.
    """

    dependency_fields: tuple[str, ...] = ("dependencies",)

    def parse(self, name: str, raw: Mapping[str, Any], version: BaseVersion) -> Package:
        if not isinstance(raw, Mapping):
            raise ManifestParseError(
                f"{name}@{version}: manifest must be a mapping, got {type(raw).__name__}"
            )

        deps: list[Requirement] = []
        for dep_field in self.dependency_fields:
            section = raw.get(dep_field) or {}
            if not isinstance(section, Mapping):
                raise ManifestParseError(f"{name}@{version}: {dep_field} must be a mapping")
            for dep_name, dep_spec in section.items():
                if not isinstance(dep_spec, str):
                    raise ManifestParseError(
                        f"{name}@{version}: dependency {dep_name!r} has a non-string spec"
                    )
                try:
                    deps.append(parse_requirement(dep_name, dep_spec))
                except ValueError as e:
                    raise ManifestParseError(
                        f"{name}@{version}: invalid spec for {dep_name!r}: {dep_spec!r} ({e})"
                    ) from e

        return Package(name=name, version=version, dependencies=tuple(deps))


def _tokenize_opam(text: str) -> Iterator[tuple[str, str]]:
    pos = 0
    while pos < len(text):
        m = _OPAM_TOKEN.match(text, pos)
        if m is None:
            raise ManifestParseError(f"unexpected character {text[pos]!r} in opam file")
        pos = m.end()
        kind = m.lastgroup
        if kind in ("ws", "comment"):
            continue
        yield str(kind), m.group(kind)


def _depends_tokens(text: str) -> list[tuple[str, str]]:
    """
    Tokens between the brackets of the ``depends:`` field (empty when absent).
    """
    tokens = list(_tokenize_opam(text))
    for i, (kind, value) in enumerate(tokens):
        if kind == "ident" and value == "depends:":
            break
    else:
        return []

    if i + 1 >= len(tokens) or tokens[i + 1] != ("punct", "["):
        raise ManifestParseError("opam depends: field is not a list")

    depth = 0
    body: list[tuple[str, str]] = []
    for tok in tokens[i + 1:]:
        if tok == ("punct", "["):
            depth += 1
            if depth == 1:
                continue
        elif tok == ("punct", "]"):
            depth -= 1
            if depth == 0:
                return body
        body.append(tok)
    raise ManifestParseError("opam depends: list is not closed")


def _opam_formula_disjuncts(name: str, filter_tokens: list[tuple[str, str]]) -> list[str]:
    # Parentheses are flattened: opam depends filters in practice are a plain
    # disjunction of conjunctions.
    disjuncts: list[str] = []
    current: list[str] = []
    i = 0
    while i < len(filter_tokens):
        kind, value = filter_tokens[i]
        if kind == "op" and value == "|":
            disjuncts.append(" ".join(current) or "*")
            current = []
        elif (
            kind == "op"
            and value in _OPAM_COMPARATORS
            and i > 0
            and filter_tokens[i - 1][0] == "ident"
        ):
            # a variable filter such as {os = "linux"}, not a version constraint
            i += 1
        elif kind == "op" and value in _OPAM_COMPARATORS:
            if i + 1 >= len(filter_tokens) or filter_tokens[i + 1][0] != "string":
                raise ManifestParseError(f"opam constraint on {name!r}: {value} without a version")
            raw_version = filter_tokens[i + 1][1]
            i += 1
            if value == "!=":
                logging.debug(f"opam: dropping {name} != {raw_version}; not expressible")
            else:
                try:
                    current.append(f"{value}{coerce_opam_semver(raw_version)}")
                except ValueError as e:
                    raise ManifestParseError(
                        f"opam constraint on {name!r}: bad version {raw_version!r}"
                    ) from e
        i += 1
    disjuncts.append(" ".join(current) or "*")
    return disjuncts


@dataclass(frozen=True)
class OpamManifestNormalizer(ManifestNormalizer[str]):
    """
    opam file text -> Package.

    Reads the ``depends`` field. Every dependency becomes an opam formula on the
    ``@opam/``-scoped name. Test and doc only dependencies are skipped.
    """

    def parse(self, name: str, raw: str, version: BaseVersion) -> Package:
        if not isinstance(raw, str):
            raise ManifestParseError(
                f"{name}@{version}: opam manifest must be text, got {type(raw).__name__}"
            )

        try:
            deps = tuple(self._parse_depends(raw))
        except ManifestParseError as e:
            raise ManifestParseError(f"{name}@{version}: {e.message}") from e

        return Package(name=opam_package_name(name), version=version, dependencies=deps)

    def _parse_depends(self, text: str) -> Iterator[Requirement]:
        tokens = _depends_tokens(text)
        i = 0
        while i < len(tokens):
            kind, value = tokens[i]
            if kind != "string":
                raise ManifestParseError(f"unexpected {value!r} in opam depends")

            filter_tokens: list[tuple[str, str]] = []
            if i + 1 < len(tokens) and tokens[i + 1] == ("punct", "{"):
                j = i + 2
                while j < len(tokens) and tokens[j] != ("punct", "}"):
                    filter_tokens.append(tokens[j])
                    j += 1
                if j >= len(tokens):
                    raise ManifestParseError(f"unclosed filter on opam dependency {value!r}")
                i = j
            i += 1

            flags = {v for k, v in filter_tokens if k == "ident"}
            if flags & _OPAM_TEST_ONLY_FLAGS:
                logging.debug(f"opam: skipping test/doc dependency {value}")
                continue

            try:
                formula = VersionFormula(
                    kind=FormulaKind.OPAM,
                    disjuncts=tuple(_opam_formula_disjuncts(value, filter_tokens)),
                )
            except ValueError as e:
                raise ManifestParseError(f"opam constraint on {value!r}: {e}") from e
            yield Requirement(name=opam_package_name(value), spec=formula)

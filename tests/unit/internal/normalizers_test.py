from __future__ import annotations

import pytest

# Unit under test
import multisource_resolution_engine.internal.normalizers as uut
from multisource_resolution_engine.model.requirement import (
    FormulaKind,
    Requirement,
    VersionFormula,
)
from multisource_resolution_engine.model.resolution import ManifestParseError
from multisource_resolution_engine.model.version import (
    GithubSource,
    NpmVersion,
    OpamVersion,
)

# ==============================================================================
# BRANCH LEDGER: internal.normalizers (C000)
# ==============================================================================
# C001M001B0001: NpmManifestNormalizer.parse: dependencies -> requirements
# C001M001B0002: parse: missing dependencies -> no requirements
# C001M001B0003: parse: non-mapping manifest -> ManifestParseError
# C001M001B0004: parse: non-mapping section -> ManifestParseError
# C001M001B0005: parse: non-string spec -> ManifestParseError
# C001M001B0006: parse: invalid range -> ManifestParseError
# C001M001B0007: parse: spaced comparators and npm aliases accepted
# C000F001B0001: _depends_tokens: no depends field -> []
# C000F001B0002: _depends_tokens: unclosed list -> ManifestParseError
# C000F002B0001: _opam_formula_disjuncts: conjunction / disjunction
# C000F002B0002: _opam_formula_disjuncts: "!=" dropped
# C000F002B0003: _opam_formula_disjuncts: variable filter ignored
# C002M001B0001: OpamManifestNormalizer.parse: scoped package and deps
# C002M001B0002: parse: with-test / with-doc deps skipped
# C002M001B0003: parse: bad constraint version -> ManifestParseError
# C002M001B0004: parse: non-text payload -> ManifestParseError
# ==============================================================================


def test_npm_parse_dependencies():
    # C001M001B0001
    package = uut.NpmManifestNormalizer().parse(
        "app",
        {
            "name": "app",
            "dependencies": {"react": "^17.0.0", "foo": "github:u/r#main"},
            "devDependencies": {"jest": "^29.0.0"},
        },
        NpmVersion("1.0.0"),
    )

    assert package.key == ("app", NpmVersion("1.0.0"))
    assert package.dependencies == (
        Requirement("react", VersionFormula.parse("^17.0.0")),
        Requirement("foo", GithubSource(user="u", repo="r", ref="main")),
    )


def test_npm_parse_without_dependencies():
    # C001M001B0002
    package = uut.NpmManifestNormalizer().parse("x", {"name": "x"}, NpmVersion("1.0.0"))
    assert package.dependencies == ()


def test_npm_dependency_fields_are_configurable():
    normalizer = uut.NpmManifestNormalizer(
        dependency_fields=("dependencies", "peerDependencies")
    )
    package = normalizer.parse(
        "x",
        {"dependencies": {"a": "1.0.0"}, "peerDependencies": {"b": "^2.0.0"}},
        NpmVersion("1.0.0"),
    )
    assert [d.name for d in package.dependencies] == ["a", "b"]


@pytest.mark.parametrize(
    "raw, message",
    [
        (["not", "a", "mapping"], "manifest must be a mapping"),  # C001M001B0003
        ({"dependencies": ["a"]}, "dependencies must be a mapping"),  # C001M001B0004
        ({"dependencies": {"a": 1}}, "non-string spec"),  # C001M001B0005
        ({"dependencies": {"a": ">=nope"}}, "invalid spec for 'a'"),  # C001M001B0006
    ],
)
def test_npm_parse_errors(raw, message):
    with pytest.raises(ManifestParseError, match=message):
        uut.NpmManifestNormalizer().parse("x", raw, NpmVersion("1.0.0"))


def test_npm_parse_loose_ranges_and_aliases():
    # C001M001B0007
    package = uut.NpmManifestNormalizer().parse(
        "foo",
        {"dependencies": {"bar": ">= 1.0.0", "baz": "< 2", "qux": "npm:bar@^1.0.0"}},
        NpmVersion("1.0.0"),
    )

    assert package.dependencies == (
        Requirement("bar", VersionFormula.parse(">=1.0.0")),
        Requirement("baz", VersionFormula.parse("<2")),
        Requirement("bar", VersionFormula.parse("^1.0.0")),
    )


_OPAM_FILE = """\
opam-version: "2.0"
synopsis: "A build system"
# a comment with "quotes" and [brackets]
depends: [
  "ocaml" {>= "4.08.0" & < "5.0"}
  "base-unix"
  "csexp" {>= "1.5.0" | = "1.3.2"}
  "odoc" {with-doc}
  "ppx_expect" {with-test & >= "v0.15"}
  "seq" {!= "0.1" & build}
  "conf-linux" {os = "linux"}
]
build: [["dune" "build" "-p" name "-j" jobs]]
"""


def _opam(name: str, formula: str) -> Requirement:
    return Requirement(name, VersionFormula.parse(formula, FormulaKind.OPAM))


def test_opam_parse_depends():
    # C002M001B0001, C002M001B0002, C000F002B0001, C000F002B0002, C000F002B0003
    package = uut.OpamManifestNormalizer().parse("dune", _OPAM_FILE, OpamVersion("3.10.0"))

    assert package.name == "@opam/dune"
    assert package.version == OpamVersion("3.10.0")
    assert package.dependencies == (
        _opam("@opam/ocaml", ">=4.8.0 <5.0.0"),
        _opam("@opam/base-unix", "*"),
        _opam("@opam/csexp", ">=1.5.0 || =1.3.2"),
        _opam("@opam/seq", "*"),
        _opam("@opam/conf-linux", "*"),
    )


def test_opam_without_depends():
    # C000F001B0001
    package = uut.OpamManifestNormalizer().parse(
        "base-unix", 'opam-version: "2.0"\n', OpamVersion("1.0.0")
    )
    assert package.dependencies == ()


@pytest.mark.parametrize(
    "text, message",
    [
        ('depends: [ "ocaml" {>= "4.08" ]', "unclosed filter"),  # C000F001B0002
        ('depends: [ "ocaml"', "not closed"),  # C000F001B0002
        ('depends: [ "ocaml" {>= "not.a.version.at.all"} ]', "bad version"),  # C002M001B0003
        ('depends: "ocaml"', "not a list"),
        ('depends: [ ocaml ]', "unexpected 'ocaml'"),
    ],
)
def test_opam_parse_errors(text, message):
    with pytest.raises(ManifestParseError, match=message) as exc:
        uut.OpamManifestNormalizer().parse("x", text, OpamVersion("1.0.0"))
    assert str(exc.value).startswith("x@1.0.0: ")


def test_opam_parse_requires_text():
    # C002M001B0004
    with pytest.raises(ManifestParseError, match="must be text"):
        uut.OpamManifestNormalizer().parse("x", {"depends": []}, OpamVersion("1.0.0"))

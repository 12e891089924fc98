from __future__ import annotations

import pytest

# Unit under test
import multisource_resolution_engine.model.resolution as uut
from multisource_resolution_engine.model.package import Package
from multisource_resolution_engine.model.requirement import (
    FormulaKind,
    Requirement,
    parse_requirement,
)
from multisource_resolution_engine.model.version import NpmVersion, OpamVersion

# ==============================================================================
# BRANCH LEDGER: model.resolution + model.package (C000)
# ==============================================================================
# C001M001B0001: ResolutionParams.from_manifest: dependencies + resolutions
# C001M001B0002: ResolutionParams.from_manifest: empty manifest -> defaults
# C002M001B0001: ResolutionResult.__post_init__: packages sorted by name
# C002M002B0001: ResolutionResult.to_mapping / from_mapping
# C003M001B0001: ResolutionError.__str__: no breadcrumbs -> message
# C003M001B0002: ResolutionError.__str__: breadcrumbs appended in order
# C004M001B0001: Package.key / identifier
# C004M002B0001: Package equality ignores dependencies
# ==============================================================================


def _pkg(name: str, version: str, *deps: Requirement) -> Package:
    return Package(name=name, version=NpmVersion(version), dependencies=tuple(deps))


def test_params_from_manifest():
    # C001M001B0001
    params = uut.ResolutionParams.from_manifest(
        {
            "name": "app",
            "dependencies": {"react": "^17.0.0", "@opam/dune": ">=3.0.0"},
            "resolutions": {"react": "16.0.0"},
        },
        strategy=uut.SolverStrategy.GREATEST_OVERLAP,
        solver_timeout_s=1.5,
    )

    assert params.root_name == "app"
    assert [r.name for r in params.requirements] == ["react", "@opam/dune"]
    assert params.requirements[1].spec.kind is FormulaKind.OPAM
    assert params.resolutions == {"react": NpmVersion("16.0.0")}
    assert params.strategy is uut.SolverStrategy.GREATEST_OVERLAP
    assert params.solver_timeout_s == 1.5


def test_params_from_empty_manifest():
    # C001M001B0002
    params = uut.ResolutionParams.from_manifest({})
    assert params.root_name == uut.DEFAULT_ROOT_NAME == "<root>"
    assert tuple(params.requirements) == ()
    assert params.resolutions == {}
    assert params.strategy is uut.SolverStrategy.INITIAL
    assert params.solver_timeout_s == uut.DEFAULT_SOLVER_TIMEOUT_S


def test_strategy_values():
    assert uut.SolverStrategy("initial") is uut.SolverStrategy.INITIAL
    assert uut.SolverStrategy("greatestOverlap") is uut.SolverStrategy.GREATEST_OVERLAP


def test_result_sorted_and_round_trips():
    # C002M001B0001, C002M002B0001
    result = uut.ResolutionResult(
        root_name="app",
        packages=(
            _pkg("react", "16.0.0", parse_requirement("loose-envify", "^1.1.0")),
            _pkg("loose-envify", "1.4.0"),
        ),
    )

    assert [p.name for p in result.packages] == ["loose-envify", "react"]
    assert set(result.by_name()) == {"loose-envify", "react"}

    back = uut.ResolutionResult.from_json(result.to_json())
    assert back == result
    assert back.by_name()["react"].dependencies == (
        parse_requirement("loose-envify", "^1.1.0"),
    )
    assert result.to_mapping()["root"] == "app"


def test_error_without_breadcrumbs():
    # C003M001B0001
    err = uut.UnknownPackageError("left-pad", NpmVersion("9.9.9"))
    assert str(err) == "unknown package: left-pad@9.9.9"
    assert err.breadcrumbs == []


def test_error_breadcrumbs_in_order():
    # C003M001B0002
    err = uut.UnsupportedSpecError(parse_requirement("foo", "github:u/r"))
    assert err.add_breadcrumb("while resolving foo@github:u/r required by bar@1.0.0") is err
    err.add_breadcrumb("required by app@1.0.0")

    assert str(err).splitlines() == [
        "unsupported dependency spec: foo@github:u/r",
        "  while resolving foo@github:u/r required by bar@1.0.0",
        "  required by app@1.0.0",
    ]
    assert isinstance(err, uut.ResolutionError)


def test_package_identity():
    # C004M001B0001, C004M002B0001
    a = _pkg("react", "16.0.0", parse_requirement("x", "^1.0.0"))
    b = _pkg("react", "16.0.0")

    assert a.key == ("react", NpmVersion("16.0.0"))
    assert a.identifier == str(a) == "react@16.0.0"
    assert a == b
    assert len({a, b}) == 1
    assert Package(name="react", version=OpamVersion("16.0.0")) != a


@pytest.mark.parametrize(
    "error_type",
    [
        uut.UnsupportedSourceError,
        uut.ManifestParseError,
        uut.RegistryError,
        uut.UnsatisfiableError,
        uut.MissingPackageError,
    ],
)
def test_message_errors_are_resolution_errors(error_type):
    err = error_type("boom")
    assert isinstance(err, uut.ResolutionError)
    assert err.message == "boom"

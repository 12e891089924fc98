from __future__ import annotations

import itertools

import pytest

# Unit under test
import multisource_resolution_engine.internal.resolvelib_types as uut

# ==============================================================================
# BRANCH LEDGER: internal.resolvelib_types (C000)
# ==============================================================================
# C001M001B0001: SolverConstraint.accepts / __str__
# C002M001B0001: SolverPackage: properties ignored by equality, rank default
# C003M001B0001: Preamble.check: declared properties -> ok
# C003M001B0002: Preamble.check: undeclared property -> ValueError
# C004M001B0001: Universe.add: new record -> stored
# C004M001B0002: Universe.add: duplicate (name, version) -> ValueError
# C004M002B0001: Universe.constraints_on: every dependency on a name
# C004M003B0001: Universe.__contains__: (name, version) pairs only
# C005M001B0001: reporter.starting_round: no timeout -> never raises
# C005M001B0002: reporter.starting_round: deadline passed -> SolverTimeoutError
# ==============================================================================


def _c(name: str, *versions: int) -> uut.SolverConstraint:
    return uut.SolverConstraint(name, frozenset(versions))


def test_constraint():
    # C001M001B0001
    constraint = _c("react", 3, 1)
    assert constraint.accepts(1)
    assert not constraint.accepts(2)
    assert str(constraint) == "react{1,3}"
    assert str(_c("react")) == "react{}"


def test_package_equality_ignores_properties():
    # C002M001B0001
    a = uut.SolverPackage("a", 1, properties={"rank": 4})
    b = uut.SolverPackage("a", 1, properties={"rank": 0})
    assert a == b
    assert hash(a) == hash(b)
    assert a.rank == 4
    assert uut.SolverPackage("a", 2).rank == 0
    assert str(a) == "a#1"


def test_preamble_check():
    # C003M001B0001, C003M001B0002
    preamble = uut.Preamble()
    preamble.check(uut.SolverPackage("a", 1, properties={"rank": 1}))
    with pytest.raises(ValueError, match="undeclared properties: \\['weight'\\]"):
        preamble.check(uut.SolverPackage("a", 1, properties={"weight": 1}))


@pytest.fixture
def universe() -> uut.Universe:
    universe = uut.Universe()
    universe.add(uut.SolverPackage("a", 1, depends=(_c("c", 1, 2),)))
    universe.add(uut.SolverPackage("b", 1, depends=(_c("c", 2), _c("a", 1))))
    universe.add(uut.SolverPackage("c", 1))
    universe.add(uut.SolverPackage("c", 2))
    return universe


def test_universe_lookups(universe):
    # C004M001B0001, C004M003B0001
    assert len(universe) == 4
    assert universe.names() == ["a", "b", "c"]
    assert [str(p) for p in universe.packages("c")] == ["c#1", "c#2"]
    assert universe.packages("zzz") == []
    assert universe.get("c", 2) == uut.SolverPackage("c", 2)
    assert universe.get("c", 3) is None
    assert ("c", 1) in universe
    assert ("c", 3) not in universe
    assert "c" not in universe


def test_universe_rejects_duplicates(universe):
    # C004M001B0002
    with pytest.raises(ValueError, match="already registered"):
        universe.add(uut.SolverPackage("c", 1))


def test_constraints_on(universe):
    # C004M002B0001
    assert universe.constraints_on("c") == [_c("c", 1, 2), _c("c", 2)]
    assert universe.constraints_on("b") == []


def test_reporter_without_timeout():
    # C005M001B0001
    reporter = uut.MultisourceResolutionReporter()
    for index in range(3):
        reporter.starting_round(index)


def test_reporter_deadline(monkeypatch):
    # C005M001B0002
    clock = itertools.chain([100.0, 100.5], itertools.repeat(102.0))
    monkeypatch.setattr(uut.time, "monotonic", lambda: next(clock))

    reporter = uut.MultisourceResolutionReporter(timeout_s=1.0)
    reporter.starting_round(0)
    with pytest.raises(uut.SolverTimeoutError, match="after 1 round") as exc:
        reporter.starting_round(1)
    assert exc.value.timeout_s == 1.0

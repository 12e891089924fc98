from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence

from resolvelib import (
    AbstractProvider,
    ResolutionImpossible,
    ResolutionTooDeep,
    Resolver,
)
from resolvelib.structs import RequirementInformation

from multisource_resolution_engine.internal.resolvelib_types import (
    MultisourceResolutionReporter,
    Preamble,
    Preference,
    Request,
    SolverConstraint,
    SolverPackage,
    SolverTimeoutError,
    Universe,
)
from multisource_resolution_engine.model.resolution import SolverStrategy

# resolvelib's guard against runaway backtracking; the wall clock deadline is the
# tighter bound in practice.
MAX_ROUNDS = 10_000


def _freshness_key(candidate: SolverPackage) -> tuple[int, int]:
    # Pinned candidates (negative rank) first, then newest registry version first.
    return (0 if candidate.rank < 0 else 1, -candidate.rank)


class MultisourceResolutionProvider(
    AbstractProvider[SolverConstraint, SolverPackage, str]
):
    """A resolvelib Provider over a pre-built, integer-versioned universe."""

    def __init__(
        self,
        *,
        universe: Universe,
        strategy: SolverStrategy = SolverStrategy.INITIAL,
    ) -> None:
        self._universe = universe
        self._strategy = strategy
        self._overlap: dict[str, dict[int, int]] = {}

    def identify(
        self, requirement_or_candidate: SolverConstraint | SolverPackage
    ) -> str:
        return requirement_or_candidate.name

    def _overlap_count(self, candidate: SolverPackage) -> int:
        """
        How many constraints in the whole universe on this name accept ``candidate``.
        """
        counts = self._overlap.get(candidate.name)
        if counts is None:
            counts = {}
            for constraint in self._universe.constraints_on(candidate.name):
                for version in constraint.versions:
                    counts[version] = counts.get(version, 0) + 1
            self._overlap[candidate.name] = counts
        return counts.get(candidate.version, 0)

    def _sort_candidates(self, candidates: list[SolverPackage]) -> list[SolverPackage]:
        match self._strategy:
            case SolverStrategy.INITIAL:
                candidates.sort(key=_freshness_key)
            case SolverStrategy.GREATEST_OVERLAP:
                candidates.sort(
                    key=lambda c: (-self._overlap_count(c), *_freshness_key(c))
                )
        return candidates

    def find_matches(
        self,
        identifier: str,
        requirements: Mapping[str, Iterator[SolverConstraint]],
        incompatibilities: Mapping[str, Iterator[SolverPackage]],
    ) -> Iterable[SolverPackage]:
        req_list = list(requirements.get(identifier, iter(())))
        bad = {c.version for c in incompatibilities.get(identifier, iter(()))}

        candidates = [
            c
            for c in self._universe.packages(identifier)
            if c.version not in bad and all(r.accepts(c.version) for r in req_list)
        ]
        return self._sort_candidates(candidates)

    def is_satisfied_by(
        self, requirement: SolverConstraint, candidate: SolverPackage
    ) -> bool:
        return candidate.name == requirement.name and requirement.accepts(
            candidate.version
        )

    def get_dependencies(self, candidate: SolverPackage) -> Iterable[SolverConstraint]:
        return candidate.depends

    def get_preference(
        self,
        identifier: str,
        resolutions: Mapping[str, SolverPackage],
        candidates: Mapping[str, Iterator[SolverPackage]],
        information: Mapping[
            str,
            Iterator[RequirementInformation[SolverConstraint, SolverPackage]],
        ],
        backtrack_causes: Sequence[
            RequirementInformation[SolverConstraint, SolverPackage]
        ],
    ) -> Preference:
        """
        Decide which identifier resolvelib should try to resolve next.

        Candidate ranking is handled in find_matches(); this only orders names.
        """
        infos = tuple(information.get(identifier, ()))

        is_root = any(ri.parent is None for ri in infos)
        parent_count = sum(1 for ri in infos if ri.parent is not None)
        is_backtrack_cause = any(
            ri.requirement.name == identifier for ri in backtrack_causes
        )

        # Names with a single allowed version are cheapest to settle first.
        narrowest = min(
            (len(ri.requirement.versions) for ri in infos), default=0
        )

        # Smaller sorts first:
        #  1) backtrack causes
        #  2) root requirements
        #  3) fewest allowed versions
        #  4) more parents constraining the name
        #  5) stable tie-breaker by identifier
        return (
            0 if is_backtrack_cause else 1,
            0 if is_root else 1,
            narrowest,
            -parent_count,
            identifier,
        )


# :: FeatureFlow | type=feature_start | name=solve
def run_solver(
    preamble: Preamble,
    universe: Universe,
    request: Request,
    strategy: SolverStrategy,
    timeout_s: float,
) -> list[SolverPackage] | None:
    """
    Solve ``request`` against ``universe``.

    Returns the installed records, or None when there is no solution, the search is
    too deep, or ``timeout_s`` elapses. The three are not distinguished.
    """
    for package in universe:
        preamble.check(package)

    provider = MultisourceResolutionProvider(universe=universe, strategy=strategy)
    reporter = MultisourceResolutionReporter(timeout_s=timeout_s)
    resolver: Resolver[SolverConstraint, SolverPackage, str] = Resolver(
        provider, reporter
    )

    logging.debug(
        f"Solving {[str(r) for r in request.install]} over {len(universe)} record(s), "
        f"strategy={strategy.value}, timeout={timeout_s}s"
    )
    try:
        result = resolver.resolve(request.install, max_rounds=MAX_ROUNDS)
    except SolverTimeoutError as e:
        logging.log(logging.INFO, f"Solver timed out: {e}")
        return None
    except ResolutionImpossible as e:
        causes = [str(c.requirement) for c in e.causes]
        logging.log(logging.INFO, f"No solution: {causes}")
        return None
    except ResolutionTooDeep as e:
        logging.log(logging.INFO, f"Solver gave up: {e}")
        return None

    return list(result.mapping.values())

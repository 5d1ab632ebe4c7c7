"""
Cheapest-fit selection over catalog candidates.
"""
from dataclasses import dataclass, field
from typing import Any, FrozenSet, List, Mapping, Optional, Protocol

import structlog

from rightsizer.engine.preferences import ResolvedPreferences
from rightsizer.exceptions import ComponentPricingUnavailableError, NoFeasibleConfigurationError
from rightsizer.models.schemas import ResourceKind, ResourceSpec
from rightsizer.pricing.base import PriceQuote, PriceSheet
from rightsizer.pricing.calculator import TieredPricingCalculator

logger = structlog.get_logger()


@dataclass(frozen=True)
class SelectionQuery:
    """
    What the selector is asked to find.

    needed holds the dimensions every candidate is priced at (size, iops,
    throughput); capacity bounds and preference constraints live in
    constraints. context carries kind-specific filters such as the
    database engine.
    """
    kind: ResourceKind
    region: str
    resource_id: str
    needed: Mapping[str, float]
    constraints: ResolvedPreferences
    valid_families: Optional[FrozenSet[str]] = None
    context: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class Candidate:
    """A feasible catalog row, ready to be priced."""
    row_id: int
    spec: ResourceSpec
    row: Any = None
    min_size: Optional[float] = None


@dataclass
class Selection:
    candidate: Candidate
    quote: PriceQuote
    evaluated: int = 0
    skipped: int = 0


class CandidateSource(Protocol):
    """Catalog access for one resource kind."""

    async def candidates(self, query: SelectionQuery) -> List[Candidate]:
        ...

    async def price_sheet(self, query: SelectionQuery, candidates: List[Candidate]) -> PriceSheet:
        ...


class CheapestFitSelector:
    """Prices every feasible candidate and keeps the cheapest."""

    def __init__(self, calculator: TieredPricingCalculator):
        self.calculator = calculator
        self.logger = logger.bind(component="cheapest_fit_selector")

    async def select(self, query: SelectionQuery, source: CandidateSource) -> Selection:
        """
        Find the minimum-cost feasible configuration.

        Candidates are compared in catalog row id order; on equal cost
        the first one wins.

        Args:
            query: Needed capacity, constraints and valid families
            source: Catalog access for query.kind

        Returns:
            The winning candidate and its quote

        Raises:
            NoFeasibleConfigurationError: If no catalog row satisfies the query
            ComponentPricingUnavailableError: If every candidate failed to price
        """
        candidates = sorted(await source.candidates(query), key=lambda c: c.row_id)
        if not candidates:
            self.logger.info(
                "no_feasible_configuration",
                resource=query.resource_id,
                region=query.region,
                constraints=[str(c) for c in query.constraints.constraints],
            )
            raise NoFeasibleConfigurationError(query.resource_id, query.region)

        sheet = await source.price_sheet(query, candidates)

        best: Optional[Selection] = None
        last_error: Optional[ComponentPricingUnavailableError] = None
        skipped = 0
        for candidate in candidates:
            try:
                quote = self.calculator.price(candidate.spec, sheet, min_size=candidate.min_size)
            except ComponentPricingUnavailableError as e:
                skipped += 1
                last_error = e
                self.logger.warning(
                    "candidate_skipped",
                    resource=query.resource_id,
                    family=e.family,
                    region=e.region,
                    dimension=e.dimension,
                    row_id=candidate.row_id,
                )
                continue

            if best is None or quote.total < best.quote.total:
                best = Selection(candidate=candidate, quote=quote)

        if best is None:
            self.logger.error(
                "all_candidates_unpriced",
                resource=query.resource_id,
                region=query.region,
                candidates=len(candidates),
            )
            raise last_error

        best.evaluated = len(candidates)
        best.skipped = skipped
        self.logger.debug(
            "candidate_selected",
            resource=query.resource_id,
            family=best.candidate.spec.family,
            cost=str(best.quote.total),
            evaluated=best.evaluated,
            skipped=skipped,
        )
        return best


"""
Plan version rollups.

Keeps a plan version's total budget, total impressions and average CPM
in step with its line items.
"""

import logging
from decimal import Decimal
from typing import Iterable, List, Optional

from models.data_models import PlanVersion, LineItem, VersionTotals, ConsistencyReport
from data.store import EntityStore
from .cost_calculator import quantize_money, compute_avg_cpm, TWO_PLACES, ZERO
from .error_handler import AggregationInconsistencyError

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def compute_totals(line_items: Iterable[LineItem]) -> VersionTotals:
    """
    Aggregate line items into version totals.

    Args:
        line_items: Line items of one plan version

    Returns:
        VersionTotals with budget and average CPM rounded to two places
    """
    total_budget = ZERO
    total_impressions = 0

    for item in line_items:
        total_budget += quantize_money(item.total_cost)
        total_impressions += int(item.impressions or 0)

    total_budget = quantize_money(total_budget)
    return VersionTotals(
        total_budget=total_budget,
        total_impressions=total_impressions,
        avg_cpm=compute_avg_cpm(total_budget, total_impressions)
    )


class RollupAggregator:
    """
    Recomputes plan version totals from the version's current line items.

    Recomputes run under the version's lock inside a store transaction,
    so two edits of the same version cannot interleave their rollups.
    """

    def __init__(self, store: EntityStore, tolerance: Decimal = TWO_PLACES):
        self.store = store
        self.tolerance = tolerance

    def recompute_version_totals(self, plan_version_id: int) -> Optional[PlanVersion]:
        """
        Rewrite a version's derived totals.

        Only total_budget, total_impressions and avg_cpm are written. If the
        version no longer exists the recompute does nothing.

        Returns:
            The updated PlanVersion, or None if the version is gone
        """
        with self.store.version_lock(plan_version_id), self.store.transaction():
            return self.recompute_in_transaction(plan_version_id)

    def recompute_in_transaction(self, plan_version_id: int) -> Optional[PlanVersion]:
        """
        Rewrite a version's totals inside the caller's open store transaction.

        Takes no version lock. Use it for a version created in the same
        transaction, which nobody else can see until commit.
        """
        if not self.store.exists(PlanVersion, plan_version_id):
            logger.warning(f"Skipped rollup for missing plan version {plan_version_id}")
            return None

        totals = compute_totals(self.store.list(LineItem, plan_version_id=plan_version_id))
        version = self.store.update(PlanVersion, plan_version_id, {
            'total_budget': totals.total_budget,
            'total_impressions': totals.total_impressions,
            'avg_cpm': totals.avg_cpm,
        })

        logger.info(
            f"Rolled up plan version {plan_version_id}: budget {totals.total_budget}, "
            f"impressions {totals.total_impressions}, avg CPM {totals.avg_cpm}"
        )
        return version

    def check_consistency(self, plan_version_id: int, raise_on_drift: bool = False) -> ConsistencyReport:
        """
        Compare a version's stored totals with totals computed from its line items.

        Args:
            plan_version_id: Version to check
            raise_on_drift: Raise AggregationInconsistencyError instead of returning
                an inconsistent report

        Raises:
            NotFoundError: If the version does not exist
        """
        with self.store.version_lock(plan_version_id):
            version = self.store.require(PlanVersion, plan_version_id)
            expected = compute_totals(self.store.list(LineItem, plan_version_id=plan_version_id))

        stored = VersionTotals(
            total_budget=quantize_money(version.total_budget),
            total_impressions=int(version.total_impressions or 0),
            avg_cpm=quantize_money(version.avg_cpm)
        )
        consistent = (
            abs(stored.total_budget - expected.total_budget) <= self.tolerance
            and stored.total_impressions == expected.total_impressions
            and abs(stored.avg_cpm - expected.avg_cpm) <= self.tolerance
        )

        report = ConsistencyReport(
            plan_version_id=plan_version_id,
            stored=stored,
            expected=expected,
            consistent=consistent
        )

        if not consistent and raise_on_drift:
            raise AggregationInconsistencyError(
                plan_version_id,
                f"stored budget {stored.total_budget}, expected {expected.total_budget}"
            )
        return report

    def repair(self, plan_version_id: int) -> ConsistencyReport:
        """Recompute a version's totals if they have drifted."""
        report = self.check_consistency(plan_version_id)
        if not report.consistent:
            logger.warning(
                f"Repairing totals for plan version {plan_version_id}: "
                f"stored budget {report.stored.total_budget}, expected {report.expected.total_budget}"
            )
            self.recompute_version_totals(plan_version_id)
        return report

    def repair_all(self) -> List[ConsistencyReport]:
        """Check every plan version and repair the ones that drifted."""
        reports = [self.repair(version.id) for version in self.store.list(PlanVersion)]
        repaired = sum(1 for report in reports if not report.consistent)
        if repaired:
            logger.warning(f"Repaired totals for {repaired} plan version(s)")
        return reports

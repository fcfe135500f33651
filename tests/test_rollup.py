"""
Tests for plan version rollups.
"""

import random
import pytest
from decimal import Decimal

from models.data_models import Campaign, PlanVersion, LineItem, Product
from data.store import EntityStore
from business_logic.rollup import RollupAggregator, compute_totals
from business_logic.line_items import LineItemService
from business_logic.error_handler import AggregationInconsistencyError, NotFoundError


def make_store():
    store = EntityStore()
    store.create(Campaign, {'title': "Q4", 'client_name': "Client"})
    store.create(PlanVersion, {'campaign_id': 1, 'version_number': 1, 'title': "Version 1"})
    store.create(Product, {
        'name': "Standard Display", 'category': "Display", 'targeting_details': "",
        'placement_name': "Display", 'ad_sizes': "", 'pricing_model': "CPM"
    })
    return store


def line_item(cpm_rate, impressions, name="Item"):
    return {
        'plan_version_id': 1, 'product_id': 1, 'line_item_name': name,
        'rate_model': "CPM", 'cpm_rate': cpm_rate, 'impressions': impressions,
    }


class TestComputeTotals:

    def test_no_line_items(self):
        totals = compute_totals([])

        assert totals.total_budget == Decimal("0.00")
        assert totals.total_impressions == 0
        assert totals.avg_cpm == Decimal("0.00")

    def test_sums_and_average(self):
        items = [
            LineItem(id=1, plan_version_id=1, product_id=1, line_item_name="A",
                     total_cost=Decimal("100.00"), impressions=10000),
            LineItem(id=2, plan_version_id=1, product_id=1, line_item_name="B",
                     total_cost=Decimal("50.00"), impressions=5000),
        ]
        totals = compute_totals(items)

        assert totals.total_budget == Decimal("150.00")
        assert totals.total_impressions == 15000
        assert totals.avg_cpm == Decimal("10.00")


class TestRollupAggregator:
    """Rollups driven through line item writes."""

    def setup_method(self):
        self.store = make_store()
        self.rollup = RollupAggregator(self.store)
        self.service = LineItemService(self.store, self.rollup)

    def version(self):
        return self.store.get(PlanVersion, 1)

    def test_two_line_items(self):
        self.service.create_line_item(line_item("10.00", 10000))
        self.service.create_line_item(line_item("10.00", 5000))

        version = self.version()
        assert version.to_dict()['total_budget'] == "150.00"
        assert version.total_impressions == 15000
        assert version.to_dict()['avg_cpm'] == "10.00"

    def test_delete_second_line_item(self):
        self.service.create_line_item(line_item("10.00", 10000))
        second = self.service.create_line_item(line_item("10.00", 5000))

        self.service.delete_line_item(second.id)

        version = self.version()
        assert version.total_budget == Decimal("100.00")
        assert version.total_impressions == 10000
        assert version.avg_cpm == Decimal("10.00")

    def test_empty_version(self):
        version = self.rollup.recompute_version_totals(1)

        assert version.to_dict()['total_budget'] == "0.00"
        assert version.total_impressions == 0
        assert version.to_dict()['avg_cpm'] == "0.00"

    def test_recompute_is_idempotent(self):
        self.service.create_line_item(line_item("12.34", 56789))

        first = self.rollup.recompute_version_totals(1)
        second = self.rollup.recompute_version_totals(1)

        assert (first.total_budget, first.total_impressions, first.avg_cpm) == \
            (second.total_budget, second.total_impressions, second.avg_cpm)

    def test_missing_version_is_a_no_op(self):
        assert self.rollup.recompute_version_totals(99) is None
        assert not self.store.exists(PlanVersion, 99)

    def test_recompute_only_writes_totals(self):
        self.store.update(PlanVersion, 1, {'title': "Renamed"})
        version = self.rollup.recompute_version_totals(1)

        assert version.title == "Renamed"
        assert version.version_number == 1

    def test_random_edit_sequence_keeps_totals_consistent(self):
        rng = random.Random(7)
        live = []

        for _ in range(60):
            action = rng.choice(['create', 'create', 'update', 'delete'])
            if action == 'create' or not live:
                item = self.service.create_line_item(
                    line_item(f"{rng.uniform(0, 50):.2f}", rng.randint(0, 2000000))
                )
                live.append(item.id)
            elif action == 'update':
                self.service.update_line_item(rng.choice(live), {
                    'cpm_rate': f"{rng.uniform(0, 50):.2f}",
                    'impressions': rng.randint(0, 2000000),
                    'rate_model': rng.choice(["CPM", "dCPM", "CPCV", "CPC"]),
                })
            else:
                self.service.delete_line_item(live.pop(rng.randrange(len(live))))

            items = self.store.list(LineItem, plan_version_id=1)
            version = self.version()
            assert abs(version.total_budget - sum(item.total_cost for item in items)) <= Decimal("0.01")
            assert version.total_impressions == sum(item.impressions for item in items)


class TestConsistencyChecks:

    def setup_method(self):
        self.store = make_store()
        self.rollup = RollupAggregator(self.store)
        LineItemService(self.store, self.rollup).create_line_item(line_item("25.00", 1000000))

    def test_consistent_version(self):
        report = self.rollup.check_consistency(1)

        assert report.consistent
        assert report.expected.total_budget == Decimal("25000.00")

    def test_detects_drift(self):
        self.store.update(PlanVersion, 1, {'total_budget': Decimal("1.00")})

        report = self.rollup.check_consistency(1)
        assert not report.consistent

        with pytest.raises(AggregationInconsistencyError):
            self.rollup.check_consistency(1, raise_on_drift=True)

    def test_repair(self):
        self.store.update(PlanVersion, 1, {'total_impressions': 5})

        report = self.rollup.repair(1)

        assert not report.consistent
        assert self.rollup.check_consistency(1).consistent

    def test_repair_all(self):
        self.store.create(PlanVersion, {'campaign_id': 1, 'version_number': 2, 'title': "Version 2",
                                        'total_budget': Decimal("3.00")})

        reports = self.rollup.repair_all()

        assert [report.consistent for report in reports] == [True, False]
        assert self.store.get(PlanVersion, 2).total_budget == Decimal("0.00")

    def test_check_missing_version(self):
        with pytest.raises(NotFoundError):
            self.rollup.check_consistency(42)

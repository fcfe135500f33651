"""
Tests for the plan version lifecycle.
"""

import threading

import pytest
from decimal import Decimal
from unittest.mock import patch

from models.data_models import Campaign, PlanVersion, LineItem, Product
from data.store import EntityStore
from business_logic.plan_versions import PlanVersionManager
from business_logic.line_items import LineItemService
from business_logic.rollup import RollupAggregator
from business_logic.error_handler import NotFoundError, ValidationError


class TestPlanVersionManager:
    """Test cases for PlanVersionManager."""

    def setup_method(self):
        self.store = EntityStore()
        self.rollup = RollupAggregator(self.store)
        self.manager = PlanVersionManager(self.store, self.rollup)
        self.line_items = LineItemService(self.store, self.rollup)

        self.campaign = self.store.create(Campaign, {'title': "Q4 Brand", 'client_name': "Acme"})
        self.product = self.store.create(Product, {
            'name': "Online Video", 'category': "Video", 'targeting_details': "Video targeting",
            'placement_name': "OLV", 'ad_sizes': ":15s | :30s", 'pricing_model': "dCPM"
        })

    def add_item(self, version_id, rate="20.00", units=100000, rate_model="CPM", name="Item"):
        return self.line_items.create_line_item({
            'plan_version_id': version_id, 'product_id': self.product.id, 'line_item_name': name,
            'rate_model': rate_model, 'cpm_rate': rate, 'impressions': units,
            'ad_sizes': ":15s", 'site': "MiQ",
        })

    def test_create_version_numbers_and_titles(self):
        first = self.manager.create_version(self.campaign.id)
        second = self.manager.create_version(self.campaign.id, "Upweighted Video")

        assert (first.version_number, first.title) == (1, "Version 1")
        assert (second.version_number, second.title) == (2, "Upweighted Video")
        assert second.total_budget == Decimal("0.00")
        assert second.total_impressions == 0
        assert second.is_active

    def test_create_version_missing_campaign(self):
        with pytest.raises(NotFoundError):
            self.manager.create_version(99)
        assert self.store.count(PlanVersion) == 0

    def test_create_version_blank_title(self):
        with pytest.raises(ValidationError):
            self.manager.create_version(self.campaign.id, "  ")

    def test_version_numbers_are_not_unique_after_delete(self):
        self.manager.create_version(self.campaign.id)
        second = self.manager.create_version(self.campaign.id)
        self.manager.delete_version(second.id - 1)

        third = self.manager.create_version(self.campaign.id)

        assert third.version_number == 2
        assert [version.version_number for version in self.manager.list_versions(self.campaign.id)] == [2, 2]

    def test_duplicate_copies_line_items_and_totals(self):
        source = self.manager.create_version(self.campaign.id, "Base")
        self.add_item(source.id, "20.00", 100000, "CPM", "A")
        self.add_item(source.id, "0.04", 250000, "CPCV", "B")
        source = self.manager.get_version(source.id)

        copy = self.manager.duplicate_version(source.id)

        assert copy.title == "Base (Copy)"
        assert copy.version_number == 2
        assert copy.total_budget == source.total_budget
        assert copy.total_impressions == source.total_impressions

        source_items = self.line_items.list_line_items(source.id)
        copied_items = self.line_items.list_line_items(copy.id)
        assert len(copied_items) == len(source_items)
        for original, copied in zip(source_items, copied_items):
            assert copied.id != original.id
            assert copied.plan_version_id == copy.id
            assert (copied.cpm_rate, copied.rate_model, copied.impressions, copied.ad_sizes) == \
                (original.cpm_rate, original.rate_model, original.impressions, original.ad_sizes)

    def test_duplicate_leaves_source_untouched(self):
        source = self.manager.create_version(self.campaign.id)
        item = self.add_item(source.id)

        self.manager.duplicate_version(source.id)

        assert self.store.get(LineItem, item.id) == item
        assert len(self.line_items.list_line_items(source.id)) == 1

    def test_duplicate_rolls_back_on_failure(self):
        source = self.manager.create_version(self.campaign.id)
        self.add_item(source.id, name="A")
        self.add_item(source.id, name="B")
        versions_before = self.store.count(PlanVersion)
        items_before = self.store.count(LineItem)

        original_create = self.store.create
        calls = {'line_items': 0}

        def failing_create(entity_type, data):
            if entity_type is LineItem:
                calls['line_items'] += 1
                if calls['line_items'] == 2:
                    raise RuntimeError("disk full")
            return original_create(entity_type, data)

        with patch.object(self.store, 'create', side_effect=failing_create):
            with pytest.raises(RuntimeError):
                self.manager.duplicate_version(source.id)

        assert self.store.count(PlanVersion) == versions_before
        assert self.store.count(LineItem) == items_before

    def test_duplicate_missing_version(self):
        with pytest.raises(NotFoundError):
            self.manager.duplicate_version(12)

    def test_delete_cascades_to_line_items(self):
        version = self.manager.create_version(self.campaign.id)
        other = self.manager.create_version(self.campaign.id)
        self.add_item(version.id)
        kept = self.add_item(other.id)

        self.manager.delete_version(version.id)

        assert not self.store.exists(PlanVersion, version.id)
        assert self.store.list(LineItem) == [kept]

    def test_delete_missing_version(self):
        with pytest.raises(NotFoundError):
            self.manager.delete_version(5)

    def test_delete_selected_version_falls_back_to_first_remaining(self):
        first = self.manager.create_version(self.campaign.id)
        second = self.manager.create_version(self.campaign.id)
        third = self.manager.create_version(self.campaign.id)

        assert self.manager.delete_version(second.id, selected_version_id=second.id) == first.id
        assert self.manager.delete_version(first.id, selected_version_id=third.id) == third.id

    def test_delete_last_version_leaves_nothing_selected(self):
        only = self.manager.create_version(self.campaign.id)
        assert self.manager.delete_version(only.id, selected_version_id=only.id) is None

    def test_rename_and_set_active(self):
        version = self.manager.create_version(self.campaign.id)

        renamed = self.manager.rename_version(version.id, "Final Plan")
        inactive = self.manager.set_active(version.id, False)

        assert renamed.title == "Final Plan"
        assert inactive.is_active is False

    def test_update_rejects_derived_fields(self):
        version = self.manager.create_version(self.campaign.id)
        with pytest.raises(ValidationError):
            self.manager.update_version(version.id, {'total_budget': "10.00"})

    def test_delete_campaign_cascades(self):
        version = self.manager.create_version(self.campaign.id)
        self.manager.create_version(self.campaign.id)
        self.add_item(version.id)

        deleted = self.manager.delete_campaign(self.campaign.id)

        assert deleted == 2
        assert self.store.count(Campaign) == 0
        assert self.store.count(PlanVersion) == 0
        assert self.store.count(LineItem) == 0

    def test_delete_missing_campaign(self):
        with pytest.raises(NotFoundError):
            self.manager.delete_campaign(77)

    def test_delete_campaign_includes_version_created_while_waiting(self):
        first = self.manager.create_version(self.campaign.id)
        real_version_lock = self.store.version_lock
        requested = threading.Event()
        errors = []

        def tracking_version_lock(version_id):
            requested.set()
            return real_version_lock(version_id)

        def delete():
            try:
                self.manager.delete_campaign(self.campaign.id)
            except Exception as e:
                errors.append(e)

        with real_version_lock(first.id):
            with patch.object(self.store, 'version_lock', side_effect=tracking_version_lock):
                worker = threading.Thread(target=delete)
                worker.start()
                assert requested.wait(5)
                late = self.manager.create_version(self.campaign.id)
        worker.join(5)

        assert not worker.is_alive()
        assert errors == []
        assert not self.store.exists(Campaign, self.campaign.id)
        assert not self.store.exists(PlanVersion, late.id)
        assert self.store.count(PlanVersion) == 0

    def test_duplicate_does_not_wait_on_lock_of_new_version_id(self):
        source = self.manager.create_version(self.campaign.id)
        self.add_item(source.id)
        next_id = source.id + 1
        held = threading.Event()
        release = threading.Event()
        results = []

        def hold_lock():
            with self.store.version_lock(next_id):
                held.set()
                release.wait(5)

        holder = threading.Thread(target=hold_lock)
        holder.start()
        assert held.wait(5)

        worker = threading.Thread(target=lambda: results.append(self.manager.duplicate_version(source.id)))
        worker.start()
        worker.join(5)
        finished = not worker.is_alive()
        release.set()
        holder.join(5)
        worker.join(5)

        assert finished
        assert results[0].id == next_id
        assert results[0].total_budget == self.manager.get_version(source.id).total_budget

"""
End-to-end tests for the media planning workflow through MediaPlanController.
"""

import io
import os
import shutil
import tempfile
from decimal import Decimal
from pathlib import Path

import pandas as pd
import pytest

from models.data_models import PlanVersion
from config.settings import AppConfig
from business_logic.media_plan_controller import MediaPlanController, SAMPLE_CAMPAIGN
from business_logic.error_handler import NotFoundError, ValidationError, ReferenceInUseError


class TestCompleteWorkflow:
    """Test complete media planning workflows end-to-end."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config = AppConfig(seed_sample_campaign=False, export_dir=os.path.join(self.temp_dir, 'exports'))
        self.controller = MediaPlanController(config=self.config)
        self.controller.seed()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    def product_named(self, name):
        return next(product for product in self.controller.list_products() if product.name == name)

    def test_rfp_to_export_workflow(self):
        campaign = self.controller.create_campaign({
            'title': "Holiday Push", 'clientName': "Acme Retail", 'dueDate': "2024-11-01"
        })
        versions = self.controller.list_versions(campaign.id)
        assert [(version.version_number, version.title) for version in versions] == [(1, "Version 1")]
        version_id = versions[0].id

        display = self.product_named("Standard Display")
        youtube = self.product_named("YouTube")

        item = self.controller.add_product_to_plan(version_id, display.id)
        self.controller.add_package_to_plan(
            version_id, youtube.id, ["Reach Package - Bumper Ads"], rate="10.00", units=200000
        )
        self.controller.update_line_item(item.id, {'impressions': 2000000})

        version = self.controller.get_version(version_id)
        assert version.total_budget == Decimal("52000.00")
        assert version.total_impressions == 2200000
        assert version.avg_cpm == Decimal("23.64")
        assert self.controller.check_consistency(version_id).consistent

        copy = self.controller.duplicate_version(version_id)
        assert copy.total_budget == version.total_budget

        workbook = self.controller.export_campaign_workbook(campaign.id)
        sheets = pd.read_excel(io.BytesIO(workbook), sheet_name=None, engine='openpyxl')
        assert list(sheets) == ['Summary', 'Version 1', 'Version 1 (Copy)']
        assert len(sheets['Version 1 (Copy)']) == 2

    def test_configured_defaults_apply_to_new_line_items(self):
        controller = MediaPlanController(config=AppConfig(
            default_site="Publisher Direct", default_rate="12.00", default_units=500000,
            default_rate_model="dCPM", seed_sample_campaign=False
        ))
        controller.seed()
        campaign = controller.create_campaign({'title': "Q1", 'client_name': "Acme"})
        version_id = controller.list_versions(campaign.id)[0].id
        product_id = controller.list_products()[0].id

        item = controller.add_product_to_plan(version_id, product_id)

        assert item.site == "Publisher Direct"
        assert item.rate_model == "dCPM"
        assert item.total_cost == Decimal("6000.00")

    def test_create_campaign_validation(self):
        with pytest.raises(ValidationError):
            self.controller.create_campaign({'title': "No client"})
        assert self.controller.list_campaigns() == []

    def test_delete_campaign_cascades(self):
        campaign = self.controller.create_campaign({'title': "Q1", 'client_name': "Acme"})
        version_id = self.controller.list_versions(campaign.id)[0].id
        item = self.controller.add_product_to_plan(version_id, self.product_named("Audio").id)

        self.controller.delete_campaign(campaign.id)

        with pytest.raises(NotFoundError):
            self.controller.get_campaign(campaign.id)
        with pytest.raises(NotFoundError):
            self.controller.get_version(version_id)
        with pytest.raises(NotFoundError):
            self.controller.get_line_item(item.id)

    def test_product_in_use_cannot_be_deleted(self):
        campaign = self.controller.create_campaign({'title': "Q1", 'client_name': "Acme"})
        version_id = self.controller.list_versions(campaign.id)[0].id
        product = self.product_named("DCO")
        item = self.controller.add_product_to_plan(version_id, product.id)

        with pytest.raises(ReferenceInUseError):
            self.controller.delete_product(product.id)

        self.controller.delete_line_item(item.id)
        self.controller.delete_product(product.id)
        assert product.id not in [candidate.id for candidate in self.controller.list_products()]

    def test_list_products_filters(self):
        video = self.controller.list_products(category="Video")
        searched = self.controller.list_products(search="sigma", category="Video")

        assert all(product.category == "Video" for product in video)
        assert searched
        assert all(product.category == "Video" for product in searched)
        assert "All Categories" not in self.controller.list_categories()

    def test_delete_version_returns_next_selection(self):
        campaign = self.controller.create_campaign({'title': "Q1", 'client_name': "Acme"})
        first = self.controller.list_versions(campaign.id)[0]
        second = self.controller.create_version(campaign.id)

        assert self.controller.delete_version(first.id, selected_version_id=first.id) == second.id
        renamed = self.controller.rename_version(second.id, "Final")
        assert renamed.title == "Final"

    def test_repair_totals(self):
        campaign = self.controller.create_campaign({'title': "Q1", 'client_name': "Acme"})
        version_id = self.controller.list_versions(campaign.id)[0].id
        self.controller.add_product_to_plan(version_id, self.controller.list_products()[0].id)
        self.controller.store.update(PlanVersion, version_id, {'total_budget': Decimal("1.00")})

        reports = self.controller.repair_totals(version_id)

        assert not reports[0].consistent
        assert self.controller.check_consistency(version_id).consistent
        assert all(report.consistent for report in self.controller.repair_totals())

    def test_export_version_csv_and_save_workbook(self):
        campaign = self.controller.create_campaign({'title': "Q1 Launch", 'client_name': "Acme"})
        version_id = self.controller.list_versions(campaign.id)[0].id
        self.controller.add_product_to_plan(version_id, self.controller.list_products()[0].id)

        csv_text = self.controller.export_version_csv(version_id)
        path = self.controller.save_campaign_workbook(campaign.id)

        assert "TOTAL" in csv_text
        assert path.exists()
        assert path.parent == Path(self.config.export_dir)

    def test_missing_entities(self):
        with pytest.raises(NotFoundError):
            self.controller.list_versions(99)
        with pytest.raises(NotFoundError):
            self.controller.list_line_items(99)
        with pytest.raises(NotFoundError):
            self.controller.export_campaign_workbook(99)


class TestSeeding:

    def test_seed_sample_campaign(self):
        controller = MediaPlanController()
        campaign = controller.seed()

        assert campaign.title == SAMPLE_CAMPAIGN['title']
        versions = controller.list_versions(campaign.id)
        assert len(versions) == 1
        assert versions[0].total_budget == Decimal("0.00")
        assert controller.check_consistency(versions[0].id).consistent

    def test_seed_is_skipped_when_disabled(self):
        controller = MediaPlanController(config=AppConfig(seed_catalog=False, seed_sample_campaign=False))

        assert controller.seed() is None
        assert controller.list_products() == []
        assert controller.list_campaigns() == []

    def test_seed_twice_keeps_one_sample(self):
        controller = MediaPlanController()
        controller.seed()

        assert controller.seed() is None
        assert len(controller.list_campaigns()) == 1

"""
Media Plan Controller - Single entry point for the media planning workflow.

This module wires the entity store, product catalog, plan version lifecycle,
line item service, rollups and export behind one interface used by the
Streamlit UI.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from models.data_models import Product, Campaign, PlanVersion, LineItem, ConsistencyReport
from data.store import EntityStore
from data.catalog import ProductCatalog
from data.exporter import PlanExporter
from config.settings import AppConfig
from .line_items import LineItemService
from .plan_validator import CampaignValidator
from .plan_versions import PlanVersionManager
from .rollup import RollupAggregator

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SAMPLE_CAMPAIGN = {
    'title': "Q4 2024 Brand Campaign",
    'client_name': "Global Tech Company",
    'due_date': "December 15, 2024",
    'status': "draft",
}


class MediaPlanController:
    """
    Main controller for the media planning workflow.

    Products, campaigns, plan versions and line items are all managed
    through this class. Line item writes keep the owning version's totals
    in step; campaign and version deletes cascade to their children.
    """

    def __init__(self, store: Optional[EntityStore] = None, config: Optional[AppConfig] = None):
        """
        Initialize the media plan controller.

        Args:
            store: Optional EntityStore instance
            config: Optional AppConfig; defaults are used when omitted
        """
        self.store = store or EntityStore()
        self.config = config or AppConfig()
        self.rollup = RollupAggregator(self.store)
        self.catalog = ProductCatalog(self.store)
        self.versions = PlanVersionManager(self.store, self.rollup)
        self.line_items = LineItemService(self.store, self.rollup)
        self.exporter = PlanExporter()

        logger.info("MediaPlanController initialized")

    def seed(self) -> Optional[Campaign]:
        """
        Load the configured startup data.

        Returns:
            The sample campaign if one was created, else None
        """
        if self.config.seed_catalog:
            self.catalog.seed()

        if self.config.seed_sample_campaign and self.store.count(Campaign) == 0:
            campaign = self.create_campaign(dict(SAMPLE_CAMPAIGN))
            logger.info(f"Seeded sample campaign {campaign.id}")
            return campaign
        return None

    # Products

    def list_products(self, search: Optional[str] = None, category: Optional[str] = None) -> List[Product]:
        """Products filtered by an optional search query and category."""
        products = self.catalog.search_products(search) if search else self.catalog.list_products()
        by_category = {product.id for product in self.catalog.products_by_category(category)}
        return [product for product in products if product.id in by_category]

    def get_product(self, product_id: int) -> Product:
        return self.catalog.get_product(product_id)

    def create_product(self, data: Dict[str, Any]) -> Product:
        return self.catalog.create_product(data)

    def update_product(self, product_id: int, changes: Dict[str, Any]) -> Product:
        return self.catalog.update_product(product_id, changes)

    def delete_product(self, product_id: int):
        self.catalog.delete_product(product_id)

    def list_categories(self) -> List[str]:
        return self.catalog.list_categories()

    def import_products_csv(self, source: Union[str, Path, Any]) -> List[Product]:
        return self.catalog.import_csv(source)

    # Campaigns

    def list_campaigns(self) -> List[Campaign]:
        return self.store.list(Campaign)

    def get_campaign(self, campaign_id: int) -> Campaign:
        return self.store.require(Campaign, campaign_id)

    def create_campaign(self, data: Dict[str, Any]) -> Campaign:
        """
        Create a campaign together with its first plan version.

        Raises:
            ValidationError: If title or client name is missing
        """
        values = CampaignValidator().validate_create(data)
        with self.store.transaction():
            campaign = self.store.create(Campaign, values)
            self.versions.create_version(campaign.id)

        logger.info(f"Created campaign {campaign.id}: {campaign.title}")
        return campaign

    def update_campaign(self, campaign_id: int, changes: Dict[str, Any]) -> Campaign:
        values = CampaignValidator().validate_update(changes)
        campaign = self.store.update(Campaign, campaign_id, values)
        logger.info(f"Updated campaign {campaign_id}")
        return campaign

    def delete_campaign(self, campaign_id: int):
        """
        Delete a campaign with all of its versions and line items.

        Raises:
            NotFoundError: If the campaign does not exist
        """
        deleted = self.versions.delete_campaign(campaign_id)
        logger.info(f"Deleted campaign {campaign_id} and {deleted} plan version(s)")

    # Plan versions

    def list_versions(self, campaign_id: int) -> List[PlanVersion]:
        self.store.require(Campaign, campaign_id)
        return self.versions.list_versions(campaign_id)

    def get_version(self, version_id: int) -> PlanVersion:
        return self.versions.get_version(version_id)

    def create_version(self, campaign_id: int, title: Optional[str] = None) -> PlanVersion:
        return self.versions.create_version(campaign_id, title)

    def duplicate_version(self, version_id: int) -> PlanVersion:
        return self.versions.duplicate_version(version_id)

    def delete_version(self, version_id: int, selected_version_id: Optional[int] = None) -> Optional[int]:
        return self.versions.delete_version(version_id, selected_version_id)

    def rename_version(self, version_id: int, title: str) -> PlanVersion:
        return self.versions.rename_version(version_id, title)

    # Line items

    def list_line_items(self, plan_version_id: int) -> List[LineItem]:
        self.store.require(PlanVersion, plan_version_id)
        return self.line_items.list_line_items(plan_version_id)

    def get_line_item(self, line_item_id: int) -> LineItem:
        return self.line_items.get_line_item(line_item_id)

    def create_line_item(self, data: Dict[str, Any]) -> LineItem:
        return self.line_items.create_line_item(data)

    def update_line_item(self, line_item_id: int, changes: Dict[str, Any]) -> LineItem:
        return self.line_items.update_line_item(line_item_id, changes)

    def delete_line_item(self, line_item_id: int):
        self.line_items.delete_line_item(line_item_id)

    def delete_line_items(self, line_item_ids: List[int]):
        self.line_items.delete_line_items(line_item_ids)

    def duplicate_line_item(self, line_item_id: int) -> LineItem:
        return self.line_items.duplicate_line_item(line_item_id)

    def add_product_to_plan(self, plan_version_id: int, product_id: int, **options: Any) -> LineItem:
        """Add a catalog product as a line item, using configured defaults for unset options."""
        options = self._line_item_defaults(options)
        options.setdefault('rate_model', self.config.default_rate_model)
        return self.line_items.add_product_to_plan(plan_version_id, product_id, **options)

    def add_package_to_plan(self, plan_version_id: int, product_id: int,
                            placement_names: List[str], **options: Any) -> List[LineItem]:
        """Add selected package placements; packages default to dCPM unless a rate model is given."""
        options = self._line_item_defaults(options)
        return self.line_items.add_package_to_plan(plan_version_id, product_id, placement_names, **options)

    def _line_item_defaults(self, options: Dict[str, Any]) -> Dict[str, Any]:
        options = dict(options)
        options.setdefault('site', self.config.default_site)
        options.setdefault('rate', self.config.default_rate)
        options.setdefault('units', self.config.default_units)
        return options

    # Rollups

    def recompute_version_totals(self, plan_version_id: int) -> Optional[PlanVersion]:
        return self.rollup.recompute_version_totals(plan_version_id)

    def check_consistency(self, plan_version_id: int, raise_on_drift: bool = False) -> ConsistencyReport:
        return self.rollup.check_consistency(plan_version_id, raise_on_drift)

    def repair_totals(self, plan_version_id: Optional[int] = None) -> List[ConsistencyReport]:
        """Repair one version's totals, or every version's when no id is given."""
        if plan_version_id is None:
            return self.rollup.repair_all()
        return [self.rollup.repair(plan_version_id)]

    # Export

    def export_campaign_workbook(self, campaign_id: int) -> bytes:
        """XLSX workbook with a summary sheet and one sheet per plan version."""
        campaign = self.get_campaign(campaign_id)
        versions = self.versions.list_versions(campaign_id)
        line_items = {version.id: self.line_items.list_line_items(version.id) for version in versions}
        return self.exporter.export_workbook(campaign, versions, line_items)

    def export_version_csv(self, plan_version_id: int) -> str:
        version = self.get_version(plan_version_id)
        return self.exporter.export_version_csv(version, self.line_items.list_line_items(plan_version_id))

    def save_campaign_workbook(self, campaign_id: int, directory: Optional[Union[str, Path]] = None) -> Path:
        """
        Write the campaign workbook to the export directory.

        Returns:
            Path of the written file
        """
        campaign = self.get_campaign(campaign_id)
        target_dir = Path(directory or self.config.export_dir)
        target_dir.mkdir(parents=True, exist_ok=True)

        path = target_dir / self.exporter.export_filename(campaign)
        path.write_bytes(self.export_campaign_workbook(campaign_id))
        logger.info(f"Saved campaign {campaign_id} workbook to {path}")
        return path

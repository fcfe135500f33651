"""
Line item service.

Creates, edits and deletes media plan line items. Every write derives the
line item's total cost and rolls up the owning plan version in the same
transaction, so a version's totals always match its line items.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from models.data_models import Product, PlanVersion, LineItem, RateModel
from data.store import EntityStore
from data.catalog import parse_package_placements
from .cost_calculator import compute_total_cost
from .error_handler import ValidationError
from .plan_validator import LineItemValidator
from .plan_versions import copy_line_item_fields, COPY_SUFFIX
from .rollup import RollupAggregator

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Updates touching any of these recompute total_cost
PRICING_FIELDS = ('cpm_rate', 'impressions', 'rate_model')

DEFAULT_SITE = "MiQ"
DEFAULT_RATE = "25.00"
DEFAULT_UNITS = 1000000


class LineItemService:
    """
    Line item writes with cost derivation and version rollup.

    Each public write holds the owning version's lock and runs inside one
    store transaction. If validation, the write or the rollup fails,
    nothing is kept.
    """

    def __init__(self, store: EntityStore, rollup: Optional[RollupAggregator] = None):
        self.store = store
        self.rollup = rollup or RollupAggregator(store)

    def list_line_items(self, plan_version_id: int) -> List[LineItem]:
        """Line items of a version ordered by sort order, then id."""
        items = self.store.list(LineItem, plan_version_id=plan_version_id)
        return sorted(items, key=lambda item: (item.sort_order, item.id))

    def get_line_item(self, line_item_id: int) -> LineItem:
        return self.store.require(LineItem, line_item_id)

    def _insert(self, values: Dict[str, Any]) -> LineItem:
        values = dict(values)
        values.setdefault('rate_model', RateModel.CPM.value)
        values['total_cost'] = compute_total_cost(
            values['rate_model'], values.get('cpm_rate'), values.get('impressions')
        )
        return self.store.create(LineItem, values)

    def create_line_item(self, data: Dict[str, Any]) -> LineItem:
        """
        Create a line item and roll up its version.

        A supplied total_cost is ignored; it is derived from rate model,
        rate and units.

        Raises:
            ValidationError: If the payload is malformed
            NotFoundError: If the plan version does not exist
        """
        values = LineItemValidator().validate_create(data)
        version_id = values['plan_version_id']

        with self.store.version_lock(version_id), self.store.transaction():
            self.store.require(PlanVersion, version_id)
            item = self._insert(values)
            self.rollup.recompute_version_totals(version_id)

        logger.info(f"Created line item {item.id} in plan version {version_id}: total cost {item.total_cost}")
        return item

    def update_line_item(self, line_item_id: int, changes: Dict[str, Any]) -> LineItem:
        """
        Apply a field-level edit to a line item.

        total_cost is recomputed when cpm_rate, impressions or rate_model
        change, then the version is rolled up.

        Raises:
            NotFoundError: If the line item does not exist
            ValidationError: If a field is read-only or malformed
        """
        current = self.store.require(LineItem, line_item_id)
        values = LineItemValidator().validate_update(changes, current)
        version_id = current.plan_version_id

        with self.store.version_lock(version_id), self.store.transaction():
            current = self.store.require(LineItem, line_item_id)
            if any(name in values for name in PRICING_FIELDS):
                values['total_cost'] = compute_total_cost(
                    values.get('rate_model', current.rate_model),
                    values.get('cpm_rate', current.cpm_rate),
                    values.get('impressions', current.impressions)
                )
            item = self.store.update(LineItem, line_item_id, values)
            self.rollup.recompute_version_totals(version_id)

        logger.info(f"Updated line item {line_item_id}: {', '.join(sorted(values))}")
        return item

    def delete_line_item(self, line_item_id: int):
        """
        Delete a line item and roll up its version.

        Raises:
            NotFoundError: If the line item does not exist
        """
        current = self.store.require(LineItem, line_item_id)
        version_id = current.plan_version_id

        with self.store.version_lock(version_id), self.store.transaction():
            self.store.delete(LineItem, line_item_id)
            self.rollup.recompute_version_totals(version_id)

        logger.info(f"Deleted line item {line_item_id} from plan version {version_id}")

    def delete_line_items(self, line_item_ids: Iterable[int]):
        """Delete several line items of one version together (e.g. a whole package row)."""
        line_item_ids = list(line_item_ids)
        if not line_item_ids:
            return

        items = [self.store.require(LineItem, line_item_id) for line_item_id in line_item_ids]
        version_ids = {item.plan_version_id for item in items}
        if len(version_ids) > 1:
            raise ValidationError("Line items must belong to the same plan version")
        version_id = version_ids.pop()

        with self.store.version_lock(version_id), self.store.transaction():
            for line_item_id in line_item_ids:
                self.store.delete(LineItem, line_item_id)
            self.rollup.recompute_version_totals(version_id)

        logger.info(f"Deleted {len(line_item_ids)} line item(s) from plan version {version_id}")

    def duplicate_line_item(self, line_item_id: int) -> LineItem:
        """
        Copy a line item within its version.

        The copy's name gets a " (Copy)" suffix; so does its placement name,
        which falls back to the line item name when blank.
        """
        source = self.store.require(LineItem, line_item_id)
        version_id = source.plan_version_id

        with self.store.version_lock(version_id), self.store.transaction():
            fields = copy_line_item_fields(source)
            fields['plan_version_id'] = version_id
            fields['line_item_name'] = f"{source.line_item_name}{COPY_SUFFIX}"
            fields['placement_name'] = f"{source.placement_name or source.line_item_name}{COPY_SUFFIX}"
            item = self._insert(fields)
            self.rollup.recompute_version_totals(version_id)

        logger.info(f"Duplicated line item {line_item_id} as {item.id}")
        return item

    def add_product_to_plan(self, plan_version_id: int, product_id: int,
                            placement_name: Optional[str] = None,
                            start_date: str = "", end_date: str = "",
                            rate_model: str = RateModel.CPM.value,
                            rate: Any = DEFAULT_RATE, units: Any = DEFAULT_UNITS,
                            site: str = DEFAULT_SITE) -> LineItem:
        """
        Add a catalog product to a plan version as a new line item.

        Targeting details, ad sizes and placement name are copied from the
        product at this point; later product edits do not change the line item.

        Raises:
            NotFoundError: If the product or plan version does not exist
            ValidationError: If rate, units or rate model are malformed
        """
        product = self.store.require(Product, product_id)
        placement = placement_name if placement_name and placement_name.strip() else product.placement_name

        return self.create_line_item({
            'plan_version_id': plan_version_id,
            'product_id': product.id,
            'line_item_name': placement,
            'site': site,
            'placement_name': placement,
            'targeting_details': product.targeting_details,
            'ad_sizes': product.ad_sizes,
            'start_date': start_date,
            'end_date': end_date,
            'rate_model': rate_model,
            'cpm_rate': rate,
            'flat_rate': "0",
            'impressions': units,
            'sort_order': 0,
        })

    def add_package_to_plan(self, plan_version_id: int, product_id: int,
                            placement_names: List[str],
                            start_date: str = "", end_date: str = "",
                            rate_model: str = RateModel.DCPM.value,
                            rate: Any = DEFAULT_RATE, units: Any = DEFAULT_UNITS,
                            site: str = DEFAULT_SITE) -> List[LineItem]:
        """
        Add selected placements of a package product, one line item each.

        Line items are named "<product name> - <placement name>" and carry the
        placement's own targeting and ad sizes. All are created or none are.

        Raises:
            NotFoundError: If the product or plan version does not exist
            ValidationError: If the product is not a package, no placement is
                selected, or a placement name is unknown
        """
        product = self.store.require(Product, product_id)
        if not product.is_package:
            raise ValidationError(f"Product {product.name} is not a package")
        if not placement_names:
            raise ValidationError("Select at least one placement")

        placements = {placement.name: placement for placement in parse_package_placements(product)}
        unknown = [name for name in placement_names if name not in placements]
        if unknown:
            raise ValidationError([f"Unknown package placement: {name}" for name in unknown])

        payloads = []
        for name in placement_names:
            placement = placements[name]
            payloads.append(LineItemValidator().validate_create({
                'plan_version_id': plan_version_id,
                'product_id': product.id,
                'line_item_name': f"{product.name} - {placement.name}",
                'site': site,
                'placement_name': placement.name,
                'targeting_details': placement.targeting,
                'ad_sizes': placement.ad_sizes,
                'start_date': start_date,
                'end_date': end_date,
                'rate_model': rate_model,
                'cpm_rate': rate,
                'flat_rate': "0",
                'impressions': units,
                'sort_order': 0,
            }))

        with self.store.version_lock(plan_version_id), self.store.transaction():
            self.store.require(PlanVersion, plan_version_id)
            items = [self._insert(values) for values in payloads]
            self.rollup.recompute_version_totals(plan_version_id)

        logger.info(f"Added {len(items)} {product.name} placement(s) to plan version {plan_version_id}")
        return items

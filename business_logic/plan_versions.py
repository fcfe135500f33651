"""
Plan version lifecycle: create, duplicate, rename and delete media plan versions.
"""

import logging
from contextlib import ExitStack
from typing import Any, Dict, List, Optional

from models.data_models import Campaign, PlanVersion, LineItem
from data.store import EntityStore
from .cost_calculator import ZERO
from .error_handler import ValidationError
from .plan_validator import PlanVersionValidator
from .rollup import RollupAggregator

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

COPY_SUFFIX = " (Copy)"

# Fields that are not carried over when a line item is copied
LINE_ITEM_COPY_EXCLUDED = ('id', 'plan_version_id', 'created_at', 'updated_at')


def copy_line_item_fields(item: LineItem) -> Dict[str, Any]:
    """Field values of a line item minus its identity and timestamps."""
    return {
        name: getattr(item, name)
        for name in LineItem.field_names()
        if name not in LINE_ITEM_COPY_EXCLUDED
    }


class PlanVersionManager:
    """
    Manages the plan versions of a campaign.

    A version's totals are never written here directly; they come from the
    RollupAggregator. Duplicates and deletes run in a single store
    transaction, so a failure leaves no partial copy or orphaned line items.
    """

    def __init__(self, store: EntityStore, rollup: Optional[RollupAggregator] = None):
        self.store = store
        self.rollup = rollup or RollupAggregator(store)

    def list_versions(self, campaign_id: int) -> List[PlanVersion]:
        """Versions of a campaign ordered by version number."""
        versions = self.store.list(PlanVersion, campaign_id=campaign_id)
        return sorted(versions, key=lambda version: (version.version_number, version.id))

    def get_version(self, version_id: int) -> PlanVersion:
        return self.store.require(PlanVersion, version_id)

    def _new_version(self, campaign_id: int, title: Optional[str]) -> PlanVersion:
        version_number = self.store.count(PlanVersion, campaign_id=campaign_id) + 1
        if title is not None and not str(title).strip():
            raise ValidationError("title must not be blank")

        return self.store.create(PlanVersion, {
            'campaign_id': campaign_id,
            'version_number': version_number,
            'title': str(title).strip() if title is not None else f"Version {version_number}",
            'total_budget': ZERO,
            'total_impressions': 0,
            'avg_cpm': ZERO,
            'is_active': True,
        })

    def create_version(self, campaign_id: int, title: Optional[str] = None) -> PlanVersion:
        """
        Create an empty version for a campaign.

        The version number is one more than the number of versions the
        campaign has; the title defaults to "Version N".

        Raises:
            NotFoundError: If the campaign does not exist
        """
        with self.store.transaction():
            self.store.require(Campaign, campaign_id)
            version = self._new_version(campaign_id, title)

        logger.info(f"Created plan version {version.id} ({version.title}) for campaign {campaign_id}")
        return version

    def duplicate_version(self, source_version_id: int) -> PlanVersion:
        """
        Copy a version and all of its line items into a new version.

        The copy is titled "<source title> (Copy)". Totals are rolled up once
        every line item has been copied. If any copy fails, nothing is kept.

        Raises:
            NotFoundError: If the source version does not exist
        """
        with self.store.version_lock(source_version_id), self.store.transaction():
            source = self.store.require(PlanVersion, source_version_id)
            line_items = self.store.list(LineItem, plan_version_id=source_version_id)

            version = self._new_version(source.campaign_id, f"{source.title}{COPY_SUFFIX}")
            for item in line_items:
                fields = copy_line_item_fields(item)
                fields['plan_version_id'] = version.id
                self.store.create(LineItem, fields)

            version = self.rollup.recompute_in_transaction(version.id)

        logger.info(
            f"Duplicated plan version {source_version_id} into {version.id} "
            f"with {len(line_items)} line item(s)"
        )
        return version

    def delete_version(self, version_id: int, selected_version_id: Optional[int] = None) -> Optional[int]:
        """
        Delete a version together with its line items.

        Args:
            version_id: Version to delete
            selected_version_id: Version currently selected by the caller

        Returns:
            The version the caller should select next: the current selection if
            it still exists, else the first remaining version of the campaign,
            else None

        Raises:
            NotFoundError: If the version does not exist
        """
        with self.store.version_lock(version_id), self.store.transaction():
            version = self.store.require(PlanVersion, version_id)
            line_items = self.store.list(LineItem, plan_version_id=version_id)
            for item in line_items:
                self.store.delete(LineItem, item.id)
            self.store.delete(PlanVersion, version_id)

        logger.info(f"Deleted plan version {version_id} and {len(line_items)} line item(s)")
        return self.next_selection(version.campaign_id, selected_version_id)

    def next_selection(self, campaign_id: int, selected_version_id: Optional[int] = None) -> Optional[int]:
        """Resolve which version to show after a change; never a deleted id."""
        if selected_version_id is not None:
            selected = self.store.get(PlanVersion, selected_version_id)
            if selected is not None and selected.campaign_id == campaign_id:
                return selected.id

        remaining = self.list_versions(campaign_id)
        return remaining[0].id if remaining else None

    def update_version(self, version_id: int, changes: Dict[str, Any]) -> PlanVersion:
        """
        Update the editable fields of a version (title, is_active).

        Raises:
            NotFoundError: If the version does not exist
            ValidationError: If a derived or fixed field is included
        """
        values = PlanVersionValidator().validate_update(changes)
        with self.store.version_lock(version_id):
            version = self.store.update(PlanVersion, version_id, values)
        logger.info(f"Updated plan version {version_id}")
        return version

    def rename_version(self, version_id: int, title: str) -> PlanVersion:
        return self.update_version(version_id, {'title': title})

    def set_active(self, version_id: int, is_active: bool) -> PlanVersion:
        return self.update_version(version_id, {'is_active': is_active})

    def delete_campaign(self, campaign_id: int) -> int:
        """
        Delete a campaign together with every version and line item it owns.

        Returns:
            Number of plan versions deleted

        Raises:
            NotFoundError: If the campaign does not exist
        """
        while True:
            version_ids = sorted(version.id for version in self.list_versions(campaign_id))
            # Version locks are always taken before the store transaction
            with ExitStack() as stack:
                for version_id in version_ids:
                    stack.enter_context(self.store.version_lock(version_id))
                stack.enter_context(self.store.transaction())
                self.store.require(Campaign, campaign_id)

                current_ids = sorted(version.id for version in self.list_versions(campaign_id))
                if current_ids != version_ids:
                    logger.info(f"Versions of campaign {campaign_id} changed while locking; retrying delete")
                    continue

                for version_id in version_ids:
                    self.delete_version(version_id)
                self.store.delete(Campaign, campaign_id)
                return len(version_ids)

"""
Core data models for the Media Plan Builder application.
"""

from dataclasses import dataclass, field, fields, asdict
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Any


class RateModel(Enum):
    """Pricing models a line item can be bought on."""
    CPM = "CPM"
    DCPM = "dCPM"
    CPCV = "CPCV"
    CPC = "CPC"


PRODUCT_CATEGORIES = ["Display", "Video", "Audio", "Social", "YouTube"]


def _serialize(value: Any) -> Any:
    if isinstance(value, Decimal):
        return f"{value.quantize(Decimal('0.01')):f}"
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class EntityMixin:
    """Shared helpers for stored entities."""

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to plain values, decimals as two-decimal strings."""
        return {key: _serialize(value) for key, value in asdict(self).items()}


@dataclass
class PackagePlacement:
    """One placement inside a package product (e.g. a YouTube format)."""
    name: str
    ad_sizes: str = ""
    targeting: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {'name': self.name, 'adSizes': self.ad_sizes, 'targeting': self.targeting}


@dataclass
class Product(EntityMixin):
    """Catalog entry that can be added to a media plan."""
    id: int
    name: str
    category: str
    targeting_details: str
    placement_name: str
    ad_sizes: str
    pricing_model: str
    is_package: bool = False
    package_placements: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class Campaign(EntityMixin):
    """RFP response that owns one or more plan versions."""
    id: int
    title: str
    client_name: str
    due_date: Optional[str] = None
    campaign_start_date: Optional[str] = None
    campaign_end_date: Optional[str] = None
    status: str = "draft"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class PlanVersion(EntityMixin):
    """A version of a campaign's media plan. Totals are derived from line items."""
    id: int
    campaign_id: int
    version_number: int
    title: str
    total_budget: Decimal = field(default_factory=lambda: Decimal("0.00"))
    total_impressions: int = 0
    avg_cpm: Decimal = field(default_factory=lambda: Decimal("0.00"))
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class LineItem(EntityMixin):
    """A product placement bought within a plan version."""
    id: int
    plan_version_id: int
    product_id: int
    line_item_name: str
    site: str = ""
    placement_name: str = ""
    targeting_details: str = ""
    ad_sizes: str = ""
    start_date: str = ""
    end_date: str = ""
    rate_model: str = RateModel.CPM.value
    cpm_rate: Decimal = field(default_factory=lambda: Decimal("0.00"))
    flat_rate: Decimal = field(default_factory=lambda: Decimal("0.00"))
    impressions: int = 0
    total_cost: Decimal = field(default_factory=lambda: Decimal("0.00"))
    sort_order: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class VersionTotals:
    """Aggregate figures computed from a set of line items."""
    total_budget: Decimal
    total_impressions: int
    avg_cpm: Decimal


@dataclass
class ConsistencyReport:
    """Stored vs. recomputed totals for a plan version."""
    plan_version_id: int
    stored: VersionTotals
    expected: VersionTotals
    consistent: bool

# Data layer for media planner

from .store import EntityStore
from .catalog import ProductCatalog, ProductCSVParser, split_ad_sizes, extract_notice, parse_package_placements
from .exporter import PlanExporter

__all__ = [
    'EntityStore', 'ProductCatalog', 'ProductCSVParser', 'PlanExporter',
    'split_ad_sizes', 'extract_notice', 'parse_package_placements'
]

"""
Product catalog: seed products, CSV import and product text helpers.
"""

import json
import logging
import re
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import pandas as pd

from models.data_models import Product, LineItem, PackagePlacement
from business_logic.error_handler import ReferenceInUseError, ValidationError
from business_logic.plan_validator import ProductValidator
from .store import EntityStore

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ALL_CATEGORIES = "All Categories"

STANDARD_DISPLAY_SIZES = (
    "Desktop: 300x250, 300x600, 120x600, 160x600, 728x90\n"
    "Tablet: 300x250, 300x600, 120x600, 160x600, 728x90\n"
    "Mobile: 300x250,300x600, 300x50, 320x50"
)

YOUTUBE_PLACEMENTS = [
    PackagePlacement(
        name="Reach Package - Bumper Ads",
        ad_sizes=":06s",
        targeting="Non-skippable :06s bumpers served to the BRAND audience for efficient reach.",
    ),
    PackagePlacement(
        name="Reach Package - Non-Skippable In-Stream",
        ad_sizes=":15s",
        targeting="Non-skippable :15s in-stream units for guaranteed message delivery.",
    ),
    PackagePlacement(
        name="Engagement Package - Skippable In-Stream",
        ad_sizes=":15s | :30s",
        targeting="Skippable in-stream units billed on completed views.",
    ),
    PackagePlacement(
        name="Engagement Package - In-Feed Video",
        ad_sizes="Thumbnail + :15s | :30s",
        targeting="In-feed discovery placements across YouTube search and watch next.",
    ),
]

SEED_PRODUCTS: List[Dict[str, Any]] = [
    {
        'name': "Standard Display",
        'category': "Display",
        'targeting_details': "MiQ will utilize Sigma Audiences to target BRAND's target audience. MiQ Sigma Audiences uses the power of generative AI to deliver fast, customized audience activation across diverse formats, channels and DSP platforms.",
        'placement_name': "MiQ Sigma Audiences_Standard Display_Desktop/Tablet/Mobile_Package",
        'ad_sizes': STANDARD_DISPLAY_SIZES,
        'pricing_model': "dCPM",
    },
    {
        'name': "Online Video",
        'category': "Video",
        'targeting_details': "MiQ's Sigma Audiences uses the power of generative AI to deliver fast, customized audience activation to ensure MiQ is reaching BRAND target audience at scale and at the right time, via online video units across desktop, tablet, and mobile.",
        'placement_name': "MiQ Sigma Audiences_Online Video_Desktop/Tablet/Mobile_Package",
        'ad_sizes': ":06s | :15s | :30s",
        'pricing_model': "dCPM",
    },
    {
        'name': "CTV/OTT",
        'category': "Video",
        'targeting_details': "MiQ to utilize Connected TV to serve BRAND creatives to the desired audience. Connected TV allows for 100% viewability, 97% Completion Rate, and 90% Streamed to TV.",
        'placement_name': "MiQ_Connected TV_Video_Package",
        'ad_sizes': ":15s | :30s",
        'pricing_model': "dCPM",
    },
    {
        'name': "Sigma TV Targeting - Video",
        'category': "Video",
        'targeting_details': "MiQ's data-driving 1:1 TV product, providing second-by-second viewership data about the ads and content the BRAND target audience is watching on TV.",
        'placement_name': "MiQ Sigma Viewing Audiences_ACR Retargeting_Video_Desktop/Tablet/Mobile_Package",
        'ad_sizes': ":15s | :30s",
        'pricing_model': "dCPM",
    },
    {
        'name': "Sigma TV Targeting - Display",
        'category': "Display",
        'targeting_details': "MiQ's data-driving 1:1 TV product, providing second-by-second viewership data about the ads and content the BRAND target audience is watching on TV.",
        'placement_name': "MiQ Sigma Viewing Audiences_ACR Retargeting_Standard Display_Desktop/Tablet/Mobile_Package",
        'ad_sizes': STANDARD_DISPLAY_SIZES,
        'pricing_model': "dCPM",
    },
    {
        'name': "High Impact",
        'category': "Display",
        'targeting_details': "MiQ will utilize Sigma Audiences to target BRAND target audience via custom high impact units across desktop, tablet, and mobile.",
        'placement_name': "MiQ Sigma Audiences_High Impact XXX_Rich Media_Desktop/Mobile_Package",
        'ad_sizes': "Custom sizes depending on High Impact unit",
        'pricing_model': "dCPM",
    },
    {
        'name': "Native - Display",
        'category': "Display",
        'targeting_details': "MiQ will utilize Sigma Audiences to target BRAND target audience via rich media Native units which will drive awareness across desktop and mobile.",
        'placement_name': "MiQ Sigma Audiences_Native_Desktop/Tablet/Mobile_Package",
        'ad_sizes': "Square: 627 x 627 pixels\nRectangle: minimum 1200 x 627 and maximum 2000 x 1047",
        'pricing_model': "dCPM",
    },
    {
        'name': "Native - Video",
        'category': "Video",
        'targeting_details': "MiQ will utilize Sigma Audiences to target BRAND target audience via rich media Native video units across desktop and mobile.",
        'placement_name': "MiQ Sigma Audiences_Native_Video_Desktop/Tablet/Mobile_Package",
        'ad_sizes': "Maximum 60 seconds",
        'pricing_model': "dCPM",
    },
    {
        'name': "Audio",
        'category': "Audio",
        'targeting_details': "MiQ's Programmatic Audio offering grants access to premium audio including Spotify, Audiology, TargetSpot, Triton, and more.",
        'placement_name': "MiQ_Programmatic Audio_Package",
        'ad_sizes': ":06s | :15s | :30s",
        'pricing_model': "dCPM",
    },
    {
        'name': "Social Boost",
        'category': "Social",
        'targeting_details': "MiQ is able to ingest BRAND social media posts and connect them to premium mobile web content, amplifying the impact of these posts.",
        'placement_name': "MiQ_BRAND_Social Boost_Social Units_Package",
        'ad_sizes': "300x250, 300x600",
        'pricing_model': "dCPM",
    },
    {
        'name': "DCO",
        'category': "Display",
        'targeting_details': "MiQ will use Dynamic Creative Optimization to build out and target users who have engaged with elements/products.",
        'placement_name': "MiQ Sigma Audiences_Dynamic XXX_Desktop/Tablet/Mobile_Package",
        'ad_sizes': "Depends on channel being used",
        'pricing_model': "dCPM",
    },
    {
        'name': "Shoppable",
        'category': "Display",
        'targeting_details': "MiQ will use Shoppable creative to shorten the path to purchase, collecting unique data about consumer behavior.",
        'placement_name': "MiQ Sigma Buying Audiences_Shoppable Display_Desktop/Mobile_Package",
        'ad_sizes': "Desktop: 300x600, 300x250, 160x600, 728x90, 970x250\nMobile: 300x250",
        'pricing_model': "dCPM",
    },
    {
        'name': "YouTube",
        'category': "YouTube",
        'targeting_details': "MiQ will dynamically target key BRAND audience on YouTube (via DV360) with in-stream and discovery formats. **Minimum spend of $10,000 per package applies.**",
        'placement_name': "YouTube packages",
        'ad_sizes': ":06s | :15s | :30s",
        'pricing_model': "dCPM",
        'is_package': True,
        'package_placements': json.dumps([p.to_dict() for p in YOUTUBE_PLACEMENTS]),
    },
]

# Accepted CSV headers mapped to product fields
CSV_COLUMNS = {
    'name': 'name',
    'category': 'category',
    'targetingdetails': 'targeting_details',
    'targeting_details': 'targeting_details',
    'placementname': 'placement_name',
    'placement_name': 'placement_name',
    'adsizes': 'ad_sizes',
    'ad_sizes': 'ad_sizes',
    'pricingmodel': 'pricing_model',
    'pricing_model': 'pricing_model',
}

PLATFORM_PATTERN = re.compile(r'(?=\b(?:Desktop|Tablet|Mobile):)')
NOTICE_PATTERN = re.compile(r'\*\*(.*?)\*\*', re.DOTALL)


def split_ad_sizes(ad_sizes: Optional[str]) -> "OrderedDict[str, List[str]]":
    """
    Split an ad sizes string into platform groups.

    "Desktop: 300x250, 728x90 Mobile: 320x50" gives
    {'Desktop': ['300x250', '728x90'], 'Mobile': ['320x50']}. Text without
    platform prefixes is returned under the key 'All'.
    """
    groups: "OrderedDict[str, List[str]]" = OrderedDict()
    if not ad_sizes or not ad_sizes.strip():
        return groups

    segments = [segment.strip() for segment in PLATFORM_PATTERN.split(ad_sizes) if segment.strip()]
    for segment in segments:
        platform, separator, sizes = segment.partition(':')
        if separator and platform in ('Desktop', 'Tablet', 'Mobile'):
            groups[platform] = [size.strip() for size in sizes.split(',') if size.strip()]
        else:
            groups.setdefault('All', []).append(segment)

    return groups


def extract_notice(targeting_details: Optional[str]) -> Tuple[Optional[str], str]:
    """
    Pull the **notice** segment out of targeting text.

    Returns:
        Tuple of (notice or None, targeting text without the notice)
    """
    if not targeting_details:
        return None, ""

    match = NOTICE_PATTERN.search(targeting_details)
    if not match:
        return None, targeting_details.strip()

    notice = match.group(1).strip()
    remaining = NOTICE_PATTERN.sub('', targeting_details, count=1)
    remaining = re.sub(r'\s{2,}', ' ', remaining).strip()
    return notice or None, remaining


def parse_package_placements(product: Product) -> List[PackagePlacement]:
    """Decode a package product's placements. Non-package products have none."""
    if not product.is_package or not product.package_placements:
        return []

    try:
        raw = json.loads(product.package_placements)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Product {product.id} has malformed package placements: {e}")

    return [
        PackagePlacement(
            name=str(item.get('name', '')).strip(),
            ad_sizes=str(item.get('adSizes', '') or ''),
            targeting=str(item.get('targeting', '') or ''),
        )
        for item in raw
    ]


class ProductCSVParser:
    """
    Parser for product catalog CSV files.

    Expects a header row with name, category, targetingDetails, placementName,
    adSizes and pricingModel columns (snake_case headers are accepted too).
    """

    def __init__(self, source: Union[str, Path, Any]):
        """
        Initialize the parser.

        Args:
            source: File path or a file-like object (e.g. a Streamlit upload)
        """
        if isinstance(source, (str, Path)):
            source = Path(source)
            if not source.exists():
                raise FileNotFoundError(f"Product CSV file not found: {source}")
        self.source = source

    def parse(self) -> List[Dict[str, Any]]:
        """
        Read product rows from the CSV.

        Returns:
            List of product field dictionaries

        Raises:
            ValueError: If the file cannot be read or required columns are missing
        """
        try:
            df = pd.read_csv(self.source, dtype=str, keep_default_na=False)
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError, OSError) as e:
            logger.error(f"Error reading product CSV: {str(e)}")
            raise ValueError(f"Failed to read product CSV: {str(e)}") from e

        columns = {}
        for column in df.columns:
            key = str(column).strip().strip('"').lower()
            if key in CSV_COLUMNS:
                columns[column] = CSV_COLUMNS[key]

        missing = {'name', 'category'} - set(columns.values())
        if missing:
            raise ValueError(f"Product CSV is missing required columns: {', '.join(sorted(missing))}")

        rows = []
        for _, row in df.iterrows():
            product = {field_name: str(row[column]).strip() for column, field_name in columns.items()}
            if not product.get('name'):
                continue
            rows.append(product)

        logger.info(f"Parsed {len(rows)} products from CSV")
        return rows


class ProductCatalog:
    """
    Product catalog operations on top of the entity store.

    Product deletion is refused while any line item still references the product.
    """

    def __init__(self, store: EntityStore):
        self.store = store

    def seed(self) -> List[Product]:
        """Load the standard product set into an empty catalog."""
        if self.store.count(Product) > 0:
            return self.store.list(Product)

        products = [self.create_product(data) for data in SEED_PRODUCTS]
        logger.info(f"Seeded catalog with {len(products)} products")
        return products

    def list_products(self) -> List[Product]:
        return self.store.list(Product)

    def get_product(self, product_id: int) -> Product:
        return self.store.require(Product, product_id)

    def search_products(self, query: str) -> List[Product]:
        """Case-insensitive match on name, category, targeting details or placement name."""
        needle = query.strip().lower()
        if not needle:
            return self.list_products()

        def matches(product: Product) -> bool:
            return any(
                needle in (value or '').lower()
                for value in (product.name, product.category, product.targeting_details, product.placement_name)
            )

        return self.store.list(Product, filter=matches)

    def products_by_category(self, category: Optional[str]) -> List[Product]:
        if not category or category == ALL_CATEGORIES:
            return self.list_products()
        return self.store.list(Product, category=category)

    def list_categories(self) -> List[str]:
        """Distinct product categories in first-seen order."""
        categories = []
        for product in self.list_products():
            if product.category not in categories:
                categories.append(product.category)
        return categories

    def create_product(self, data: Dict[str, Any]) -> Product:
        values = ProductValidator().validate_create(data)
        product = self.store.create(Product, values)
        logger.info(f"Created product {product.id}: {product.name}")
        return product

    def update_product(self, product_id: int, changes: Dict[str, Any]) -> Product:
        current = self.store.require(Product, product_id)
        values = ProductValidator().validate_update(changes, current)
        product = self.store.update(Product, product_id, values)
        logger.info(f"Updated product {product_id}")
        return product

    def delete_product(self, product_id: int):
        """
        Delete a product.

        Raises:
            NotFoundError: If the product does not exist
            ReferenceInUseError: If line items still reference the product
        """
        with self.store.transaction():
            self.store.require(Product, product_id)
            dependents = self.store.count(LineItem, product_id=product_id)
            if dependents:
                raise ReferenceInUseError('Product', product_id, dependents)
            self.store.delete(Product, product_id)
        logger.info(f"Deleted product {product_id}")

    def import_csv(self, source: Union[str, Path, Any]) -> List[Product]:
        """
        Import products from a CSV file. All rows are created or none are.

        Returns:
            List of created products
        """
        rows = ProductCSVParser(source).parse()
        with self.store.transaction():
            products = [self.create_product(row) for row in rows]
        logger.info(f"Imported {len(products)} products from CSV")
        return products

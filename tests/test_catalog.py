"""
Unit tests for the product catalog and CSV import.
"""

import io
import os
import tempfile
import unittest

import pytest

from models.data_models import Campaign, PlanVersion, Product
from data.store import EntityStore
from data.catalog import (
    ProductCatalog, ProductCSVParser, SEED_PRODUCTS, ALL_CATEGORIES,
    split_ad_sizes, extract_notice, parse_package_placements
)
from business_logic.line_items import LineItemService
from business_logic.error_handler import ReferenceInUseError, NotFoundError, ValidationError


class TestTextHelpers:
    """Ad size splitting and notice extraction."""

    def test_split_ad_sizes_by_platform(self):
        groups = split_ad_sizes("Desktop: 300x250, 728x90\nTablet: 300x250\nMobile: 300x50,320x50")

        assert list(groups) == ['Desktop', 'Tablet', 'Mobile']
        assert groups['Desktop'] == ['300x250', '728x90']
        assert groups['Mobile'] == ['300x50', '320x50']

    def test_split_ad_sizes_inline(self):
        groups = split_ad_sizes("Desktop: 970x250 Mobile: 320x100")
        assert groups == {'Desktop': ['970x250'], 'Mobile': ['320x100']}

    def test_split_ad_sizes_without_platform(self):
        assert split_ad_sizes(":15s | :30s") == {'All': [':15s | :30s']}
        assert split_ad_sizes("") == {}
        assert split_ad_sizes(None) == {}

    def test_extract_notice(self):
        notice, remaining = extract_notice(
            "Reach viewers on YouTube. **Minimum spend of $10,000 per package applies.** More details."
        )

        assert notice == "Minimum spend of $10,000 per package applies."
        assert remaining == "Reach viewers on YouTube. More details."

    def test_extract_notice_without_notice(self):
        assert extract_notice("Plain targeting ") == (None, "Plain targeting")
        assert extract_notice(None) == (None, "")


class TestProductCatalog:
    """Test cases for ProductCatalog."""

    def setup_method(self):
        self.store = EntityStore()
        self.catalog = ProductCatalog(self.store)
        self.catalog.seed()

    def test_seed_loads_standard_products_once(self):
        assert self.store.count(Product) == len(SEED_PRODUCTS)
        self.catalog.seed()
        assert self.store.count(Product) == len(SEED_PRODUCTS)

    def test_seeded_youtube_package(self):
        youtube = self.catalog.search_products("youtube")[0]
        placements = parse_package_placements(youtube)

        assert youtube.is_package
        assert len(placements) == 4
        assert placements[0].name == "Reach Package - Bumper Ads"
        assert extract_notice(youtube.targeting_details)[0] == "Minimum spend of $10,000 per package applies."

    def test_search_matches_name_category_and_targeting(self):
        assert any(product.name == "CTV/OTT" for product in self.catalog.search_products("ctv"))
        assert "Audio" in [product.name for product in self.catalog.search_products("AUDIO")]
        assert self.catalog.search_products("  ") == self.catalog.list_products()

    def test_products_by_category(self):
        video = self.catalog.products_by_category("Video")

        assert video
        assert all(product.category == "Video" for product in video)
        assert self.catalog.products_by_category(ALL_CATEGORIES) == self.catalog.list_products()

    def test_list_categories_first_seen_order(self):
        categories = self.catalog.list_categories()

        assert categories[0] == "Display"
        assert len(categories) == len(set(categories))
        assert "YouTube" in categories

    def test_create_and_update_product(self):
        product = self.catalog.create_product({'name': "Podcast", 'category': "Audio"})
        updated = self.catalog.update_product(product.id, {'targetingDetails': "Podcast listeners"})

        assert updated.targeting_details == "Podcast listeners"
        assert updated.created_at == product.created_at

    def test_update_product_rejects_bad_category(self):
        product = self.catalog.list_products()[0]
        with pytest.raises(ValidationError):
            self.catalog.update_product(product.id, {'category': "Radio"})

    def test_delete_unused_product(self):
        product = self.catalog.create_product({'name': "Podcast", 'category': "Audio"})
        self.catalog.delete_product(product.id)

        with pytest.raises(NotFoundError):
            self.catalog.get_product(product.id)

    def test_delete_referenced_product_is_refused(self):
        self.store.create(Campaign, {'title': "Q4", 'client_name': "Acme"})
        self.store.create(PlanVersion, {'campaign_id': 1, 'version_number': 1, 'title': "Version 1"})
        LineItemService(self.store).add_product_to_plan(1, 1)

        with pytest.raises(ReferenceInUseError) as exc_info:
            self.catalog.delete_product(1)

        assert exc_info.value.dependents == 1
        assert self.store.exists(Product, 1)

    def test_malformed_package_placements(self):
        product = Product(id=1, name="Bad", category="YouTube", targeting_details="", placement_name="",
                          ad_sizes="", pricing_model="dCPM", is_package=True, package_placements="{oops")
        with pytest.raises(ValidationError):
            parse_package_placements(product)


class TestProductCSVParser(unittest.TestCase):
    """Test cases for ProductCSVParser."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.csv_file = os.path.join(self.temp_dir, 'products.csv')
        with open(self.csv_file, 'w', encoding='utf-8') as handle:
            handle.write(
                'name,category,targetingDetails,placementName,adSizes,pricingModel\n'
                '"Rich Media","Display","Expandable units","MiQ_Rich Media","Desktop: 970x250, 300x600","dCPM"\n'
                '"","Display","blank row","","",""\n'
                '"Podcast Audio","Audio","Podcast listeners","MiQ_Podcast",":30s","CPM"\n'
            )

    def tearDown(self):
        os.remove(self.csv_file)
        os.rmdir(self.temp_dir)

    def test_parse_rows(self):
        rows = ProductCSVParser(self.csv_file).parse()

        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[0]['name'], "Rich Media")
        self.assertEqual(rows[0]['ad_sizes'], "Desktop: 970x250, 300x600")
        self.assertEqual(rows[1]['pricing_model'], "CPM")

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            ProductCSVParser(os.path.join(self.temp_dir, 'missing.csv'))

    def test_missing_columns(self):
        upload = io.StringIO("title,price\nFoo,1\n")
        with self.assertRaises(ValueError):
            ProductCSVParser(upload).parse()

    def test_import_csv_into_catalog(self):
        store = EntityStore()
        products = ProductCatalog(store).import_csv(self.csv_file)

        self.assertEqual([product.name for product in products], ["Rich Media", "Podcast Audio"])
        self.assertEqual(store.count(Product), 2)

    def test_import_is_all_or_nothing(self):
        upload = io.StringIO(
            "name,category\n"
            "Good,Display\n"
            "Bad,Billboards\n"
        )
        store = EntityStore()

        with self.assertRaises(ValidationError):
            ProductCatalog(store).import_csv(upload)
        self.assertEqual(store.count(Product), 0)


if __name__ == '__main__':
    unittest.main()

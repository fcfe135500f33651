"""
UI components for the Media Plan Builder application.
"""

import streamlit as st
from typing import Dict, Any, List, Optional
from collections import OrderedDict
import logging
import re

from models.data_models import Product, PlanVersion, LineItem, RateModel, PRODUCT_CATEGORIES
from data.catalog import ALL_CATEGORIES, split_ad_sizes, extract_notice, parse_package_placements
from business_logic.cost_calculator import format_money, quantize_money, ZERO
from business_logic.error_handler import error_handler, MediaPlanError
from business_logic.media_plan_controller import MediaPlanController

logger = logging.getLogger(__name__)

PACKAGE_ITEM_PATTERN = re.compile(r'^YouTube - (.+?) - ')

RATE_MODELS = [model.value for model in RateModel]


def group_line_items_for_display(line_items: List[LineItem]) -> List[Dict[str, Any]]:
    """
    Group package line items into one display row per package.

    Line items named "YouTube - <package> - <placement>" are folded into a
    package row with summed units and cost. All other line items are shown
    as individual rows. Rows keep the order of their first line item.

    Args:
        line_items: Line items of one plan version

    Returns:
        List of row dictionaries with a 'type' of 'package' or 'item'
    """
    rows: List[Dict[str, Any]] = []
    packages: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()

    for item in line_items:
        match = PACKAGE_ITEM_PATTERN.match(item.line_item_name or '')
        if not match:
            rows.append({'type': 'item', 'line_item': item})
            continue

        package_name = match.group(1)
        if package_name not in packages:
            packages[package_name] = {
                'type': 'package',
                'package_name': package_name,
                'line_items': [],
                'total_units': 0,
                'total_cost': ZERO,
            }
            rows.append(packages[package_name])

        package = packages[package_name]
        package['line_items'].append(item)
        package['total_units'] += int(item.impressions or 0)
        package['total_cost'] = quantize_money(package['total_cost'] + quantize_money(item.total_cost))

    return rows


def format_currency(value: Any) -> str:
    """Format a money value as $1,234.56."""
    return f"${quantize_money(value):,.2f}"


def show_notification(notification: Dict[str, Any]):
    """Render a notification produced by the error handler."""
    message = f"**{notification['title']}:** {notification['message']}"
    if notification['type'] == 'error':
        st.error(f"❌ {message}")
    elif notification['type'] == 'warning':
        st.warning(f"⚠️ {message}")
    else:
        st.info(message)

    if notification.get('action'):
        st.caption(f"💡 {notification['action']}")


class ProductLibraryComponent:
    """
    Product library browser.

    Lists catalog products with search and category filters and lets the
    planner add a product (or selected package placements) to the current
    plan version.
    """

    def __init__(self, controller: MediaPlanController):
        """
        Initialize the product library.

        Args:
            controller: MediaPlanController used for catalog reads and plan writes
        """
        self.controller = controller

    def render(self, plan_version_id: Optional[int]) -> Dict[str, Any]:
        """
        Render the product library.

        Args:
            plan_version_id: Version that products are added to, or None

        Returns:
            Dictionary describing the action taken, if any
        """
        st.subheader("📚 Product Library")

        col1, col2 = st.columns([2, 1])
        with col1:
            search = st.text_input("Search products", placeholder="Name, category or targeting...")
        with col2:
            categories = [ALL_CATEGORIES] + self.controller.list_categories()
            category = st.selectbox("Category", options=categories)

        products = self.controller.list_products(search=search or None, category=category)
        if not products:
            st.info("No products match your search.")
            return {}

        result = {}
        for product in products:
            with st.expander(f"{product.name} · {product.category}"):
                self._render_product_details(product)
                if plan_version_id is None:
                    st.caption("Select a plan version to add products.")
                    continue

                action = (self._render_package_form(product, plan_version_id) if product.is_package
                          else self._render_add_button(product, plan_version_id))
                if action:
                    result = action

        return result

    def _render_product_details(self, product: Product):
        notice, targeting = extract_notice(product.targeting_details)
        if notice:
            st.warning(f"⚠️ {notice}")
        if targeting:
            st.write(targeting)
        if product.placement_name:
            st.caption(f"Placement: {product.placement_name}")

        for platform, sizes in split_ad_sizes(product.ad_sizes).items():
            st.write(f"**{platform}:** {', '.join(sizes)}")

    def _render_line_item_options(self, product: Product, default_rate_model: str) -> Dict[str, Any]:
        """Site, flight dates and pricing for the line item(s) being added."""
        config = self.controller.config
        col1, col2, col3 = st.columns(3)
        with col1:
            site = st.text_input("Site", value=config.default_site, key=f"site_{product.id}")
            rate_model = st.selectbox(
                "Rate model",
                options=RATE_MODELS,
                index=RATE_MODELS.index(default_rate_model) if default_rate_model in RATE_MODELS else 0,
                key=f"new_rate_model_{product.id}"
            )
        with col2:
            start_date = st.text_input("Start date", placeholder="YYYY-MM-DD", key=f"start_{product.id}")
            rate = st.number_input(
                "Rate ($)", min_value=0.0, value=float(quantize_money(config.default_rate)), step=0.5,
                format="%.2f", key=f"new_rate_{product.id}"
            )
        with col3:
            end_date = st.text_input("End date", placeholder="YYYY-MM-DD", key=f"end_{product.id}")
            units = st.number_input(
                "Units", min_value=0, value=int(config.default_units), step=1000,
                key=f"new_units_{product.id}"
            )

        return {
            'site': site,
            'start_date': start_date,
            'end_date': end_date,
            'rate_model': rate_model,
            'rate': format_money(rate),
            'units': int(units),
        }

    def _render_add_button(self, product: Product, plan_version_id: int) -> Dict[str, Any]:
        placement_name = st.text_input(
            "Placement name", value=product.placement_name, key=f"placement_name_{product.id}"
        )
        options = self._render_line_item_options(product, self.controller.config.default_rate_model)
        if not st.button("➕ Add to plan", key=f"add_product_{product.id}"):
            return {}

        try:
            item = self.controller.add_product_to_plan(
                plan_version_id, product.id, placement_name=placement_name, **options
            )
            st.success(f"✅ Added {item.line_item_name}")
            return {'action': 'added', 'line_item_ids': [item.id]}
        except MediaPlanError as e:
            show_notification(error_handler.handle(e, "adding product to plan"))
            return {'action': 'failed'}

    def _render_package_form(self, product: Product, plan_version_id: int) -> Dict[str, Any]:
        placements = parse_package_placements(product)
        for placement in placements:
            st.write(f"**{placement.name}** ({placement.ad_sizes})")
            st.caption(placement.targeting)

        selected = st.multiselect(
            "Placements",
            options=[placement.name for placement in placements],
            key=f"package_placements_{product.id}"
        )
        options = self._render_line_item_options(product, RateModel.DCPM.value)
        if not st.button("➕ Add package to plan", key=f"add_package_{product.id}"):
            return {}

        try:
            items = self.controller.add_package_to_plan(plan_version_id, product.id, selected, **options)
            st.success(f"✅ Added {len(items)} placement(s) from {product.name}")
            return {'action': 'added', 'line_item_ids': [item.id for item in items]}
        except MediaPlanError as e:
            show_notification(error_handler.handle(e, "adding package to plan"))
            return {'action': 'failed'}


class ProductManagerComponent:
    """
    Catalog maintenance: create, edit and delete products, and bulk import
    them from a CSV file.
    """

    def __init__(self, controller: MediaPlanController):
        self.controller = controller

    def render(self):
        st.subheader("🛠️ Manage Products")

        with st.expander("📥 Import products from CSV"):
            st.caption("Columns: name, category, targetingDetails, placementName, adSizes, pricingModel")
            uploaded = st.file_uploader("Products CSV", type=['csv'], key="product_csv")
            if uploaded is not None and st.button("Import products", key="import_products"):
                self.import_csv(uploaded)

        with st.expander("➕ New product"):
            values = self._render_product_form("new_product")
            if values is not None:
                self.save_product(values)

        for product in self.controller.list_products():
            with st.expander(f"{product.name} · {product.category} · {product.pricing_model}"):
                if product.is_package:
                    st.caption("Package placements are managed through CSV import.")
                values = self._render_product_form(f"edit_product_{product.id}", product)
                if values is not None:
                    self.save_product(values, product.id)
                if st.button("🗑️ Delete product", key=f"delete_product_{product.id}"):
                    self.delete_product(product.id)

    def _render_product_form(self, key: str, product: Optional[Product] = None) -> Optional[Dict[str, Any]]:
        """Product fields form. Returns the entered values once submitted."""
        with st.form(key, clear_on_submit=product is None):
            col1, col2 = st.columns(2)
            with col1:
                name = st.text_input("Product name *", value=product.name if product else "")
                placement_name = st.text_input("Placement name", value=product.placement_name if product else "")
                ad_sizes = st.text_input("Ad sizes", value=product.ad_sizes if product else "",
                                         placeholder="e.g., 300x250, 728x90")
            with col2:
                category = st.selectbox(
                    "Category *",
                    options=PRODUCT_CATEGORIES,
                    index=PRODUCT_CATEGORIES.index(product.category)
                    if product and product.category in PRODUCT_CATEGORIES else 0
                )
                pricing_model = st.selectbox(
                    "Pricing model",
                    options=RATE_MODELS,
                    index=RATE_MODELS.index(product.pricing_model)
                    if product and product.pricing_model in RATE_MODELS else 0
                )
            targeting_details = st.text_area("Targeting details", value=product.targeting_details if product else "")

            if not st.form_submit_button("Save product" if product else "Create product"):
                return None

        return {
            'name': name,
            'category': category,
            'placement_name': placement_name,
            'targeting_details': targeting_details,
            'ad_sizes': ad_sizes,
            'pricing_model': pricing_model,
        }

    def save_product(self, values: Dict[str, Any], product_id: Optional[int] = None) -> Optional[Product]:
        """Create a product, or update one when product_id is given."""
        try:
            if product_id is None:
                product = self.controller.create_product(values)
                st.success(f"✅ Created {product.name}")
            else:
                product = self.controller.update_product(product_id, values)
                st.success(f"✅ Updated {product.name}")
        except MediaPlanError as e:
            show_notification(error_handler.handle(e, "saving product"))
            return None
        return product

    def delete_product(self, product_id: int) -> bool:
        try:
            self.controller.delete_product(product_id)
        except MediaPlanError as e:
            show_notification(error_handler.handle(e, "deleting product"))
            return False
        st.success("✅ Product deleted")
        return True

    def import_csv(self, source: Any) -> List[Product]:
        """Import products from an uploaded CSV; nothing is imported if any row is invalid."""
        try:
            products = self.controller.import_products_csv(source)
        except (MediaPlanError, ValueError) as e:
            show_notification(error_handler.handle(e, "importing products"))
            return []
        st.success(f"✅ Imported {len(products)} product(s)")
        return products


class PlanBuilderComponent:
    """
    Plan version workspace: version selection, totals and line item editing.
    """

    def __init__(self, controller: MediaPlanController):
        self.controller = controller

    def render_version_selector(self, campaign_id: int) -> Optional[int]:
        """
        Render version selection and version actions.

        Returns:
            The selected plan version id, or None if the campaign has no versions
        """
        versions = self.controller.list_versions(campaign_id)
        selected_id = self.controller.versions.next_selection(
            campaign_id, st.session_state.get('selected_version_id')
        )

        col1, col2, col3, col4 = st.columns([3, 1, 1, 1])
        with col1:
            if versions:
                ids = [version.id for version in versions]
                labels = {version.id: f"v{version.version_number} · {version.title}" for version in versions}
                selected_id = st.selectbox(
                    "Plan version",
                    options=ids,
                    index=ids.index(selected_id),
                    format_func=lambda version_id: labels[version_id]
                )
            else:
                st.info("This campaign has no plan versions yet.")

        action = None
        with col2:
            if st.button("🆕 New version"):
                action = lambda: self.controller.create_version(campaign_id).id
        with col3:
            if selected_id is not None and st.button("📄 Duplicate"):
                action = lambda: self.controller.duplicate_version(selected_id).id
        with col4:
            if selected_id is not None and st.button("🗑️ Delete version"):
                action = lambda: self.controller.delete_version(selected_id, selected_id)

        st.session_state['selected_version_id'] = selected_id
        if action is not None:
            try:
                st.session_state['selected_version_id'] = action()
            except MediaPlanError as e:
                show_notification(error_handler.handle(e, "plan version action"))
            else:
                st.rerun()
        return selected_id

    def render_totals(self, version: PlanVersion):
        """Show a version's budget, impressions and average CPM."""
        cols = st.columns(3)
        cols[0].metric("Total Budget", format_currency(version.total_budget))
        cols[1].metric("Total Impressions", f"{version.total_impressions:,}")
        cols[2].metric("Avg CPM", format_currency(version.avg_cpm))

    def render_line_items(self, plan_version_id: int):
        """Render line items, with package placements grouped under one row."""
        line_items = self.controller.list_line_items(plan_version_id)
        if not line_items:
            st.info("No line items yet. Add products from the library.")
            return

        for row in group_line_items_for_display(line_items):
            if row['type'] == 'package':
                self._render_package_row(row)
            else:
                self._render_line_item_row(row['line_item'])

    def _render_package_row(self, row: Dict[str, Any]):
        title = (f"📦 YouTube - {row['package_name']} · {row['total_units']:,} units · "
                 f"{format_currency(row['total_cost'])}")
        with st.expander(title):
            for item in row['line_items']:
                self._render_line_item_row(item)
            if st.button("🗑️ Remove package", key=f"delete_package_{row['line_items'][0].id}"):
                self._apply(lambda: self.controller.delete_line_items([item.id for item in row['line_items']]),
                            "removing package")

    def _render_line_item_row(self, item: LineItem):
        st.markdown(f"**{item.line_item_name}** · {item.site}")
        col1, col2, col3, col4, col5 = st.columns([1, 1, 1, 1, 1])

        with col1:
            rate_model = st.selectbox(
                "Rate model",
                options=RATE_MODELS,
                index=RATE_MODELS.index(item.rate_model) if item.rate_model in RATE_MODELS else 0,
                key=f"rate_model_{item.id}"
            )
        with col2:
            rate = st.number_input(
                "Rate", min_value=0.0, value=float(item.cpm_rate), step=0.5,
                format="%.2f", key=f"rate_{item.id}"
            )
        with col3:
            units = st.number_input(
                "Units", min_value=0, value=int(item.impressions), step=1000,
                key=f"units_{item.id}"
            )
        with col4:
            st.metric("Total Cost", format_currency(item.total_cost))
        with col5:
            if st.button("📄", key=f"duplicate_item_{item.id}", help="Duplicate line item"):
                self._apply(lambda: self.controller.duplicate_line_item(item.id), "duplicating line item")
            if st.button("🗑️", key=f"delete_item_{item.id}", help="Delete line item"):
                self._apply(lambda: self.controller.delete_line_item(item.id), "deleting line item")

        changes = self._collect_changes(item, rate_model, rate, units)
        if changes:
            self._apply(lambda: self.controller.update_line_item(item.id, changes), "updating line item")

    def _collect_changes(self, item: LineItem, rate_model: str, rate: float, units: int) -> Dict[str, Any]:
        """Field-level edits that differ from the stored line item."""
        changes = {}
        if rate_model != item.rate_model:
            changes['rate_model'] = rate_model
        if quantize_money(rate) != quantize_money(item.cpm_rate):
            changes['cpm_rate'] = format_money(rate)
        if int(units) != item.impressions:
            changes['impressions'] = int(units)
        return changes

    def _apply(self, operation, context: str):
        """Run a write and refresh the page, or show why it failed."""
        try:
            operation()
        except MediaPlanError as e:
            show_notification(error_handler.handle(e, context))
            return
        logger.info(f"Completed {context}")
        st.rerun()


class PlanExportComponent:
    """
    Download buttons for the campaign workbook and per-version CSV.
    """

    def __init__(self, controller: MediaPlanController):
        self.controller = controller

    def render(self, campaign_id: int, plan_version_id: Optional[int] = None):
        st.subheader("📤 Export")
        campaign = self.controller.get_campaign(campaign_id)

        try:
            workbook = self.controller.export_campaign_workbook(campaign_id)
        except (MediaPlanError, ValueError) as e:
            show_notification(error_handler.handle(e, "exporting workbook"))
            return

        st.download_button(
            label="📊 Download Excel workbook",
            data=workbook,
            file_name=self.controller.exporter.export_filename(campaign),
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )

        if plan_version_id is not None:
            st.download_button(
                label="📄 Download version CSV",
                data=self.controller.export_version_csv(plan_version_id),
                file_name=self.controller.exporter.export_filename(campaign, extension='csv'),
                mime="text/csv"
            )

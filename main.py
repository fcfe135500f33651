"""
Main entry point for the Media Plan Builder application.
"""
import logging
import streamlit as st

from config.settings import config_manager
from ui.components import (
    ProductLibraryComponent, ProductManagerComponent, PlanBuilderComponent, PlanExportComponent, show_notification
)
from business_logic.media_plan_controller import MediaPlanController
from business_logic.error_handler import error_handler, MediaPlanError

# Set up logging
logger = logging.getLogger(__name__)


@st.cache_resource
def get_controller() -> MediaPlanController:
    """One controller (and in-memory store) shared by every session."""
    config = config_manager.load_config()
    logging.getLogger().setLevel(config_manager.get_log_level())

    controller = MediaPlanController(config=config)
    controller.seed()
    return controller


def render_campaign_sidebar(controller: MediaPlanController):
    """Campaign selection and creation. Returns the selected campaign id."""
    st.sidebar.header("📁 Campaigns")

    with st.sidebar.form("new_campaign_form", clear_on_submit=True):
        title = st.text_input("Campaign title *")
        client_name = st.text_input("Client name *")
        due_date = st.text_input("Due date")
        col1, col2 = st.columns(2)
        with col1:
            start_date = st.text_input("Campaign start", placeholder="YYYY-MM-DD")
        with col2:
            end_date = st.text_input("Campaign end", placeholder="YYYY-MM-DD")
        if st.form_submit_button("Create campaign"):
            try:
                campaign = controller.create_campaign({
                    'title': title, 'client_name': client_name, 'due_date': due_date,
                    'campaign_start_date': start_date, 'campaign_end_date': end_date,
                })
                st.session_state['selected_campaign_id'] = campaign.id
                st.session_state['selected_version_id'] = None
            except MediaPlanError as e:
                show_notification(error_handler.handle(e, "creating campaign"))

    campaigns = controller.list_campaigns()
    if not campaigns:
        st.sidebar.info("Create a campaign to start planning.")
        return None

    ids = [campaign.id for campaign in campaigns]
    labels = {campaign.id: f"{campaign.title} ({campaign.client_name})" for campaign in campaigns}
    current = st.session_state.get('selected_campaign_id')
    campaign_id = st.sidebar.selectbox(
        "Campaign",
        options=ids,
        index=ids.index(current) if current in ids else 0,
        format_func=lambda campaign_id: labels[campaign_id]
    )
    if campaign_id != current:
        st.session_state['selected_version_id'] = None
    st.session_state['selected_campaign_id'] = campaign_id

    if st.sidebar.button("🗑️ Delete campaign"):
        try:
            controller.delete_campaign(campaign_id)
            st.session_state['selected_campaign_id'] = None
            st.session_state['selected_version_id'] = None
            st.rerun()
        except MediaPlanError as e:
            show_notification(error_handler.handle(e, "deleting campaign"))

    return campaign_id


def main():
    """Main application entry point."""
    st.set_page_config(
        page_title="Media Plan Builder",
        page_icon="📊",
        layout="wide",
        initial_sidebar_state="expanded"
    )

    st.title("🎯 Media Plan Builder")
    st.markdown("Build, version and export media plans for RFP responses")

    controller = get_controller()
    campaign_id = render_campaign_sidebar(controller)
    if campaign_id is None:
        st.stop()

    campaign = controller.get_campaign(campaign_id)
    st.header(f"{campaign.title}")
    st.caption(f"Client: {campaign.client_name} · Status: {campaign.status}")
    if campaign.campaign_start_date or campaign.campaign_end_date:
        st.caption(f"Flight: {campaign.campaign_start_date or '?'} to {campaign.campaign_end_date or '?'}")

    builder = PlanBuilderComponent(controller)
    version_id = builder.render_version_selector(campaign_id)

    plan_tab, library_tab, products_tab, export_tab = st.tabs(
        ["🗂️ Media Plan", "📚 Product Library", "🛠️ Manage Products", "📤 Export"]
    )

    with plan_tab:
        if version_id is None:
            st.info("Create a plan version to add line items.")
        else:
            builder.render_totals(controller.get_version(version_id))
            builder.render_line_items(version_id)

    with library_tab:
        ProductLibraryComponent(controller).render(version_id)

    with products_tab:
        ProductManagerComponent(controller).render()

    with export_tab:
        PlanExportComponent(controller).render(campaign_id, version_id)

    logger.info(f"Rendered campaign {campaign_id}, version {version_id}")


if __name__ == "__main__":
    main()

"""
Spreadsheet export of campaigns, plan versions and line items.
"""

import io
import logging
import re
from datetime import datetime
from typing import Dict, List, Optional

import pandas as pd

from models.data_models import Campaign, PlanVersion, LineItem

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MAX_SHEET_NAME = 31
INVALID_SHEET_CHARS = re.compile(r'[\[\]:*?/\\]')

LINE_ITEM_COLUMNS = [
    ('line_item_name', 'Line Item'),
    ('site', 'Site'),
    ('placement_name', 'Placement Name'),
    ('targeting_details', 'Targeting Details'),
    ('ad_sizes', 'Ad Sizes'),
    ('start_date', 'Start Date'),
    ('end_date', 'End Date'),
    ('rate_model', 'Rate Model'),
    ('cpm_rate', 'Rate'),
    ('impressions', 'Units'),
    ('total_cost', 'Total Cost'),
]


def safe_sheet_name(name: str, used: List[str]) -> str:
    """Excel-safe, unique sheet name of at most 31 characters."""
    base = INVALID_SHEET_CHARS.sub('', name).strip() or "Version"
    base = base[:MAX_SHEET_NAME]
    candidate = base
    counter = 2
    while candidate.lower() in (existing.lower() for existing in used):
        suffix = f" ({counter})"
        candidate = f"{base[:MAX_SHEET_NAME - len(suffix)]}{suffix}"
        counter += 1
    used.append(candidate)
    return candidate


class PlanExporter:
    """
    Builds spreadsheet artifacts for a campaign's media plans.

    Export is read-only: it never writes back to the store.
    """

    def line_items_frame(self, line_items: List[LineItem]) -> pd.DataFrame:
        """Line items as a DataFrame with display column names."""
        rows = []
        for item in line_items:
            data = item.to_dict()
            rows.append({label: data[field] for field, label in LINE_ITEM_COLUMNS})
        return pd.DataFrame(rows, columns=[label for _, label in LINE_ITEM_COLUMNS])

    def summary_frame(self, campaign: Campaign, versions: List[PlanVersion]) -> pd.DataFrame:
        """Campaign fields followed by one row of totals per version."""
        rows = [
            ('Campaign', campaign.title),
            ('Client', campaign.client_name),
            ('Due Date', campaign.due_date or ''),
            ('Campaign Start', campaign.campaign_start_date or ''),
            ('Campaign End', campaign.campaign_end_date or ''),
            ('Status', campaign.status),
            ('Exported At', datetime.now().strftime('%Y-%m-%d %H:%M:%S')),
        ]
        for version in versions:
            data = version.to_dict()
            rows.append((
                f"{version.title} (v{version.version_number})",
                f"Budget ${data['total_budget']} | Impressions {version.total_impressions:,} | "
                f"Avg CPM ${data['avg_cpm']}"
            ))
        return pd.DataFrame(rows, columns=['Field', 'Value'])

    def export_workbook(self, campaign: Campaign, versions: List[PlanVersion],
                        line_items_by_version: Dict[int, List[LineItem]]) -> bytes:
        """
        Build an XLSX workbook: a Summary sheet plus one sheet per version.

        Args:
            campaign: Campaign being exported
            versions: Its plan versions
            line_items_by_version: Line items keyed by plan version id

        Returns:
            Workbook contents as bytes
        """
        buffer = io.BytesIO()
        used_names = ['Summary']

        with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
            self.summary_frame(campaign, versions).to_excel(writer, sheet_name='Summary', index=False)
            for version in versions:
                sheet_name = safe_sheet_name(version.title, used_names)
                frame = self.line_items_frame(line_items_by_version.get(version.id, []))
                frame.to_excel(writer, sheet_name=sheet_name, index=False)

        logger.info(f"Exported campaign {campaign.id} with {len(versions)} version(s) to XLSX")
        return buffer.getvalue()

    def export_version_csv(self, version: PlanVersion, line_items: List[LineItem]) -> str:
        """Line items of one version as CSV text, followed by a totals row."""
        frame = self.line_items_frame(line_items)
        totals = version.to_dict()
        totals_row = {label: '' for _, label in LINE_ITEM_COLUMNS}
        totals_row['Line Item'] = 'TOTAL'
        totals_row['Units'] = version.total_impressions
        totals_row['Total Cost'] = totals['total_budget']
        frame = pd.concat([frame, pd.DataFrame([totals_row])], ignore_index=True)
        return frame.to_csv(index=False)

    def export_filename(self, campaign: Campaign, extension: str = 'xlsx',
                        when: Optional[datetime] = None) -> str:
        when = when or datetime.now()
        slug = re.sub(r'[^a-z0-9]+', '_', campaign.title.lower()).strip('_') or 'media_plan'
        return f"media_plan_{slug}_{when.strftime('%Y%m%d')}.{extension}"

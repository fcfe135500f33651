"""
Input validation for media plan entities.

Every create/update payload passes through a validator before anything
is written. Validators collect all issues found, then either return the
normalized values (Decimals, ints, canonical rate model names) or raise
a ValidationError listing every issue.
"""

import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from models.data_models import (
    Product, Campaign, PlanVersion, LineItem, RateModel, PRODUCT_CATEGORIES
)
from .cost_calculator import normalize_rate_model, quantize_money
from .error_handler import ValidationError

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r'(?<!^)(?=[A-Z])')

# Field names used by the RFP tool's JSON payloads
FIELD_ALIASES = {
    'media_plan_version_id': 'plan_version_id',
    'rfp_response_id': 'campaign_id',
}


class ValidationSeverity(Enum):
    """Severity levels for validation issues."""
    ERROR = "error"
    WARNING = "warning"


@dataclass
class ValidationIssue:
    """Represents a validation issue found in a payload."""
    severity: ValidationSeverity
    message: str
    field: Optional[str] = None


def normalize_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    """Accept camelCase keys (cpmRate, planVersionId) alongside snake_case."""
    normalized = {}
    for key, value in data.items():
        snake = _CAMEL_BOUNDARY.sub('_', str(key)).lower()
        normalized[FIELD_ALIASES.get(snake, snake)] = value
    return normalized


class BaseValidator:
    """Shared parsing rules. Subclasses declare their fields."""

    entity_type: type = None
    required_fields: List[str] = []
    text_fields: List[str] = []
    money_fields: List[str] = []
    int_fields: List[str] = []
    bool_fields: List[str] = []
    immutable_fields: List[str] = ['id', 'created_at', 'updated_at']
    # Settable on create, rejected on update
    fixed_after_create: List[str] = []

    def __init__(self):
        self.issues: List[ValidationIssue] = []

    def _error(self, message: str, field: Optional[str] = None):
        self.issues.append(ValidationIssue(ValidationSeverity.ERROR, message, field))

    def _raise_if_errors(self):
        errors = [issue for issue in self.issues if issue.severity == ValidationSeverity.ERROR]
        if errors:
            name = self.entity_type.__name__ if self.entity_type else 'payload'
            logger.info(f"Rejected {name} payload with {len(errors)} issue(s)")
            raise ValidationError([issue.message for issue in errors])

    def parse_money(self, field: str, value: Any) -> Optional[Decimal]:
        """Parse a finite, non-negative decimal. Records an issue on failure."""
        if isinstance(value, bool) or value is None:
            self._error(f"{field} must be a number", field)
            return None
        text = str(value).strip().replace(',', '').lstrip('$')
        try:
            number = Decimal(text)
        except (InvalidOperation, ValueError):
            self._error(f"{field} must be a number, got {value!r}", field)
            return None
        if not number.is_finite():
            self._error(f"{field} must be a finite number", field)
            return None
        if number < 0:
            self._error(f"{field} must not be negative", field)
            return None
        return quantize_money(number)

    def parse_int(self, field: str, value: Any) -> Optional[int]:
        """Parse a non-negative integer; accepts '1,000,000'."""
        if isinstance(value, bool) or value is None:
            self._error(f"{field} must be a whole number", field)
            return None
        if isinstance(value, int):
            number = value
        else:
            text = str(value).strip().replace(',', '')
            try:
                decimal_value = Decimal(text)
            except (InvalidOperation, ValueError):
                self._error(f"{field} must be a whole number, got {value!r}", field)
                return None
            if not decimal_value.is_finite() or decimal_value != decimal_value.to_integral_value():
                self._error(f"{field} must be a whole number, got {value!r}", field)
                return None
            number = int(decimal_value)
        if number < 0:
            self._error(f"{field} must not be negative", field)
            return None
        return number

    def parse_bool(self, field: str, value: Any) -> Optional[bool]:
        if isinstance(value, bool):
            return value
        if str(value).strip().lower() in ('true', '1', 'yes'):
            return True
        if str(value).strip().lower() in ('false', '0', 'no', ''):
            return False
        self._error(f"{field} must be true or false", field)
        return None

    def parse_rate_model(self, value: Any) -> Optional[str]:
        rate_model = normalize_rate_model(value)
        if rate_model is None:
            allowed = ', '.join(model.value for model in RateModel)
            self._error(f"rate_model must be one of {allowed}, got {value!r}", 'rate_model')
            return None
        return rate_model.value

    def _parse_fields(self, data: Dict[str, Any]) -> Dict[str, Any]:
        known = set(self.entity_type.field_names())
        values = {}

        for key, value in data.items():
            if key not in known:
                self._error(f"Unknown field: {key}", key)
            elif key in self.money_fields:
                values[key] = self.parse_money(key, value)
            elif key in self.int_fields:
                values[key] = self.parse_int(key, value)
            elif key in self.bool_fields:
                values[key] = self.parse_bool(key, value)
            elif key in self.text_fields:
                values[key] = '' if value is None else str(value).strip()
            else:
                values[key] = value

        for key in self.required_fields:
            if key in values and key in self.text_fields and not values[key]:
                self._error(f"{key} must not be blank", key)

        return values

    def validate_create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate a create payload.

        Returns:
            Normalized field values ready for the store

        Raises:
            ValidationError: If any issue is found
        """
        self.issues = []
        data = {key: value for key, value in normalize_keys(data).items()
                if key not in self.immutable_fields}

        for key in self.required_fields:
            if key not in data or data[key] is None:
                self._error(f"Missing required field: {key}", key)

        values = self._parse_fields({key: value for key, value in data.items() if value is not None})
        self._check_create(values)
        self._raise_if_errors()
        return values

    def validate_update(self, changes: Dict[str, Any], current: Any = None) -> Dict[str, Any]:
        """
        Validate a partial update.

        Raises:
            ValidationError: If any field is read-only, unknown or malformed
        """
        self.issues = []
        changes = normalize_keys(changes)
        locked = set(self.immutable_fields) | set(self.fixed_after_create)

        for key in changes:
            if key in locked:
                self._error(f"Field cannot be changed: {key}", key)

        values = self._parse_fields({key: value for key, value in changes.items()
                                     if key not in locked})
        self._check_update(values, current)
        self._raise_if_errors()
        return values

    def _check_create(self, values: Dict[str, Any]):
        pass

    def _check_update(self, values: Dict[str, Any], current: Any):
        pass


class LineItemValidator(BaseValidator):
    """Validates line item payloads. total_cost is derived, so it is never accepted as input."""

    entity_type = LineItem
    required_fields = ['plan_version_id', 'product_id', 'line_item_name', 'cpm_rate', 'impressions']
    text_fields = ['line_item_name', 'site', 'placement_name', 'targeting_details',
                   'ad_sizes', 'start_date', 'end_date']
    money_fields = ['cpm_rate', 'flat_rate']
    int_fields = ['plan_version_id', 'product_id', 'impressions', 'sort_order']
    immutable_fields = ['id', 'created_at', 'updated_at', 'total_cost']
    fixed_after_create = ['plan_version_id', 'product_id']

    def _parse_fields(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(data)
        has_rate_model = 'rate_model' in data
        rate_model = data.pop('rate_model', None)
        values = super()._parse_fields(data)
        if has_rate_model:
            values['rate_model'] = self.parse_rate_model(rate_model)
        return values


class ProductValidator(BaseValidator):
    """Validates catalog product payloads."""

    entity_type = Product
    required_fields = ['name', 'category']
    text_fields = ['name', 'category', 'targeting_details', 'placement_name', 'ad_sizes', 'pricing_model']
    bool_fields = ['is_package']
    immutable_fields = ['id', 'created_at']

    def _check_create(self, values: Dict[str, Any]):
        values.setdefault('targeting_details', '')
        values.setdefault('placement_name', '')
        values.setdefault('ad_sizes', '')
        values.setdefault('pricing_model', RateModel.CPM.value)
        self._check_product(values)

    def _check_update(self, values: Dict[str, Any], current: Any):
        merged = dict(current.__dict__) if current is not None else {}
        merged.update(values)
        self._check_product(merged, changed=values)

    def _check_product(self, values: Dict[str, Any], changed: Optional[Dict[str, Any]] = None):
        changed = values if changed is None else changed

        if 'category' in changed and changed.get('category') and changed['category'] not in PRODUCT_CATEGORIES:
            self._error(
                f"category must be one of {', '.join(PRODUCT_CATEGORIES)}, got {changed['category']!r}",
                'category'
            )

        if 'package_placements' in changed and isinstance(changed['package_placements'], list):
            changed['package_placements'] = json.dumps(changed['package_placements'])
            values['package_placements'] = changed['package_placements']

        if values.get('is_package'):
            self._check_package_placements(values.get('package_placements'))

    def _check_package_placements(self, raw: Any):
        if not raw:
            self._error("Package products need at least one placement", 'package_placements')
            return
        try:
            placements = json.loads(raw)
        except (TypeError, ValueError):
            self._error("package_placements must be a JSON list", 'package_placements')
            return
        if not isinstance(placements, list) or not placements:
            self._error("Package products need at least one placement", 'package_placements')
            return
        for index, placement in enumerate(placements):
            if not isinstance(placement, dict) or not str(placement.get('name', '')).strip():
                self._error(f"Package placement {index + 1} needs a name", 'package_placements')


class CampaignValidator(BaseValidator):
    """Validates campaign (RFP response) payloads."""

    entity_type = Campaign
    required_fields = ['title', 'client_name']
    text_fields = ['title', 'client_name', 'due_date', 'campaign_start_date',
                   'campaign_end_date', 'status']


class PlanVersionValidator(BaseValidator):
    """Only title and is_active are author-editable; the totals are derived."""

    entity_type = PlanVersion
    required_fields = ['title']
    text_fields = ['title']
    bool_fields = ['is_active']
    immutable_fields = ['id', 'created_at', 'updated_at', 'campaign_id', 'version_number',
                        'total_budget', 'total_impressions', 'avg_cpm']

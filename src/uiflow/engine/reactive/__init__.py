from .definitions import FieldBinding, FieldState, VisibilityConfig, ComputedFieldConfig, ValidationRule
from .visibility import check_visibility, check_disabled, evaluate_all, evaluate_any
from .computed import (
    compute_field, order_computed_fields, update_computed_fields,
    sum_field, product_field, percentage_field, concat_field, conditional_field,
)
from .validation import (
    validate_field, date_range, after_date, before_date, greater_than, less_than, field_match,
    password_confirmation, at_least_one, all_or_none, conditional_required, sum_equals, expression_rule,
)
from .main import ReactiveFieldEngine

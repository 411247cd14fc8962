# engine/reactive/validation.py
"""
Cross-Field Validation

validate(value, form_data) -> True | error message.
任一依赖字段为空时直接判定为通过 (skip-if-empty)。
"""
import logging
from typing import Any, Iterable, List, Mapping, Optional, Set, Union

from ..errors import EvaluationRuntimeError, ExpressionError, SandboxViolation
from ..expression import ExpressionEngine, default_expression_engine, merge_declared_dependencies, normalize_dependency
from ..expression.main import ContextLike
from ..expression.values import truthy
from ..schemas.context_schema import Context
from ..utils.data_parser import get_value_by_path, is_empty
from ..utils.formatters import parse_date
from .definitions import ValidationRule

logger = logging.getLogger(__name__)

ValidationOutcome = Union[bool, str]

DEFAULT_MESSAGE = "Validation failed"

def _dependency_value(form_data: Mapping[str, Any], dependency: str) -> Any:
    path = dependency[len("formData."):] if dependency.startswith("formData.") else dependency
    return get_value_by_path(form_data, path)

def _reads_value(path: str) -> bool:
    return path == "value" or path.startswith("value.")

def _skip_paths(rule: ValidationRule, engine: ExpressionEngine) -> Set[str]:
    """声明的依赖加上表达式实际读取的 formData 路径；只有表单字段参与 skip-if-empty 判定"""
    paths = {normalize_dependency(d) for d in rule.dependencies}
    if rule.expression:
        try:
            paths |= {d for d in engine.get_dependencies(rule.expression) if not _reads_value(d)}
        except ExpressionError:
            # 语法错误留给求值阶段报告
            pass
    return {p for p in paths if p.startswith("formData.")}

def _normalize_outcome(outcome: Any, rule: ValidationRule) -> ValidationOutcome:
    if outcome is True:
        return True
    if isinstance(outcome, str) and outcome:
        return outcome
    return rule.message or DEFAULT_MESSAGE

def should_skip(rule: ValidationRule, form_data: Mapping[str, Any], engine: Optional[ExpressionEngine] = None) -> bool:
    if not rule.skip_if_empty:
        return False
    engine = engine or default_expression_engine
    return any(is_empty(_dependency_value(form_data, dep)) for dep in _skip_paths(rule, engine))

def run_rule(
    rule: ValidationRule,
    value: Any,
    context: Context,
    engine: ExpressionEngine,
) -> ValidationOutcome:
    """执行单条同步规则。表达式运行期错误作为字段错误返回，而不是抛出。"""
    form_data = context.formData
    if should_skip(rule, form_data, engine):
        return True

    if rule.validate_fn is not None:
        try:
            outcome = rule.validate_fn(value, dict(form_data))
        except Exception as e:
            logger.warning(f"Validator raised {type(e).__name__}: {e}; reported as a field error.")
            return rule.message or DEFAULT_MESSAGE
        return _normalize_outcome(outcome, rule)

    if rule.expression is None:
        return True

    try:
        result = engine.evaluate(rule.expression, context, strict=True, value=value)
    except EvaluationRuntimeError as e:
        return rule.message or e.message
    except SandboxViolation:
        if engine.development:
            raise
        logger.warning(f"Validation expression '{rule.expression}' violates the sandbox; treated as invalid.")
        return rule.message or DEFAULT_MESSAGE
    except ExpressionError as e:
        logger.warning(f"Validation expression '{rule.expression}' could not be parsed: {e}")
        return rule.message or DEFAULT_MESSAGE

    return True if truthy(result) else (rule.message or DEFAULT_MESSAGE)

async def run_async_rule(rule: ValidationRule, value: Any, form_data: Mapping[str, Any]) -> ValidationOutcome:
    if should_skip(rule, form_data):
        return True
    outcome = await rule.async_validate(value, dict(form_data))
    return _normalize_outcome(outcome, rule)

def validate_field(
    config: Union[ValidationRule, List[ValidationRule], dict],
    value: Any,
    context: ContextLike = None,
    engine: Optional[ExpressionEngine] = None,
) -> ValidationOutcome:
    """依次执行同步规则，返回第一个错误信息；全部通过返回 True。异步规则由 ReactiveFieldEngine 调度。"""
    engine = engine or default_expression_engine
    ctx = Context.of(context)
    rules = config if isinstance(config, list) else [config]
    for rule in rules:
        if isinstance(rule, dict):
            rule = ValidationRule.model_validate(rule)
        if rule.is_async:
            continue
        outcome = run_rule(rule, value, ctx, engine)
        if outcome is not True:
            return outcome
    return True

def get_validation_dependencies(rules: Iterable[ValidationRule], engine: Optional[ExpressionEngine] = None) -> Set[str]:
    engine = engine or default_expression_engine
    deps: Set[str] = set()
    for rule in rules:
        if rule.expression:
            inferred = {
                d for d in engine.get_dependencies(rule.expression)
                if not _reads_value(d)
            }
            deps |= merge_declared_dependencies(inferred, rule.dependencies or None, rule.expression)
        else:
            deps |= merge_declared_dependencies(set(), rule.dependencies, None)
    return deps

# ============================================================================
# 内置规则 (Built-in Rules)
# ============================================================================

def _compare_dates(a: Any, b: Any) -> Optional[float]:
    d1, d2 = parse_date(a), parse_date(b)
    if d1 is None or d2 is None:
        return None
    if (d1.tzinfo is None) != (d2.tzinfo is None):
        d1, d2 = d1.replace(tzinfo=None), d2.replace(tzinfo=None)
    return (d1 - d2).total_seconds()

def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None

def date_range(end_field: str, start_field: str, message: Optional[str] = None) -> ValidationRule:
    """结束日期必须晚于开始日期 (作为结束日期字段的规则)"""
    def validate(end_value, form_data):
        diff = _compare_dates(end_value, form_data.get(start_field))
        if is_empty(end_value) or diff is None:
            return True
        return True if diff > 0 else (message or "End date must be after start date")
    return ValidationRule(validate=validate, dependencies=[start_field], message=message)

def after_date(other_field: str, message: Optional[str] = None) -> ValidationRule:
    def validate(value, form_data):
        diff = _compare_dates(value, form_data.get(other_field))
        if is_empty(value) or diff is None:
            return True
        return True if diff > 0 else (message or f"Must be after {other_field}")
    return ValidationRule(validate=validate, dependencies=[other_field], message=message)

def before_date(other_field: str, message: Optional[str] = None) -> ValidationRule:
    def validate(value, form_data):
        diff = _compare_dates(value, form_data.get(other_field))
        if is_empty(value) or diff is None:
            return True
        return True if diff < 0 else (message or f"Must be before {other_field}")
    return ValidationRule(validate=validate, dependencies=[other_field], message=message)

def greater_than(other_field: str, message: Optional[str] = None) -> ValidationRule:
    def validate(value, form_data):
        a, b = _to_float(value), _to_float(form_data.get(other_field))
        if a is None or b is None:
            return True
        return True if a > b else (message or f"Must be greater than {other_field}")
    return ValidationRule(validate=validate, dependencies=[other_field], message=message)

def less_than(other_field: str, message: Optional[str] = None) -> ValidationRule:
    def validate(value, form_data):
        a, b = _to_float(value), _to_float(form_data.get(other_field))
        if a is None or b is None:
            return True
        return True if a < b else (message or f"Must be less than {other_field}")
    return ValidationRule(validate=validate, dependencies=[other_field], message=message)

def field_match(other_field: str, message: Optional[str] = None) -> ValidationRule:
    def validate(value, form_data):
        return True if value == form_data.get(other_field) else (message or f"Must match {other_field}")
    return ValidationRule(validate=validate, dependencies=[other_field], message=message)

def password_confirmation(password_field: str = "password") -> ValidationRule:
    return field_match(password_field, "Passwords must match")

def at_least_one(fields: List[str], message: Optional[str] = None) -> ValidationRule:
    def validate(value, form_data):
        if any(not is_empty(form_data.get(f)) for f in fields):
            return True
        return message or f"At least one of {', '.join(fields)} is required"
    # 该规则本身就是对空值的检查，不能按依赖为空而跳过
    return ValidationRule(validate=validate, dependencies=list(fields), message=message, skip_if_empty=False)

def all_or_none(fields: List[str], message: Optional[str] = None) -> ValidationRule:
    def validate(value, form_data):
        filled = [f for f in fields if not is_empty(form_data.get(f))]
        if 0 < len(filled) < len(fields):
            return message or f"Either fill all or none of {', '.join(fields)}"
        return True
    return ValidationRule(validate=validate, dependencies=list(fields), message=message, skip_if_empty=False)

def conditional_required(condition_field: str, condition_value: Any, message: Optional[str] = None) -> ValidationRule:
    def validate(value, form_data):
        if form_data.get(condition_field) == condition_value and is_empty(value):
            return message or "This field is required"
        return True
    return ValidationRule(validate=validate, dependencies=[condition_field], message=message)

def sum_equals(fields: List[str], message: Optional[str] = None, tolerance: float = 0.01) -> ValidationRule:
    def validate(value, form_data):
        expected = _to_float(value)
        if expected is None:
            return True
        total = sum(_to_float(form_data.get(f)) or 0.0 for f in fields)
        if abs(expected - total) > tolerance:
            return message or f"Must equal the sum of {', '.join(fields)} ({total:g})"
        return True
    return ValidationRule(validate=validate, dependencies=list(fields), message=message, skip_if_empty=False)

def expression_rule(expression: str, message: str, dependencies: Optional[List[str]] = None) -> ValidationRule:
    return ValidationRule(expression=expression, message=message, dependencies=dependencies or [])

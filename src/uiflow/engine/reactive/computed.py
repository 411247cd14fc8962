# engine/reactive/computed.py
"""
Computed Fields

Supports:
- Template expressions: `{{formData.quantity}} * {{formData.price}}`
- Complex expressions: `({{formData.subtotal}} * {{formData.taxRate}}) + {{formData.shipping}}`
- String concatenation: `{{formData.firstName}} + " " + {{formData.lastName}}`
- Function expressions: a callable receiving formData
"""
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

import networkx as nx

from ..errors import CompositionError, ExpressionError, SandboxViolation
from ..expression import ExpressionEngine, default_expression_engine, merge_declared_dependencies, affects
from ..expression.main import ContextLike
from ..schemas.context_schema import Context
from ..utils.data_parser import UNDEFINED, split_path
from ..utils.formatters import round_half_up, format_value
from .definitions import ComputedFieldConfig

logger = logging.getLogger(__name__)

def format_computed_value(value: Any, config: ComputedFieldConfig) -> Any:
    if callable(config.format):
        try:
            return config.format(value)
        except Exception as e:
            logger.warning(f"Computed field formatter failed: {e}")
            return UNDEFINED
    if isinstance(value, (int, float)) and not isinstance(value, bool) and config.precision is not None:
        value = round_half_up(value, config.precision)
    if isinstance(config.format, str):
        options = dict(config.formatOptions)
        if config.precision is not None:
            options.setdefault("decimals", config.precision)
        return format_value(value, config.format, **options)
    return value

def compute_field(
    config: ComputedFieldConfig,
    context: ContextLike = None,
    engine: Optional[ExpressionEngine] = None,
) -> Any:
    """
    计算字段值。求值失败时在本地恢复为 UNDEFINED，不会让页面崩溃。
    """
    engine = engine or default_expression_engine
    ctx = Context.of(context)

    if callable(config.expression):
        try:
            raw = config.expression(dict(ctx.formData))
        except Exception as e:
            logger.warning(f"Computed field function failed: {e}")
            return UNDEFINED
        return format_computed_value(raw, config)

    try:
        raw = engine.evaluate(config.expression, ctx)
    except SandboxViolation:
        if engine.development:
            raise
        logger.warning(f"Computed expression '{config.expression}' violates the sandbox.")
        return UNDEFINED
    except ExpressionError as e:
        logger.warning(f"Computed expression '{config.expression}' could not be evaluated: {e}")
        return UNDEFINED
    return format_computed_value(raw, config)

def get_computed_dependencies(config: ComputedFieldConfig, engine: Optional[ExpressionEngine] = None) -> Set[str]:
    engine = engine or default_expression_engine
    if callable(config.expression):
        # 函数表达式无法静态分析，只能依赖声明
        return merge_declared_dependencies(set(), config.dependencies or [], None) if config.dependencies else {"formData"}
    inferred = engine.get_dependencies(config.expression)
    return merge_declared_dependencies(inferred, config.dependencies, config.expression)

def get_affected_computed_fields(
    changed_paths: Iterable[str],
    computed_fields: Mapping[str, ComputedFieldConfig],
    engine: Optional[ExpressionEngine] = None,
) -> List[str]:
    changed_paths = list(changed_paths)
    affected = []
    for name, config in computed_fields.items():
        if not config.reactive:
            continue
        if affects(changed_paths, get_computed_dependencies(config, engine)):
            affected.append(name)
    return affected

# ============================================================================
# 计算字段依赖图
# ============================================================================

def order_computed_fields(
    computed_fields: Mapping[str, ComputedFieldConfig],
    engine: Optional[ExpressionEngine] = None,
) -> List[str]:
    """
    按依赖拓扑排序，使依赖其他计算字段的字段排在后面。
    存在环时抛出 CompositionError。
    """
    graph = nx.DiGraph()
    graph.add_nodes_from(computed_fields.keys())
    for name, config in computed_fields.items():
        for dep in get_computed_dependencies(config, engine):
            segments = split_path(dep)
            if len(segments) >= 2 and segments[0] == "formData" and segments[1] in computed_fields:
                graph.add_edge(str(segments[1]), name)

    if not nx.is_directed_acyclic_graph(graph):
        cycle = nx.find_cycle(graph)
        raise CompositionError(f"Computed fields form a dependency cycle: {cycle}")
    return list(nx.topological_sort(graph))

def update_computed_fields(
    form_data: Mapping[str, Any],
    computed_fields: Mapping[str, ComputedFieldConfig],
    context: ContextLike = None,
    engine: Optional[ExpressionEngine] = None,
) -> Dict[str, Any]:
    """返回写入了全部计算字段的新 formData"""
    updated = dict(form_data)
    base = Context.of(context)
    for name in order_computed_fields(computed_fields, engine):
        updated[name] = compute_field(computed_fields[name], base.merge(formData=updated), engine)
    return updated

# ============================================================================
# Common computed field builders
# ============================================================================

def sum_field(fields: List[str], precision: int = 2) -> ComputedFieldConfig:
    return ComputedFieldConfig(
        expression=" + ".join(f"{{{{formData.{f}}}}}" for f in fields),
        dependencies=list(fields),
        precision=precision,
    )

def product_field(field1: str, field2: str, precision: int = 2) -> ComputedFieldConfig:
    return ComputedFieldConfig(
        expression=f"{{{{formData.{field1}}}}} * {{{{formData.{field2}}}}}",
        dependencies=[field1, field2],
        precision=precision,
    )

def percentage_field(value_field: str, total_field: str, precision: int = 2) -> ComputedFieldConfig:
    return ComputedFieldConfig(
        expression=f"({{{{formData.{value_field}}}}} / {{{{formData.{total_field}}}}}) * 100",
        dependencies=[value_field, total_field],
        precision=precision,
        format=lambda v: f"{v:.{precision}f}%" if isinstance(v, (int, float)) and not isinstance(v, bool) else "0%",
    )

def concat_field(fields: List[str], separator: str = " ") -> ComputedFieldConfig:
    escaped = separator.replace("\\", "\\\\").replace('"', '\\"')
    return ComputedFieldConfig(
        expression=f' + "{escaped}" + '.join(f"{{{{formData.{f}}}}}" for f in fields),
        dependencies=list(fields),
    )

def _literal(value: Any) -> str:
    if isinstance(value, str):
        return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)

def conditional_field(condition_field: str, condition_value: Any, true_value: Any, false_value: Any) -> ComputedFieldConfig:
    return ComputedFieldConfig(
        expression=(
            f"{{{{formData.{condition_field}}}}} === {_literal(condition_value)} "
            f"? {_literal(true_value)} : {_literal(false_value)}"
        ),
        dependencies=[condition_field],
    )

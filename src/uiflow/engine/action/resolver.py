# engine/action/resolver.py
"""
Action Context Resolver

对任意嵌套的 params (dict / list) 做模板插值：
- 父节点先于子节点、按声明顺序解析，结果确定。
- 非模板值原样保留；单个 {{ }} 返回原始类型。
- 某个字段解析失败只把该字段替换为 UNDEFINED，不影响兄弟字段。
"""
import logging
from typing import Any, Optional

from ..errors import ExpressionError, SandboxViolation
from ..expression import ExpressionEngine, default_expression_engine
from ..expression.main import ContextLike
from ..schemas.context_schema import Context
from ..utils.data_parser import UNDEFINED, has_template

logger = logging.getLogger(__name__)

def _resolve_value(value: Any, context: Context, engine: ExpressionEngine, path: str) -> Any:
    if isinstance(value, dict):
        return {key: _resolve_value(item, context, engine, f"{path}.{key}" if path else str(key)) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_resolve_value(item, context, engine, f"{path}[{i}]") for i, item in enumerate(value)]
    if not has_template(value):
        return value

    try:
        return engine.render(value, context)
    except SandboxViolation:
        if engine.development:
            raise
        logger.warning(f"Parameter '{path}' violates the sandbox; resolved to undefined.")
        return UNDEFINED
    except ExpressionError as e:
        logger.warning(f"Parameter '{path}' could not be resolved: {e}")
        return UNDEFINED

def resolve_params(params: Any, context: ContextLike = None, engine: Optional[ExpressionEngine] = None) -> Any:
    engine = engine or default_expression_engine
    return _resolve_value(params, Context.of(context), engine, "")

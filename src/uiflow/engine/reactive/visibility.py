# engine/reactive/visibility.py
"""
条件可见性：字段在条件表达式为假，或缺少任一声明的权限/角色时隐藏。
表达式解析或沙箱错误一律按“隐藏”处理 (fail closed)；开发环境下沙箱违规直接抛出。
"""
import logging
from typing import Any, Iterable, List, Optional, Set, Union

from ..errors import ExpressionError, SandboxViolation
from ..expression import ExpressionEngine, default_expression_engine, merge_declared_dependencies
from ..expression.main import ContextLike
from ..schemas.context_schema import Context
from .definitions import VisibilityConfig

logger = logging.getLogger(__name__)

VisibilityLike = Union[VisibilityConfig, str, bool, dict, None]

def _as_config(config: VisibilityLike) -> Optional[VisibilityConfig]:
    if config is None or isinstance(config, VisibilityConfig):
        return config
    if isinstance(config, (str, bool)):
        return VisibilityConfig(condition=config)
    return VisibilityConfig.model_validate(config)

def _has_any(required: Optional[List[str]], granted: Iterable[str]) -> bool:
    if not required:
        return True
    granted = set(granted)
    return any(item in granted for item in required)

def check_visibility(
    config: VisibilityLike,
    context: ContextLike = None,
    engine: Optional[ExpressionEngine] = None,
) -> bool:
    engine = engine or default_expression_engine
    config = _as_config(config)
    if config is None:
        return True

    ctx = Context.of(context)
    if not _has_any(config.permissions, ctx.granted_permissions):
        return False
    if not _has_any(config.roles, ctx.granted_roles):
        return False

    try:
        return engine.evaluate_condition(config.condition, ctx, default=True)
    except SandboxViolation:
        if engine.development:
            raise
        logger.warning(f"Visibility condition '{config.condition}' violates the sandbox; field hidden.")
        return False
    except ExpressionError as e:
        logger.warning(f"Visibility condition '{config.condition}' could not be evaluated: {e}")
        return False

def check_disabled(
    disabled: Union[str, bool, None],
    context: ContextLike = None,
    engine: Optional[ExpressionEngine] = None,
) -> bool:
    engine = engine or default_expression_engine
    try:
        return engine.evaluate_condition(disabled, context, default=False)
    except SandboxViolation:
        if engine.development:
            raise
        logger.warning(f"Disabled expression '{disabled}' violates the sandbox; field disabled.")
        return True
    except ExpressionError as e:
        logger.warning(f"Disabled expression '{disabled}' could not be evaluated: {e}")
        return True

def get_visibility_dependencies(config: VisibilityLike, engine: Optional[ExpressionEngine] = None) -> Set[str]:
    engine = engine or default_expression_engine
    config = _as_config(config)
    if config is None or not isinstance(config.condition, str):
        return set()
    inferred = engine.get_dependencies(config.condition)
    return merge_declared_dependencies(inferred, config.dependencies, config.condition)

def evaluate_all(conditions: List[VisibilityLike], context: ContextLike = None, engine: Optional[ExpressionEngine] = None) -> bool:
    return all(check_visibility(c, context, engine) for c in conditions)

def evaluate_any(conditions: List[VisibilityLike], context: ContextLike = None, engine: Optional[ExpressionEngine] = None) -> bool:
    return any(check_visibility(c, context, engine) for c in conditions)

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Set, Union

from ...core.config import settings
from ..errors import EvaluationRuntimeError
from ..schemas.context_schema import Context
from ..utils.data_parser import UNDEFINED, has_template
from ..utils.formatters import round_half_up
from .cache import ExpressionCache
from .dependencies import extract_dependencies
from .evaluator import Evaluator
from .functions import ALLOWED_FUNCTIONS
from .parser import parse
from .values import is_number, truthy
from . import ast

logger = logging.getLogger(__name__)

ContextLike = Union[Context, Mapping[str, Any], None]

_UNSET = object()

@dataclass(frozen=True)
class CompiledExpression:
    """预编译的表达式：源码 + AST + 静态依赖集合"""
    source: str
    mode: str
    node: ast.Node
    dependencies: FrozenSet[str]

class ExpressionEngine:
    """
    表达式引擎门面。
    每个页面实例持有一个，内部维护有界 LRU 解析缓存。
    """

    def __init__(
        self,
        cache_size: Optional[int] = None,
        division_sentinel: Any = _UNSET,
        development: Optional[bool] = None,
        functions: Optional[Dict[str, Callable[..., Any]]] = None,
    ):
        self.cache: ExpressionCache[CompiledExpression] = ExpressionCache(cache_size or settings.EXPRESSION_CACHE_SIZE)
        self.functions = functions if functions is not None else ALLOWED_FUNCTIONS
        sentinel = settings.DIVISION_BY_ZERO_SENTINEL if division_sentinel is _UNSET else division_sentinel
        self.evaluator = Evaluator(self.functions, division_sentinel=sentinel)
        self.development = settings.is_development if development is None else development

    # ------------------------------------------------------------------
    # 编译
    # ------------------------------------------------------------------
    def compile(self, expression: str, mode: str = "expression") -> CompiledExpression:
        """解析并缓存。语法错误抛 ParseError，禁用标识符抛 SandboxViolation。"""
        key = (mode, expression)
        compiled = self.cache.get(key)
        if compiled is not None:
            return compiled

        node = parse(expression, self.functions, mode=mode)
        compiled = CompiledExpression(
            source=expression,
            mode=mode,
            node=node,
            dependencies=frozenset(extract_dependencies(node)),
        )
        return self.cache.put(key, compiled)

    # ------------------------------------------------------------------
    # 求值
    # ------------------------------------------------------------------
    def evaluate(
        self,
        expression: Any,
        context: ContextLike = None,
        precision: Optional[int] = None,
        strict: bool = False,
        mode: str = "expression",
        **scope_vars: Any,
    ) -> Any:
        """
        对表达式求值。未知路径得到 UNDEFINED，永不因此抛异常。
        strict=False 时运行期错误 (如类型转换失败) 也降级为 UNDEFINED；
        strict=True 时抛出 EvaluationRuntimeError，供校验器转为字段错误。
        """
        if isinstance(expression, CompiledExpression):
            compiled = expression
        elif isinstance(expression, str):
            compiled = self.compile(expression, mode)
        else:
            return self._apply_precision(expression, precision)

        scope = self._scope(context)
        if scope_vars:
            scope.update(scope_vars)

        try:
            value = self.evaluator.evaluate(compiled.node, scope)
        except EvaluationRuntimeError as e:
            if e.expression is None:
                e.expression = compiled.source
            if strict:
                raise
            logger.debug(f"Expression '{compiled.source}' failed at runtime: {e}")
            return UNDEFINED
        except RecursionError:
            if strict:
                raise EvaluationRuntimeError("Expression evaluation exceeded recursion limit", compiled.source)
            return UNDEFINED

        return self._apply_precision(value, precision)

    def evaluate_condition(self, condition: Any, context: ContextLike = None, default: bool = True, strict: bool = False) -> bool:
        if condition is None:
            return default
        if isinstance(condition, bool):
            return condition
        return truthy(self.evaluate(condition, context, strict=strict))

    def render(self, template: Any, context: ContextLike = None, **scope_vars: Any) -> Any:
        """模板插值：单个 {{ }} 返回原始类型，混排文本返回字符串，非模板值原样返回。"""
        if not has_template(template):
            return template
        return self.evaluate(template, context, mode="template", **scope_vars)

    def get_dependencies(self, expression: Any, mode: str = "expression") -> Set[str]:
        if isinstance(expression, CompiledExpression):
            return set(expression.dependencies)
        if not isinstance(expression, str):
            return set()
        return set(self.compile(expression, mode).dependencies)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _scope(context: ContextLike) -> Dict[str, Any]:
        if context is None:
            return {}
        if isinstance(context, Context):
            return context.to_scope()
        return dict(context)

    @staticmethod
    def _apply_precision(value: Any, precision: Optional[int]) -> Any:
        if precision is None or not is_number(value):
            return value
        if isinstance(value, float) and value != value:
            return value
        return round_half_up(value, precision)


# 默认实例，供不关心页面隔离的调用方使用
default_expression_engine = ExpressionEngine()

def evaluate(expression: Any, context: ContextLike = None, precision: Optional[int] = None, **kwargs: Any) -> Any:
    return default_expression_engine.evaluate(expression, context, precision=precision, **kwargs)

def get_dependencies(expression: Any) -> Set[str]:
    return default_expression_engine.get_dependencies(expression)

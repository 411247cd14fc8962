from typing import Any, Dict, List, Optional, Protocol, Type

import jsonschema

from ..errors import ActionExecutionError
from ..expression import ExpressionEngine
from ..schemas.context_schema import Context
from ..utils.data_parser import UNDEFINED
from .context import ActionServices, CancellationToken
from .definitions import ActionResult, LeafAction

# ============================================================================
# 1. 协议定义 (Protocols)
# ============================================================================

class ActionRuntimeContext(Protocol):
    """
    [依赖倒置] 叶子动作在执行过程中能访问的编排器能力。
    """
    @property
    def context(self) -> Context:
        """当前节点的只读上下文快照"""
        ...

    @property
    def services(self) -> ActionServices:
        ...

    @property
    def engine(self) -> ExpressionEngine:
        ...

    @property
    def token(self) -> CancellationToken:
        ...

    async def send(self, type: str, data: Any = None) -> None:
        ...

    async def run_named_action(self, action_id: str, extra: Optional[Dict[str, Any]] = None) -> ActionResult:
        """执行 ActionServices.actions 中注册的命名动作"""
        ...

class ActionHandler(Protocol):
    """
    [核心契约] 所有叶子动作实现类必须遵循的接口。
    execute 返回结果数据；失败时抛出 ActionExecutionError (或任意异常，由编排器统一包装)。
    """
    def __init__(self, runtime: ActionRuntimeContext, node: LeafAction):
        ...

    async def execute(self, params: Dict[str, Any]) -> Any:
        ...

class BaseActionHandler:
    """
    所有叶子动作的通用基类。
    params_schema 为 JSON Schema，执行前用 jsonschema 校验解析后的参数。
    """
    kind: str = None
    params_schema: Optional[Dict[str, Any]] = None

    def __init__(self, runtime: ActionRuntimeContext, node: LeafAction):
        self.runtime = runtime
        self.node = node

    @property
    def services(self) -> ActionServices:
        return self.runtime.services

    def validate_params(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """按 schema 校验。配置中给出但解析为 UNDEFINED 的字段视为缺失值错误，不能当作未提供。"""
        unresolved = sorted(k for k, v in params.items() if v is UNDEFINED)
        if unresolved:
            raise ActionExecutionError(
                f"Unresolved parameters for '{self.kind}': {', '.join(unresolved)}", code="INVALID_PARAMS"
            )
        cleaned = dict(params)
        if self.params_schema:
            try:
                jsonschema.validate(instance=cleaned, schema=self.params_schema)
            except jsonschema.ValidationError as e:
                raise ActionExecutionError(
                    f"Invalid parameters for '{self.kind}': {e.message}", code="INVALID_PARAMS"
                )
        return cleaned

    async def run(self, params: Dict[str, Any]) -> Any:
        return await self.execute(self.validate_params(params))

    async def execute(self, params: Dict[str, Any]) -> Any:
        raise NotImplementedError

# ============================================================================
# 2. 注册中心 (Registry)
# ============================================================================

class ActionRegistry:
    """
    叶子动作注册中心。
    """
    def __init__(self):
        self._handlers: Dict[str, Type[ActionHandler]] = {}

    def register(self, kind: str):
        if not kind:
            raise TypeError("Must register with a non-empty action kind.")

        def decorator(cls):
            cls.kind = kind
            self._handlers[kind] = cls
            return cls
        return decorator

    def get(self, kind: str) -> Type[ActionHandler]:
        handler_cls = self._handlers.get(kind)
        if not handler_cls:
            raise ActionExecutionError(f"No handler registered for action kind '{kind}'.", code="UNKNOWN_ACTION")
        return handler_cls

    def has(self, kind: str) -> bool:
        return kind in self._handlers

    def kinds(self) -> List[str]:
        return sorted(self._handlers)

    def copy(self) -> "ActionRegistry":
        """派生一个独立的注册表，便于在不影响全局的前提下追加自定义动作"""
        registry = ActionRegistry()
        registry._handlers.update(self._handlers)
        return registry

# ============================================================================
# 3. 全局实例与辅助函数 (Global Instance & Helpers)
# ============================================================================

default_action_registry = ActionRegistry()
register_action = default_action_registry.register

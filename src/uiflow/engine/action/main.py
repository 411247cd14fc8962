from typing import Any, Dict, List, Optional, Set, Union

from ..expression import ExpressionEngine
from ..expression.main import ContextLike
from ..schemas.context_schema import Context
from .context import ActionServices, CancellationToken, PageStateStore
from .definitions import ActionNode, ActionResult
from .interceptor import ActionInterceptor
from .orchestrator import ActionCallbacks, ActionOrchestrator, SleepFn
from .parser import parse_action
from .registry import ActionRegistry, default_action_registry
from . import handlers # 导入这些模块以触发 @register_action 装饰器自动注册

class ActionEngineService:
    """
    动作引擎服务门面。
    负责解析动作配置并为每次执行创建独立的调度器；每个页面实例持有一个。
    """

    def __init__(
        self,
        services: Optional[ActionServices] = None,
        engine: Optional[ExpressionEngine] = None,
        registry: Optional[ActionRegistry] = None,
        interceptors: Optional[List[ActionInterceptor]] = None,
        sleep: Optional[SleepFn] = None,
    ):
        self.services = services or ActionServices()
        self.engine = engine or ExpressionEngine()
        self.registry = registry or default_action_registry
        self.interceptors = interceptors or []
        self._sleep = sleep
        self._active: Set[CancellationToken] = set()

    @property
    def state(self) -> PageStateStore:
        return self.services.state

    def parse(self, config: Dict[str, Any]) -> ActionNode:
        """页面配置加载时调用。结构错误抛 CompositionError，表达式语法错误抛 ParseError。"""
        return parse_action(config, registry=self.registry, engine=self.engine)

    async def execute(
        self,
        action: Union[ActionNode, Dict[str, Any]],
        context: ContextLike = None,
        callbacks: Optional[ActionCallbacks] = None,
    ) -> ActionResult:
        """
        执行动作树。
        :param action: 已解析的节点，或原始配置字典 (此时先解析)
        :param context: 触发时的上下文快照
        :param callbacks: 事件回调处理器
        :return: 根节点的执行结果；动作失败体现在结果中，而不是抛出
        """
        node = self.parse(action) if isinstance(action, dict) else action

        token = CancellationToken()
        self._active.add(token)
        orchestrator = ActionOrchestrator(
            services=self.services,
            engine=self.engine,
            registry=self.registry,
            callbacks=callbacks,
            interceptors=self.interceptors,
            sleep=self._sleep,
            token=token,
        )
        try:
            return await orchestrator.execute(node, Context.of(context))
        finally:
            self._active.discard(token)

    def cancel_all(self) -> int:
        """取消所有在途的动作链，返回被取消的数量"""
        tokens = list(self._active)
        for token in tokens:
            token.cancel()
        return len(tokens)


# 默认实例，供不关心页面隔离的调用方使用
default_action_engine = ActionEngineService()

async def execute_action(config: Union[ActionNode, Dict[str, Any]], context: ContextLike = None, **kwargs: Any) -> ActionResult:
    return await default_action_engine.execute(config, context, **kwargs)

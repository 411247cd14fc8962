from typing import Awaitable, Callable, Protocol

from ..schemas.context_schema import Context
from .definitions import ActionResult, LeafAction

# 定义 Next 函数的签名：一个不接受参数、返回 ActionResult 的异步函数
NextCall = Callable[[], Awaitable[ActionResult]]

class ActionInterceptor(Protocol):
    """
    叶子动作执行拦截器，包裹重试循环的前、中、后以及异常。
    必须在逻辑中调用 await next_call() 来继续执行链。
    """
    async def intercept(
        self,
        node: LeafAction,
        context: Context,
        next_call: NextCall
    ) -> ActionResult:
        ...

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set

from async_timeout import timeout

from ...core.config import settings
from ..errors import (
    ActionCancelledError, ActionExecutionError, ActionTimeoutError, ExpressionError, SandboxViolation,
)
from ..expression import ExpressionEngine
from ..expression.main import ContextLike
from ..schemas.context_schema import Context
from ..utils.data_parser import UNDEFINED, get_value_by_path, has_template
from .context import ActionServices, CancellationToken
from .definitions import (
    ActionMetadata, ActionNode, ActionResult, ConditionalAction, ErrorBody, ForEachAction, LeafAction,
    ParallelAction, RetryPolicy, SequenceAction,
)
from .interceptor import ActionInterceptor, NextCall
from .registry import ActionRegistry, default_action_registry
from .resolver import resolve_params

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]

# 超时后仍在运行的叶子任务：不强制终止，结果丢弃
_background_tasks: Set[asyncio.Task] = set()

def _track(task: asyncio.Future) -> None:
    def _done(t: asyncio.Future) -> None:
        _background_tasks.discard(t)
        if not t.cancelled() and t.exception() is not None:
            logger.warning(f"Abandoned action task finished with error: {t.exception()}")
    _background_tasks.add(task)
    task.add_done_callback(_done)

# 定义回调协议，供上层实现
class ActionCallbacks(Protocol):
    async def on_action_start(self, node: ActionNode) -> None: ...
    async def on_action_finish(self, result: ActionResult) -> None: ...
    async def on_action_error(self, result: ActionResult) -> None: ...
    async def on_action_skipped(self, result: ActionResult) -> None: ...
    async def on_event(self, type: str, data: Any) -> None: ... # 通用 fallback

def to_error_body(error: BaseException) -> ErrorBody:
    if isinstance(error, ActionExecutionError):
        return ErrorBody(
            message=error.message,
            type=type(error).__name__,
            code=error.code,
            status=error.status,
            fieldErrors=error.field_errors,
            data=error.data,
        )
    return ErrorBody(message=str(error) or type(error).__name__, type=type(error).__name__, code="ACTION_ERROR")

class _LeafRuntime:
    """单个叶子节点看到的运行时 (实现 ActionRuntimeContext)"""

    def __init__(self, orchestrator: "ActionOrchestrator", context: Context, token: CancellationToken, depth: int):
        self._orchestrator = orchestrator
        self._context = context
        self._token = token
        self._depth = depth

    @property
    def context(self) -> Context:
        return self._context

    @property
    def services(self) -> ActionServices:
        return self._orchestrator.services

    @property
    def engine(self) -> ExpressionEngine:
        return self._orchestrator.engine

    @property
    def token(self) -> CancellationToken:
        return self._token

    async def send(self, type: str, data: Any = None) -> None:
        await self._orchestrator.send(type, data)

    async def run_named_action(self, action_id: str, extra: Optional[Dict[str, Any]] = None) -> ActionResult:
        return await self._orchestrator.run_named_action(action_id, self._context, self._token, self._depth, extra)

class ActionOrchestrator:
    """
    动作树调度器。
    每个节点的状态机：pending -> evaluatingCondition -> (skipped | running) -> (success | error)，
    随后执行 onSuccess / onError 链。节点自身的失败只向上传播一层 (到所属节点的 onError)。
    """

    def __init__(
        self,
        services: Optional[ActionServices] = None,
        engine: Optional[ExpressionEngine] = None,
        registry: Optional[ActionRegistry] = None,
        callbacks: Optional[ActionCallbacks] = None,
        interceptors: Optional[List[ActionInterceptor]] = None,
        sleep: Optional[SleepFn] = None,
        token: Optional[CancellationToken] = None,
    ):
        self.services = services or ActionServices()
        self.engine = engine or ExpressionEngine()
        self.registry = registry or default_action_registry
        self.callbacks = callbacks
        self.interceptors = interceptors or []
        self.token = token or CancellationToken()
        self._sleep = sleep or asyncio.sleep

    async def send(self, type: str, data: Any = None):
        if not self.callbacks:
            return
        # 观察者的异常只记录，不能中断动作链
        try:
            method_name = f"on_{type}"
            if hasattr(self.callbacks, method_name):
                await getattr(self.callbacks, method_name)(data)
            elif hasattr(self.callbacks, "on_event"):
                await self.callbacks.on_event(type, data)
        except Exception as e:
            logger.error(f"Callback for '{type}' failed: {e}", exc_info=True)

    async def execute(self, node: ActionNode, context: ContextLike = None) -> ActionResult:
        return await self._run_node(node, Context.of(context), self.token, depth=1)

    def cancel(self) -> None:
        self.token.cancel()

    # ==========================================================================
    # 节点状态机
    # ==========================================================================
    async def _run_node(self, node: ActionNode, ctx: Context, token: CancellationToken, depth: int) -> ActionResult:
        start = time.monotonic()
        if token.cancelled:
            return self._cancelled_result(node, start)
        if depth > settings.ACTION_MAX_DEPTH:
            error = ActionExecutionError(f"Maximum action depth of {settings.ACTION_MAX_DEPTH} exceeded", code="MAX_DEPTH")
            return self._error_result(node, error, start)

        await self.send("action_start", node)
        ctx = self._with_page_state(ctx)

        # evaluatingCondition
        if node.when is not None and not self._evaluate_guard(node.when, ctx, node):
            result = ActionResult(
                id=node.id, kind=node.kind, success=True, data={"skipped": True},
                metadata=ActionMetadata(duration_ms=self._elapsed(start), skipped=True),
            )
            logger.info(f"Action {node.label} skipped: condition not met")
            await self.send("action_skipped", result)
            return result

        # running
        logger.info(f"Action {node.label} started")
        try:
            result = await self._dispatch(node, ctx, token, depth)
        except SandboxViolation:
            if self.engine.development:
                raise
            result = self._error_result(node, ActionExecutionError("Expression violates the sandbox", code="SANDBOX_VIOLATION"), start)
        except Exception as e:
            result = self._error_result(node, e, start)

        result.id, result.kind = node.id, node.kind
        result.metadata.duration_ms = self._elapsed(start)

        if result.metadata.cancelled:
            logger.info(f"Action {node.label} cancelled")
            await self.send("action_error", result)
            return result

        if result.success:
            logger.info(f"Action {node.label} succeeded in {result.metadata.duration_ms:.1f}ms")
            await self.send("action_finish", result)
            if node.onSuccess:
                result.chained = await self._run_chain(node.onSuccess, ctx.merge(result=result.data), token, depth, node, "onSuccess")
        else:
            logger.info(f"Action {node.label} failed: {result.error.message if result.error else 'unknown error'}")
            await self.send("action_error", result)
            if node.onError:
                error_ctx = ctx.merge(error=result.error.model_dump() if result.error else None)
                result.chained = await self._run_chain(node.onError, error_ctx, token, depth, node, "onError")
        return result

    def _with_page_state(self, ctx: Context) -> Context:
        """页面状态以 PageStateStore 为准；store 从未写入且为空时沿用调用方给的快照"""
        store = self.services.state
        if store.version == 0 and not store.get():
            return ctx
        return ctx.merge(pageState=store.snapshot())

    def _evaluate_guard(self, condition: Any, ctx: Context, node: ActionNode) -> bool:
        try:
            return self.engine.evaluate_condition(condition, ctx, default=True)
        except SandboxViolation:
            if self.engine.development:
                raise
            logger.warning(f"Condition of action {node.label} violates the sandbox; treated as false.")
            return False
        except ExpressionError as e:
            logger.warning(f"Condition of action {node.label} could not be evaluated: {e}")
            return False

    async def _run_chain(
        self,
        nodes: List[ActionNode],
        ctx: Context,
        token: CancellationToken,
        depth: int,
        owner: ActionNode,
        chain: str,
    ) -> List[ActionResult]:
        """链式动作按顺序执行，首个失败即停止；失败不会改写所属节点的结果"""
        results: List[ActionResult] = []
        for child in nodes:
            if token.cancelled:
                break
            result = await self._run_node(child, ctx, token, depth + 1)
            results.append(result)
            if not result.success:
                message = result.error.message if result.error else "unknown error"
                if chain == "onError":
                    logger.error(f"{chain} handler of action {owner.label} failed: {message}")
                else:
                    logger.warning(f"{chain} handler of action {owner.label} failed: {message}")
                break
        return results

    async def _dispatch(self, node: ActionNode, ctx: Context, token: CancellationToken, depth: int) -> ActionResult:
        if isinstance(node, SequenceAction):
            return await self._run_sequence(node, ctx, token, depth)
        if isinstance(node, ParallelAction):
            return await self._run_parallel(node, ctx, token, depth)
        if isinstance(node, ConditionalAction):
            return await self._run_conditional(node, ctx, token, depth)
        if isinstance(node, ForEachAction):
            return await self._run_for_each(node, ctx, token, depth)
        return await self._run_leaf(node, ctx, token, depth)

    # ==========================================================================
    # 叶子节点：重试 / 超时 / 拦截器
    # ==========================================================================
    async def _run_leaf(self, node: LeafAction, ctx: Context, token: CancellationToken, depth: int) -> ActionResult:
        handler_cls = self.registry.get(node.kind)
        params = resolve_params(node.params, ctx, self.engine)
        handler = handler_cls(_LeafRuntime(self, ctx, token, depth), node)

        async def core_execution() -> ActionResult:
            policy = node.retry or RetryPolicy()
            timeout_ms = node.timeout if node.timeout is not None else settings.ACTION_DEFAULT_TIMEOUT_MS
            last_exc: Optional[BaseException] = None
            attempt = 0
            for attempt in range(1, policy.attempts + 1):
                if token.cancelled:
                    return self._cancelled_result(node, time.monotonic(), attempts=attempt - 1)
                try:
                    data = await self._attempt(handler, params, node, timeout_ms)
                    return ActionResult(success=True, data=data, metadata=ActionMetadata(attempts=attempt))
                except ActionCancelledError:
                    return self._cancelled_result(node, time.monotonic(), attempts=attempt)
                except Exception as e:
                    last_exc = e
                    logger.warning(f"Action {node.label} attempt {attempt}/{policy.attempts} failed: {e}")

                if attempt < policy.attempts:
                    delay = self.retry_delay(policy, attempt)
                    if not await self._interruptible_sleep(delay, token):
                        return self._cancelled_result(node, time.monotonic(), attempts=attempt)

            if isinstance(last_exc, ActionExecutionError):
                last_exc.attempts = attempt
                error = last_exc
            else:
                error = ActionExecutionError(str(last_exc) or type(last_exc).__name__, attempts=attempt, cause=last_exc)
            if policy.attempts > 1:
                logger.warning(f"Action {node.label} exhausted {policy.attempts} attempts")
            result = self._error_result(node, error, time.monotonic())
            result.metadata.attempts = attempt
            return result

        # --- 责任链构建 (The Chain) ---
        # 倒序包装：列表第一个拦截器位于洋葱的最外层
        chain: NextCall = core_execution
        for interceptor in reversed(self.interceptors):
            def wrap(curr=interceptor, nxt=chain):
                return curr.intercept(node, ctx, nxt)
            chain = wrap
        return await chain()

    async def _attempt(self, handler: Any, params: Dict[str, Any], node: LeafAction, timeout_ms: Optional[int]) -> Any:
        task = asyncio.ensure_future(handler.run(params) if hasattr(handler, "run") else handler.execute(params))
        if timeout_ms is None:
            return await task
        try:
            async with timeout(timeout_ms / 1000.0):
                # shield: 超时只放弃等待，不取消已经开始的宿主侧副作用
                return await asyncio.shield(task)
        except asyncio.TimeoutError:
            _track(task)
            raise ActionTimeoutError(f"Action {node.label} timed out after {timeout_ms}ms")

    @staticmethod
    def retry_delay(policy: RetryPolicy, attempt: int) -> float:
        """第 attempt 次失败之后的等待秒数"""
        base = policy.delay * (2 ** (attempt - 1) if policy.backoff == "exponential" else 1)
        ceiling = policy.maxDelay if policy.maxDelay is not None else settings.RETRY_MAX_DELAY_MS
        delay = min(base, ceiling)
        jitter = policy.jitter if policy.jitter is not None else settings.RETRY_JITTER_RATIO
        if jitter:
            delay *= 1 + random.uniform(-jitter, jitter)
        return max(0.0, delay) / 1000.0

    async def _interruptible_sleep(self, seconds: float, token: CancellationToken) -> bool:
        """返回 False 表示等待期间被取消"""
        if token.cancelled:
            return False
        sleeper = asyncio.ensure_future(self._sleep(seconds))
        waiter = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                if not task.done():
                    task.cancel()
        return not token.cancelled

    # ==========================================================================
    # 组合节点 (Composite Nodes)
    # ==========================================================================
    async def _run_sequence(self, node: SequenceAction, ctx: Context, token: CancellationToken, depth: int) -> ActionResult:
        results: List[ActionResult] = []
        local = ctx
        for child in node.actions:
            if token.cancelled:
                break
            result = await self._run_node(child, local, token, depth + 1)
            results.append(result)
            if result.success and not result.skipped:
                # 上一步的结果对下一步可见
                local = local.merge(result=result.data)
            if not result.success and node.stopOnError:
                break

        if token.cancelled and len(results) < len(node.actions):
            cancelled = self._cancelled_result(node, time.monotonic())
            cancelled.children = results
            return cancelled
        return self._aggregate(node, results, "SEQUENCE_ERROR", first_error=True)

    async def _run_parallel(self, node: ParallelAction, ctx: Context, token: CancellationToken, depth: int) -> ActionResult:
        child_token = token.child()
        tasks = [asyncio.ensure_future(self._run_node(child, ctx, child_token, depth + 1)) for child in node.actions]
        try:
            if node.waitForAll:
                results = list(await asyncio.gather(*tasks))
            else:
                pending = set(tasks)
                failed = False
                while pending and not failed:
                    done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                    failed = any(not t.result().success for t in done)
                if failed:
                    # 只通知尚未开始的子节点；已在运行的任务跑完后结果被丢弃
                    child_token.cancel()
                    for task in pending:
                        _track(task)
                results = [t.result() for t in tasks if t.done()]
        finally:
            token.release(child_token)
        return self._aggregate(node, results, "PARALLEL_ERROR", first_error=False)

    async def _run_conditional(self, node: ConditionalAction, ctx: Context, token: CancellationToken, depth: int) -> ActionResult:
        # 条件只求值一次
        matched = self._evaluate_guard(node.condition, ctx, node)
        branch = node.then if matched else node.else_
        results: List[ActionResult] = []
        for child in branch:
            if token.cancelled:
                break
            result = await self._run_node(child, ctx, token, depth + 1)
            results.append(result)
            if not result.success:
                break

        aggregated = self._aggregate(node, results, "CONDITIONAL_ERROR", first_error=True)
        aggregated.data = {
            "condition": matched,
            "executed": bool(branch),
            "results": [r.data for r in results],
        }
        return aggregated

    async def _run_for_each(self, node: ForEachAction, ctx: Context, token: CancellationToken, depth: int) -> ActionResult:
        items = self._resolve_collection(node, ctx)

        def item_context(index: int, item: Any) -> Context:
            return ctx.merge(**{node.itemAs: item, node.indexAs: index})

        if not node.parallel:
            results: List[ActionResult] = []
            for index, item in enumerate(items):
                if token.cancelled:
                    break
                result = await self._run_node(node.action, item_context(index, item), token, depth + 1)
                results.append(result)
                if not result.success and node.stopOnError:
                    break
            if token.cancelled and len(results) < len(items):
                cancelled = self._cancelled_result(node, time.monotonic())
                cancelled.children = results
                return cancelled
            return self._aggregate(node, results, "FOREACH_ERROR", first_error=node.stopOnError)

        # 有界并发：固定数量的 worker 共享同一个迭代器
        limit = node.concurrency or settings.FOREACH_MAX_CONCURRENCY
        slots: List[Optional[ActionResult]] = [None] * len(items)
        iterator = iter(enumerate(items))
        child_token = token.child()

        async def worker() -> None:
            for index, item in iterator:
                slots[index] = await self._run_node(node.action, item_context(index, item), child_token, depth + 1)

        try:
            await asyncio.gather(*(worker() for _ in range(min(limit, len(items)))))
        finally:
            token.release(child_token)
        return self._aggregate(node, [r for r in slots if r is not None], "FOREACH_ERROR", first_error=False)

    def _resolve_collection(self, node: ForEachAction, ctx: Context) -> List[Any]:
        collection = node.collection
        if isinstance(collection, list):
            value = resolve_params(collection, ctx, self.engine)
        elif has_template(collection):
            value = self.engine.render(collection, ctx)
        else:
            value = get_value_by_path(ctx.to_scope(), collection)

        if value is UNDEFINED or value is None:
            logger.warning(f"forEach {node.label}: collection '{collection}' is empty or missing")
            return []
        if isinstance(value, dict):
            raise ActionExecutionError("forEach collection must be a list, got an object", code="INVALID_COLLECTION")
        if isinstance(value, (list, tuple)):
            return list(value)
        raise ActionExecutionError(
            f"forEach collection must be a list, got {type(value).__name__}", code="INVALID_COLLECTION"
        )

    # ==========================================================================
    # 命名动作 (executeAction)
    # ==========================================================================
    async def run_named_action(
        self,
        action_id: str,
        ctx: Context,
        token: CancellationToken,
        depth: int,
        extra: Optional[Dict[str, Any]] = None,
    ) -> ActionResult:
        from .parser import parse_action

        config = self.services.actions.get(action_id)
        if config is None:
            raise ActionExecutionError(f"Action '{action_id}' is not registered", code="UNKNOWN_ACTION")
        node = config if not isinstance(config, dict) else parse_action(config, self.registry, self.engine)
        return await self._run_node(node, ctx.merge(**extra) if extra else ctx, token, depth + 1)

    # ==========================================================================
    # 结果构造
    # ==========================================================================
    @staticmethod
    def _elapsed(start: float) -> float:
        return (time.monotonic() - start) * 1000.0

    def _error_result(self, node: ActionNode, error: BaseException, start: float) -> ActionResult:
        attempts = error.attempts if isinstance(error, ActionExecutionError) else 1
        return ActionResult(
            id=node.id, kind=node.kind, success=False, error=to_error_body(error),
            metadata=ActionMetadata(duration_ms=self._elapsed(start), attempts=attempts),
        )

    def _cancelled_result(self, node: ActionNode, start: float, attempts: int = 0) -> ActionResult:
        return ActionResult(
            id=node.id, kind=node.kind, success=False,
            error=to_error_body(ActionCancelledError(f"Action {node.label} was cancelled")),
            metadata=ActionMetadata(duration_ms=self._elapsed(start), attempts=attempts, cancelled=True),
        )

    def _aggregate(self, node: ActionNode, results: List[ActionResult], code: str, first_error: bool) -> ActionResult:
        failures = [r for r in results if not r.success]
        data = [r.data for r in results]
        if not failures:
            return ActionResult(success=True, data=data, children=results)

        if first_error or len(failures) == 1:
            error = failures[0].error.model_copy() if failures[0].error else ErrorBody(message="Action failed", type="ActionExecutionError")
        else:
            error = ErrorBody(
                message=f"{len(failures)} of {len(results)} actions in {node.label} failed",
                type="ActionExecutionError",
                code=code,
                data=[f.error.model_dump() if f.error else None for f in failures],
            )
        return ActionResult(success=False, data=data, error=error, children=results)

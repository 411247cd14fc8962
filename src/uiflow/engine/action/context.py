import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..errors import ActionCancelledError, ActionExecutionError
from ..utils.data_parser import UNDEFINED, delete_value_by_path, get_value_by_path, set_value_by_path
from .services import DatasourceService, FormService, ModalService, NavigationService, ToastService

logger = logging.getLogger(__name__)

StateListener = Callable[[Dict[str, Any], List[str]], Any]

# ============================================================================
# 1. 页面状态 (Page State)
# ============================================================================

class PageStateStore:
    """
    页面级共享可变状态，是编排器中唯一的共享写入点。
    所有写操作在同一把 asyncio.Lock 下串行执行 (single-writer)，
    并发的动作链修改重叠路径时不会丢失更新。读操作返回深拷贝快照。
    """

    def __init__(self, initial: Optional[Mapping[str, Any]] = None):
        self._initial: Dict[str, Any] = copy.deepcopy(dict(initial or {}))
        self._state: Dict[str, Any] = copy.deepcopy(self._initial)
        self._lock = asyncio.Lock()
        self._version = 0
        self._listeners: List[StateListener] = []
        self._owner: Optional[asyncio.Task] = None

    @property
    def version(self) -> int:
        return self._version

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self._state)

    def get(self, path: Optional[str] = None, default: Any = None) -> Any:
        if not path:
            return self.snapshot()
        value = get_value_by_path(self._state, path)
        return default if value is UNDEFINED else copy.deepcopy(value)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """注册变更监听，返回取消订阅函数"""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    # ------------------------------------------------------------------
    # 写操作 (全部串行化)
    # ------------------------------------------------------------------
    @asynccontextmanager
    async def _writing(self):
        # 持锁期间同一任务再次写入会永久阻塞 (asyncio.Lock 不可重入)
        if self._owner is not None and self._owner is asyncio.current_task():
            raise RuntimeError("Page state cannot be written while the same task holds the write lock")
        async with self._lock:
            self._owner = asyncio.current_task()
            try:
                yield
            finally:
                self._owner = None

    async def set(self, path: Optional[str], value: Any, merge: bool = True) -> Dict[str, Any]:
        """path 为空时整体替换页面状态"""
        async with self._writing():
            if not path:
                if not isinstance(value, Mapping):
                    raise ValueError("Replacing the whole page state requires a mapping value")
                self._state = copy.deepcopy(dict(value))
            else:
                self._state = set_value_by_path(self._state, path, copy.deepcopy(value), merge=merge)
            snapshot = self._commit()
        return await self._notify(snapshot, [path or ""])

    async def merge(self, updates: Mapping[str, Any]) -> Dict[str, Any]:
        async with self._writing():
            for path, value in updates.items():
                self._state = set_value_by_path(self._state, path, copy.deepcopy(value), merge=True)
            snapshot = self._commit()
        return await self._notify(snapshot, list(updates.keys()))

    async def reset(self, paths: Optional[List[str]] = None) -> Dict[str, Any]:
        """恢复到初始值；给定 paths 时只恢复这些路径 (初始不存在的路径被删除)"""
        async with self._writing():
            if not paths:
                self._state = copy.deepcopy(self._initial)
            else:
                for path in paths:
                    initial = get_value_by_path(self._initial, path)
                    if initial is UNDEFINED:
                        self._state = delete_value_by_path(self._state, path)
                    else:
                        self._state = set_value_by_path(self._state, path, copy.deepcopy(initial), merge=False)
            snapshot = self._commit()
        return await self._notify(snapshot, list(paths) if paths else [""])

    async def update(self, path: str, fn: Callable[[Any], Any]) -> Any:
        """
        读-改-写在同一个临界区内完成 (compare-and-set)。
        fn 可以是协程函数，但不能在其中写入本 store。
        """
        async with self._writing():
            current = get_value_by_path(self._state, path)
            new_value = fn(None if current is UNDEFINED else copy.deepcopy(current))
            if asyncio.iscoroutine(new_value):
                new_value = await new_value
            self._state = set_value_by_path(self._state, path, new_value, merge=False)
            snapshot = self._commit()
        await self._notify(snapshot, [path])
        return copy.deepcopy(new_value)

    async def compare_and_set(self, path: str, expected: Any, value: Any) -> bool:
        async with self._writing():
            current = get_value_by_path(self._state, path)
            if (None if current is UNDEFINED else current) != expected:
                return False
            self._state = set_value_by_path(self._state, path, copy.deepcopy(value), merge=False)
            snapshot = self._commit()
        await self._notify(snapshot, [path])
        return True

    def _commit(self) -> Dict[str, Any]:
        self._version += 1
        return self.snapshot()

    async def _notify(self, snapshot: Dict[str, Any], paths: List[str]) -> Dict[str, Any]:
        """在锁外通知监听者，监听者可以继续写入 store"""
        for listener in list(self._listeners):
            try:
                outcome = listener(snapshot, paths)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"Page state listener failed: {e}", exc_info=True)
        return snapshot

# ============================================================================
# 2. 取消信号 (Cancellation)
# ============================================================================

class CancellationToken:
    """
    协作式取消信号。取消只阻止尚未开始的子节点；
    已在运行的叶子节点不会被强制终止，其结果被丢弃。
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._cancelled = False
        self._waiters: List[asyncio.Future] = []
        self._children: List["CancellationToken"] = []
        if parent is not None:
            parent._children.append(self)
            self._cancelled = parent.cancelled

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_result(None)
        self._waiters.clear()
        for child in self._children:
            child.cancel()

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    def release(self, child: "CancellationToken") -> None:
        if child in self._children:
            self._children.remove(child)

    async def wait(self) -> None:
        if self._cancelled:
            return
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        await waiter

    def raise_if_cancelled(self, label: str = "Action") -> None:
        if self._cancelled:
            raise ActionCancelledError(f"{label} was cancelled")

# ============================================================================
# 3. 协作方服务容器 (Services)
# ============================================================================

@dataclass
class ActionServices:
    """
    叶子动作可用的外部服务。缺失的服务会让对应叶子以 ActionExecutionError 失败，
    而不会影响其他动作。
    """
    toast: Optional[ToastService] = None
    modal: Optional[ModalService] = None
    navigation: Optional[NavigationService] = None
    datasource: Optional[DatasourceService] = None
    forms: Dict[str, FormService] = field(default_factory=dict)
    state: PageStateStore = field(default_factory=PageStateStore)
    # executeAction 可直接运行的命名动作 (原始配置或已解析的节点)
    actions: Dict[str, Any] = field(default_factory=dict)

    def require(self, name: str) -> Any:
        service = getattr(self, name, None)
        if service is None:
            raise ActionExecutionError(f"Service '{name}' is not available", code="SERVICE_UNAVAILABLE")
        return service

    def get_form(self, form_id: Optional[str] = None) -> FormService:
        if form_id:
            form = self.forms.get(form_id)
            if form is None:
                raise ActionExecutionError(f"Form '{form_id}' is not registered", code="FORM_NOT_FOUND")
            return form
        if len(self.forms) == 1:
            return next(iter(self.forms.values()))
        raise ActionExecutionError(
            "A formId is required when the page has zero or several forms", code="FORM_NOT_FOUND"
        )

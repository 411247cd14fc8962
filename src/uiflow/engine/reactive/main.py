# engine/reactive/main.py
import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Union

from ...core.config import settings
from ..errors import CompositionError, ExpressionError, SandboxViolation
from ..expression import ExpressionEngine, affects
from ..expression.main import ContextLike
from ..schemas.context_schema import Context
from ..utils.data_parser import UNDEFINED, delete_value_by_path, get_value_by_path, is_empty, set_value_by_path
from .computed import compute_field, get_computed_dependencies, order_computed_fields
from .definitions import FieldBinding, FieldState, ValidationRule
from .validation import get_validation_dependencies, run_async_rule, validate_field
from .visibility import check_disabled, check_visibility, get_visibility_dependencies

logger = logging.getLogger(__name__)

class _FieldDeps:
    """注册时一次性推导出的依赖集合"""
    __slots__ = ("visibility", "disabled", "computed", "validation")

    def __init__(self):
        self.visibility: Set[str] = set()
        self.disabled: Set[str] = set()
        self.computed: Set[str] = set()
        self.validation: Set[str] = set()

class ReactiveFieldEngine:
    """
    表单生命周期控制器 (FormController)。

    - set_value 同步完成：脏标记、受影响的计算字段、可见性刷新、本字段及依赖字段的重新校验。
    - 网络型 (async) 校验器以 asyncio.Task 调度，每个字段同一时刻最多一个在途请求，
      新请求会取消并取代旧请求；被取代请求的结果直接丢弃。
    - hidden 字段不参与校验，也不进入提交载荷。
    """

    def __init__(
        self,
        context: ContextLike = None,
        engine: Optional[ExpressionEngine] = None,
        form_id: str = "default",
    ):
        self.form_id = form_id
        self.engine = engine or ExpressionEngine()
        self._base = Context.of(context)
        self._values: Dict[str, Any] = dict(self._base.formData)

        self.bindings: Dict[str, FieldBinding] = {}
        self.states: Dict[str, FieldState] = {}
        self._deps: Dict[str, _FieldDeps] = {}
        self._computed_order: List[str] = []

        self._async_tasks: Dict[str, asyncio.Task] = {}
        self._async_seq: Dict[str, int] = {}

    # ==========================================================================
    # Context
    # ==========================================================================
    @property
    def context(self) -> Context:
        return self._base.merge(formData=dict(self._values))

    @property
    def values(self) -> Dict[str, Any]:
        return dict(self._values)

    @property
    def errors(self) -> Dict[str, str]:
        return {name: s.error for name, s in self.states.items() if s.error and not s.hidden}

    def set_context(self, **updates: Any) -> Set[str]:
        """更新 formData 以外的命名空间 (pageState、user 等)，并刷新受影响的字段"""
        changed = set(updates.keys())
        form_updates = updates.pop("formData", None)
        if form_updates:
            self._values.update(form_updates)
            for name, state in self.states.items():
                value = get_value_by_path(self._values, name)
                if value is not UNDEFINED:
                    state.value = value
        if updates:
            self._base = self._base.merge(**updates)
        return self._propagate(changed, origin=None)

    # ==========================================================================
    # 注册 / 注销
    # ==========================================================================
    def register(self, binding: Union[FieldBinding, Mapping[str, Any]]) -> FieldState:
        if not isinstance(binding, FieldBinding):
            binding = FieldBinding.model_validate(binding)
        name = binding.name

        initial = get_value_by_path(self._values, name)
        if initial is UNDEFINED:
            initial = binding.default
            self._values = set_value_by_path(self._values, name, initial, merge=False)

        state = FieldState(name=name, value=initial)
        self.bindings[name] = binding
        self.states[name] = state

        try:
            self._deps[name] = self._compile(binding)
        except (ExpressionError, CompositionError) as e:
            # 配置有误的字段不激活，页面其余部分照常工作
            if isinstance(e, SandboxViolation) and self.engine.development:
                self._drop(name)
                raise
            logger.warning(f"Field '{name}' could not be activated: {e}")
            self._deps[name] = _FieldDeps()
            state.active = False
            return state

        if binding.computed is not None:
            try:
                self._reorder_computed()
            except CompositionError:
                self._drop(name)
                raise
            self._recompute(name)

        self._refresh_flags(name)
        self._propagate({f"formData.{name}"}, origin=name)
        return self.states[name]

    def unregister(self, name: str) -> None:
        self._cancel_async(name)
        self._drop(name)
        self._values = delete_value_by_path(self._values, name)

    def _drop(self, name: str) -> None:
        self.bindings.pop(name, None)
        self.states.pop(name, None)
        self._deps.pop(name, None)
        if name in self._computed_order:
            self._computed_order.remove(name)

    def _compile(self, binding: FieldBinding) -> _FieldDeps:
        """预解析所有表达式，语法错误在这里暴露而不是每次求值时"""
        deps = _FieldDeps()
        deps.visibility = get_visibility_dependencies(binding.visibility, self.engine)
        if isinstance(binding.disabled, str):
            deps.disabled = self.engine.get_dependencies(binding.disabled)
        if binding.computed is not None:
            deps.computed = get_computed_dependencies(binding.computed, self.engine)
        deps.validation = get_validation_dependencies(binding.validation, self.engine)
        return deps

    def _reorder_computed(self) -> None:
        computed = {
            name: b.computed for name, b in self.bindings.items()
            if b.computed is not None and self.states[name].active
        }
        self._computed_order = order_computed_fields(computed, self.engine)

    # ==========================================================================
    # 值变更
    # ==========================================================================
    def set_value(self, name: str, value: Any) -> Set[str]:
        """
        同步应用一次字段变更，返回状态发生变化的字段名集合。
        异步校验器在当前事件循环中排队执行。
        """
        state = self.states.get(name)
        if state is None:
            raise KeyError(f"Field '{name}' is not registered")

        self._values = set_value_by_path(self._values, name, value, merge=False)
        state.value = value
        if state.status == "pristine":
            state.status = "dirty"

        touched = self._propagate({f"formData.{name}"}, origin=name)
        self._validate(name)
        touched.add(name)
        return touched

    def blur(self, name: str) -> Optional[str]:
        state = self.states.get(name)
        if state is None:
            raise KeyError(f"Field '{name}' is not registered")
        if state.status == "pristine":
            state.status = "dirty"
        self._validate(name)
        return state.error

    def _propagate(self, changed: Set[str], origin: Optional[str]) -> Set[str]:
        touched: Set[str] = set()

        # 计算字段按拓扑序推进，前一个的变化可能影响后一个
        for name in self._computed_order:
            binding = self.bindings[name]
            if name == origin or not binding.computed.reactive:
                continue
            if affects(changed, self._deps[name].computed):
                if self._recompute(name):
                    changed.add(f"formData.{name}")
                    touched.add(name)

        for name, deps in self._deps.items():
            if not self.states[name].active:
                continue
            if affects(changed, deps.visibility | deps.disabled):
                if self._refresh_flags(name):
                    touched.add(name)

        for name, deps in self._deps.items():
            state = self.states[name]
            if name == origin or not state.active or state.status == "pristine":
                continue
            if affects(changed, deps.validation):
                self._validate(name)
                touched.add(name)
        return touched

    def _recompute(self, name: str) -> bool:
        new_value = compute_field(self.bindings[name].computed, self.context, self.engine)
        state = self.states[name]
        if new_value == state.value and type(new_value) is type(state.value):
            return False
        self._values = set_value_by_path(self._values, name, new_value, merge=False)
        state.value = new_value
        return True

    def _refresh_flags(self, name: str) -> bool:
        binding = self.bindings[name]
        state = self.states[name]
        ctx = self.context
        hidden = not check_visibility(binding.visibility, ctx, self.engine)
        disabled = check_disabled(binding.disabled, ctx, self.engine)
        changed = hidden != state.hidden or disabled != state.disabled
        state.hidden, state.disabled = hidden, disabled

        if hidden:
            # 隐藏字段不保留错误，也不再等待异步校验
            self._cancel_async(name)
            state.error = None
            state.validating = False
        elif changed and state.status != "pristine":
            self._validate(name)
        return changed

    # ==========================================================================
    # 校验
    # ==========================================================================
    def _validate(self, name: str) -> bool:
        binding = self.bindings[name]
        state = self.states[name]
        if state.hidden or not state.active:
            state.error = None
            return True

        value = state.value
        if binding.required and is_empty(value):
            outcome: Union[bool, str] = binding.required_message
        else:
            outcome = validate_field(binding.validation, value, self.context, self.engine)

        if outcome is not True:
            self._cancel_async(name)
            state.error, state.status, state.validating = outcome, "invalid", False
            return False

        state.error = None
        if self._schedule_async(name):
            state.status = "dirty"
        else:
            state.status = "valid"
        return True

    def _async_rules(self, name: str) -> List[ValidationRule]:
        return [r for r in self.bindings[name].validation if r.is_async]

    def _schedule_async(self, name: str) -> bool:
        rules = self._async_rules(name)
        if not rules:
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop; async validation of '{name}' skipped.")
            return False

        self._cancel_async(name)
        seq = self._async_seq.get(name, 0) + 1
        self._async_seq[name] = seq

        debounce = max((r.debounce_ms or 0 for r in rules), default=0) or settings.VALIDATION_DEBOUNCE_MS
        state = self.states[name]
        state.validating = True
        self._async_tasks[name] = loop.create_task(
            self._run_async_validation(name, seq, rules, state.value, dict(self._values), debounce / 1000)
        )
        return True

    async def _run_async_validation(
        self,
        name: str,
        seq: int,
        rules: List[ValidationRule],
        value: Any,
        form_data: Dict[str, Any],
        delay: float,
    ) -> None:
        if delay > 0:
            await asyncio.sleep(delay)

        outcome: Union[bool, str] = True
        for rule in rules:
            try:
                outcome = await run_async_rule(rule, value, form_data)
            except Exception as e:
                logger.warning(f"Async validator of '{name}' failed: {e}")
                outcome = rule.message or "Validation failed"
            if outcome is not True:
                break

        state = self.states.get(name)
        if state is None or self._async_seq.get(name) != seq:
            logger.warning(f"Discarding stale async validation result for '{name}'.")
            return

        state.validating = False
        if outcome is True:
            state.error, state.status = None, "valid"
        else:
            state.error, state.status = outcome, "invalid"
        self._async_tasks.pop(name, None)

    def _cancel_async(self, name: str) -> None:
        task = self._async_tasks.pop(name, None)
        if task is not None and not task.done():
            task.cancel()
        if name in self._async_seq:
            # 递增序号，使已在途但未被取消干净的结果失效
            self._async_seq[name] += 1

    async def wait_for_pending(self) -> None:
        tasks = [t for t in self._async_tasks.values() if not t.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def validate_all(self) -> bool:
        """同步校验全部可见字段；异步校验器被调度但不等待"""
        valid = True
        for name, state in self.states.items():
            if state.status == "pristine":
                state.status = "dirty"
            if not self._validate(name):
                valid = False
        return valid

    async def validate_form(self) -> bool:
        """校验全部字段并等待异步校验完成"""
        self.validate_all()
        await self.wait_for_pending()
        return not self.errors

    # ==========================================================================
    # 查询 / 提交 / 重置
    # ==========================================================================
    def get_state(self, name: str) -> Optional[FieldState]:
        return self.states.get(name)

    def submit_payload(self) -> Dict[str, Any]:
        payload = dict(self._values)
        for name, state in self.states.items():
            if state.hidden:
                payload = delete_value_by_path(payload, name)
        return payload

    def reset(self, values: Optional[Mapping[str, Any]] = None) -> None:
        for name in list(self._async_tasks):
            self._cancel_async(name)
        self._values = dict(values) if values is not None else {}
        for name, binding in self.bindings.items():
            value = get_value_by_path(self._values, name)
            if value is UNDEFINED:
                value = binding.default
                self._values = set_value_by_path(self._values, name, value, merge=False)
            self.states[name] = FieldState(name=name, value=value, active=self.states[name].active)

        for name in self._computed_order:
            self._recompute(name)
        for name in self.bindings:
            if self.states[name].active:
                self._refresh_flags(name)

    def field_names(self, include_hidden: bool = True) -> Iterable[str]:
        return [n for n, s in self.states.items() if include_hidden or not s.hidden]

# engine/action/parser.py
"""
动作树解析：页面配置加载时调用一次，之后动作树不可变。
结构错误 (未知 kind、forEach 缺少 collection、嵌套过深等) 抛 CompositionError；
条件表达式在此预解析，语法错误 (ParseError) 同样在加载阶段暴露。
"""
from typing import Any, Iterator, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from ...core.config import settings
from ..errors import CompositionError
from ..expression import ExpressionEngine, default_expression_engine
from ..utils.data_parser import has_template
from .definitions import (
    COMPOSITE_KINDS, ActionNode, ActionTree, ConditionalAction, ForEachAction, ParallelAction, SequenceAction,
)
from .registry import ActionRegistry, default_action_registry

_CHILD_KEYS = ("actions", "then", "else", "action")
_CHAIN_KEYS = ("onSuccess", "onError")

def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]

def _lookup(raw: Mapping[str, Any], key: str, composite: bool) -> Any:
    if key in raw:
        return raw[key]
    params = raw.get("params")
    if composite and isinstance(params, Mapping):
        return params.get(key)
    return None

def _raw_children(raw: Mapping[str, Any], kind: str, path: str) -> Iterator[Tuple[Any, str]]:
    composite = kind in COMPOSITE_KINDS
    keys = (_CHILD_KEYS + _CHAIN_KEYS) if composite else _CHAIN_KEYS
    for key in keys:
        for i, child in enumerate(_as_list(_lookup(raw, key, composite))):
            yield child, f"{path}.{key}[{i}]"

def _check_structure(config: Any, registry: ActionRegistry, max_depth: int) -> None:
    """显式工作栈遍历原始配置，避免恶意的深层嵌套耗尽调用栈"""
    stack: List[Tuple[Any, str, int]] = [(config, "root", 1)]
    while stack:
        raw, path, depth = stack.pop()
        if depth > max_depth:
            raise CompositionError(f"Action tree exceeds the maximum depth of {max_depth}", path)
        if not isinstance(raw, Mapping):
            raise CompositionError("Action node must be an object", path)

        kind = raw.get("kind", raw.get("type"))
        if not kind or not isinstance(kind, str):
            raise CompositionError("Action node is missing 'kind'", path)
        if kind not in COMPOSITE_KINDS and not registry.has(kind):
            raise CompositionError(f"Unknown action kind '{kind}'", path)

        composite = kind in COMPOSITE_KINDS
        if kind in ("sequence", "parallel") and not _as_list(_lookup(raw, "actions", composite)):
            raise CompositionError(f"'{kind}' requires a non-empty 'actions' list", path)
        if kind == "conditional":
            if _lookup(raw, "condition", composite) is None:
                raise CompositionError("'conditional' requires a 'condition'", path)
            if not _as_list(_lookup(raw, "then", composite)):
                raise CompositionError("'conditional' requires a 'then' branch", path)
        if kind == "forEach":
            if _lookup(raw, "collection", composite) is None:
                raise CompositionError("'forEach' requires a 'collection'", path)
            if _lookup(raw, "action", composite) is None:
                raise CompositionError("'forEach' requires an 'action'", path)

        retry = raw.get("retry")
        if isinstance(retry, Mapping):
            attempts = retry.get("attempts")
            if isinstance(attempts, (int, float)) and attempts < 1:
                raise CompositionError(f"Retry attempts must be at least 1, got {attempts}", path)
        if retry is not None and composite:
            raise CompositionError("Retry is only supported on leaf actions", path)

        for child, child_path in _raw_children(raw, kind, path):
            stack.append((child, child_path, depth + 1))

def _format_validation_error(e: ValidationError) -> Tuple[str, str]:
    first = e.errors()[0]
    loc = ".".join(str(part) for part in first.get("loc", ()) if part != "root")
    return first.get("msg", str(e)), loc or "root"

def _iter_nodes(root: ActionNode) -> Iterator[ActionNode]:
    stack: List[ActionNode] = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(node.onSuccess)
        stack.extend(node.onError)
        if isinstance(node, (SequenceAction, ParallelAction)):
            stack.extend(node.actions)
        elif isinstance(node, ConditionalAction):
            stack.extend(node.then)
            stack.extend(node.else_)
        elif isinstance(node, ForEachAction):
            stack.append(node.action)

def _precompile(root: ActionNode, engine: ExpressionEngine) -> None:
    for node in _iter_nodes(root):
        if isinstance(node.when, str):
            engine.compile(node.when)
        if isinstance(node, ConditionalAction) and isinstance(node.condition, str):
            engine.compile(node.condition)
        if isinstance(node, ForEachAction) and has_template(node.collection):
            engine.compile(node.collection, mode="template")

def parse_action(
    config: Any,
    registry: Optional[ActionRegistry] = None,
    engine: Optional[ExpressionEngine] = None,
    max_depth: Optional[int] = None,
) -> ActionNode:
    registry = registry or default_action_registry
    engine = engine or default_expression_engine
    max_depth = max_depth or settings.ACTION_MAX_DEPTH

    _check_structure(config, registry, max_depth)
    try:
        root = ActionTree.model_validate({"root": config}).root
    except ValidationError as e:
        message, loc = _format_validation_error(e)
        raise CompositionError(f"Invalid action configuration: {message}", loc)

    _precompile(root, engine)
    return root

import logging
from typing import Iterable, List, Optional, Set, Union

from ..schemas.context_schema import CONTEXT_NAMESPACES
from ..utils.data_parser import split_path, join_path
from . import ast

logger = logging.getLogger(__name__)

Segment = Union[str, int]

def extract_dependencies(node: ast.Node) -> Set[str]:
    """
    静态遍历 AST，收集表达式可能读取的全部路径。
    动态下标 (a[b]) 只能确定到 a 为止，结果是实际读取路径的超集。
    """
    paths: Set[str] = set()
    _walk(node, paths)
    return paths

def _static_path(node: ast.Node) -> Optional[List[Segment]]:
    if isinstance(node, ast.Identifier):
        return [node.name]
    if isinstance(node, ast.Member):
        base = _static_path(node.target)
        return base + [node.name] if base is not None else None
    if isinstance(node, ast.Index) and isinstance(node.index, ast.Literal):
        base = _static_path(node.target)
        key = node.index.value
        if base is not None and isinstance(key, (str, int)) and not isinstance(key, bool):
            return base + [key]
    return None

def _walk(node: ast.Node, paths: Set[str]) -> None:
    path = _static_path(node)
    if path is not None:
        paths.add(join_path(path))
        return

    if isinstance(node, ast.Member):
        _walk(node.target, paths)
    elif isinstance(node, ast.Index):
        base = _static_path(node.target)
        if base is not None:
            paths.add(join_path(base))
        else:
            _walk(node.target, paths)
        _walk(node.index, paths)
    elif isinstance(node, ast.Unary):
        _walk(node.operand, paths)
    elif isinstance(node, (ast.Binary, ast.Logical)):
        _walk(node.left, paths)
        _walk(node.right, paths)
    elif isinstance(node, ast.Conditional):
        _walk(node.test, paths)
        _walk(node.consequent, paths)
        _walk(node.alternate, paths)
    elif isinstance(node, (ast.Call, ast.ArrayLiteral)):
        for child in (node.args if isinstance(node, ast.Call) else node.items):
            _walk(child, paths)
    elif isinstance(node, ast.ObjectLiteral):
        for _, child in node.entries:
            _walk(child, paths)
    elif isinstance(node, ast.Template):
        for part in node.parts:
            if not isinstance(part, str):
                _walk(part, paths)

# ============================================================================
# 路径比较
# ============================================================================

def normalize_dependency(path: str) -> str:
    """'quantity' -> 'formData.quantity'；已带命名空间的路径保持不变。"""
    segments = split_path(path)
    if not segments:
        return path
    if str(segments[0]) in CONTEXT_NAMESPACES:
        return join_path(segments)
    return join_path(["formData"] + segments)

def is_prefix(prefix: str, path: str) -> bool:
    a, b = split_path(prefix), split_path(path)
    return len(a) <= len(b) and [str(s) for s in a] == [str(s) for s in b[:len(a)]]

def paths_overlap(a: str, b: str) -> bool:
    """一条路径的变化是否可能影响另一条路径 (任一方是另一方的前缀)"""
    return is_prefix(a, b) or is_prefix(b, a)

def affects(changed: Iterable[str], dependencies: Iterable[str]) -> bool:
    dependencies = list(dependencies)
    return any(paths_overlap(c, d) for c in changed for d in dependencies)

def merge_declared_dependencies(
    inferred: Set[str],
    declared: Optional[Iterable[str]],
    expression: Optional[str] = None,
) -> Set[str]:
    """
    声明的依赖列表只能用来“收窄”。
    推断出的路径若没有被任何声明路径覆盖，则并入结果并发出警告，绝不静默丢弃。
    """
    if declared is None:
        return set(inferred)

    declared_set = {normalize_dependency(d) for d in declared}
    missing = {
        path for path in inferred
        if not any(is_prefix(d, path) for d in declared_set)
    }
    if missing:
        logger.warning(
            f"Declared dependencies {sorted(declared_set)} omit paths read by expression "
            f"'{expression}': {sorted(missing)}. They were added back."
        )
    return declared_set | missing

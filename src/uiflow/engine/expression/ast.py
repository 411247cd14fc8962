from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Tuple, Union

# ============================================================================
# 表达式 AST 节点。全部不可变，可被多个页面实例安全共享。
# ============================================================================

@dataclass(frozen=True)
class Literal:
    value: Any

@dataclass(frozen=True)
class Identifier:
    name: str

@dataclass(frozen=True)
class Member:
    """a.b"""
    target: "Node"
    name: str

@dataclass(frozen=True)
class Index:
    """a[expr]"""
    target: "Node"
    index: "Node"

@dataclass(frozen=True)
class Unary:
    op: str
    operand: "Node"

@dataclass(frozen=True)
class Binary:
    op: str
    left: "Node"
    right: "Node"

@dataclass(frozen=True)
class Logical:
    """&& || ?? —— 短路求值"""
    op: str
    left: "Node"
    right: "Node"

@dataclass(frozen=True)
class Conditional:
    test: "Node"
    consequent: "Node"
    alternate: "Node"

@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple["Node", ...]

@dataclass(frozen=True)
class ArrayLiteral:
    items: Tuple["Node", ...]

@dataclass(frozen=True)
class ObjectLiteral:
    entries: Tuple[Tuple[str, "Node"], ...]

@dataclass(frozen=True)
class Template:
    """
    文本与 {{ }} 片段混排的模板，求值结果恒为字符串。
    parts 中的 str 原样输出，Node 求值后字符串化。
    """
    parts: Tuple[Union[str, "Node"], ...]

Node = Union[
    Literal, Identifier, Member, Index, Unary, Binary, Logical,
    Conditional, Call, ArrayLiteral, ObjectLiteral, Template,
]

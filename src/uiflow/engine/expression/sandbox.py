from typing import FrozenSet, Optional
from ..errors import SandboxViolation

# 禁止出现在表达式中的标识符 / 属性名。
DENIED_IDENTIFIERS: FrozenSet[str] = frozenset({
    "eval",
    "Function",
    "constructor",
    "window",
    "document",
    "process",
    "import",
    "require",
    "prototype",
    "__proto__",
    "global",
    "globalThis",
})

def is_denied(name: str) -> bool:
    return name in DENIED_IDENTIFIERS or name.startswith("__")

def check_identifier(name: str, expression: Optional[str] = None) -> str:
    if is_denied(name):
        raise SandboxViolation(name, expression)
    return name

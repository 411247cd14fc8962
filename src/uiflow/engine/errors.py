# uiflow/engine/errors.py
from typing import Any, Optional

# ============================================================================
# 1. 表达式错误 (Expression Errors)
# ============================================================================

class ExpressionError(Exception):
    """表达式子系统的所有错误的基类"""

    def __init__(self, message: str, expression: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.expression = expression


class ParseError(ExpressionError):
    """表达式语法错误。在配置加载阶段抛出，而不是每次求值时。"""

    def __init__(self, message: str, expression: Optional[str] = None, position: Optional[int] = None):
        if position is not None:
            message = f"{message} (at position {position})"
        super().__init__(message, expression)
        self.position = position


class SandboxViolation(ExpressionError):
    """表达式中出现了被禁止的标识符。"""

    def __init__(self, identifier: str, expression: Optional[str] = None):
        super().__init__(f"Identifier '{identifier}' is not allowed in expressions", expression)
        self.identifier = identifier


class EvaluationRuntimeError(ExpressionError):
    """求值期间的错误，例如无法完成的类型转换。"""


# ============================================================================
# 2. 动作错误 (Action Errors)
# ============================================================================

class ActionError(Exception):
    """动作子系统的所有错误的基类"""


class ActionExecutionError(ActionError):
    """
    叶子动作执行失败：网络、业务逻辑或超时。
    重试耗尽后触发节点的 onError 链。
    """
    default_code = "ACTION_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status: Optional[int] = None,
        attempts: int = 1,
        cause: Optional[BaseException] = None,
        field_errors: Optional[dict] = None,
        data: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status = status
        self.attempts = attempts
        self.cause = cause
        self.field_errors = field_errors
        self.data = data


class ActionTimeoutError(ActionExecutionError):
    default_code = "TIMEOUT"


class ActionCancelledError(ActionExecutionError):
    default_code = "CANCELLED"


class CompositionError(ActionError):
    """动作树或字段依赖图结构非法。页面配置解析阶段即为致命错误。"""

    def __init__(self, message: str, path: Optional[str] = None):
        if path:
            message = f"{message} (at {path})"
        super().__init__(message)
        self.message = message
        self.path = path

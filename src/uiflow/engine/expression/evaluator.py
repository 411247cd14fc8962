from typing import Any, Callable, Dict, Mapping, Optional

from ..errors import EvaluationRuntimeError, SandboxViolation
from ..utils.data_parser import UNDEFINED, is_nullish
from .sandbox import is_denied
from .values import (
    is_number, truthy, to_number, to_string, strict_equals, loose_equals, compare,
)
from . import ast

class Evaluator:
    """
    沙箱化的 AST 解释器。
    只对 dict / list / str 做取值，从不访问宿主对象的属性，从不调用白名单之外的函数。
    """

    def __init__(self, functions: Dict[str, Callable[..., Any]], division_sentinel: Any = None):
        self.functions = functions
        self.division_sentinel = division_sentinel

    def evaluate(self, node: ast.Node, scope: Mapping[str, Any]) -> Any:
        method = getattr(self, f"_eval_{type(node).__name__}")
        return method(node, scope)

    # --- 取值 ---
    def _eval_Literal(self, node: ast.Literal, scope):
        return node.value

    def _eval_Identifier(self, node: ast.Identifier, scope):
        return scope.get(node.name, UNDEFINED)

    def _eval_Member(self, node: ast.Member, scope):
        return self._lookup(self.evaluate(node.target, scope), node.name)

    def _eval_Index(self, node: ast.Index, scope):
        target = self.evaluate(node.target, scope)
        key = self.evaluate(node.index, scope)
        if isinstance(key, str) and is_denied(key):
            raise SandboxViolation(key)
        return self._lookup(target, key)

    def _lookup(self, target: Any, key: Any) -> Any:
        if isinstance(target, Mapping):
            if is_number(key) and float(key).is_integer():
                key = str(int(key))
            return target.get(key, UNDEFINED) if isinstance(key, str) else UNDEFINED
        if isinstance(target, (list, tuple, str)):
            if key == "length":
                return len(target)
            if isinstance(key, str) and key.isdigit():
                key = int(key)
            if is_number(key) and float(key).is_integer():
                index = int(key)
                if 0 <= index < len(target):
                    return target[index]
        return UNDEFINED

    # --- 运算 ---
    def _eval_Unary(self, node: ast.Unary, scope):
        value = self.evaluate(node.operand, scope)
        if node.op == "!":
            return not truthy(value)
        number = to_number(value)
        return -number if node.op == "-" else number

    def _eval_Logical(self, node: ast.Logical, scope):
        left = self.evaluate(node.left, scope)
        if node.op == "&&":
            return self.evaluate(node.right, scope) if truthy(left) else left
        if node.op == "||":
            return left if truthy(left) else self.evaluate(node.right, scope)
        # ??
        return self.evaluate(node.right, scope) if is_nullish(left) else left

    def _eval_Binary(self, node: ast.Binary, scope):
        op = node.op
        left = self.evaluate(node.left, scope)
        right = self.evaluate(node.right, scope)

        if op == "===":
            return strict_equals(left, right)
        if op == "!==":
            return not strict_equals(left, right)
        if op == "==":
            return loose_equals(left, right)
        if op == "!=":
            return not loose_equals(left, right)
        if op in ("<", "<=", ">", ">="):
            return compare(op, left, right)

        if op == "+" and (isinstance(left, str) or isinstance(right, str)):
            return to_string(left) + to_string(right)

        a, b = to_number(left), to_number(right)
        try:
            return self._arithmetic(op, a, b)
        except ArithmeticError as e:
            # 超大整数与浮点混算会溢出
            raise EvaluationRuntimeError(f"Arithmetic '{op}' failed: {e}")

    def _arithmetic(self, op: str, a, b):
        if op == "+":
            return a + b
        if op == "-":
            return a - b
        if op == "*":
            return a * b
        if op in ("/", "%"):
            if b == 0:
                # 除零不抛异常，返回约定的哨兵值
                return self.division_sentinel
            if op == "%":
                return _js_mod(a, b)
            result = a / b
            return int(result) if isinstance(a, int) and isinstance(b, int) and result.is_integer() else result
        raise EvaluationRuntimeError(f"Unsupported operator '{op}'")

    def _eval_Conditional(self, node: ast.Conditional, scope):
        if truthy(self.evaluate(node.test, scope)):
            return self.evaluate(node.consequent, scope)
        return self.evaluate(node.alternate, scope)

    def _eval_Call(self, node: ast.Call, scope):
        func = self.functions.get(node.name)
        if func is None:
            raise EvaluationRuntimeError(f"Function '{node.name}' is not available")
        args = [self.evaluate(arg, scope) for arg in node.args]
        try:
            return func(*args)
        except EvaluationRuntimeError:
            raise
        except (TypeError, ValueError, ArithmeticError, OverflowError) as e:
            raise EvaluationRuntimeError(f"{node.name}() failed: {e}")

    # --- 字面量 / 模板 ---
    def _eval_ArrayLiteral(self, node: ast.ArrayLiteral, scope):
        return [self.evaluate(item, scope) for item in node.items]

    def _eval_ObjectLiteral(self, node: ast.ObjectLiteral, scope):
        return {key: self.evaluate(value, scope) for key, value in node.entries}

    def _eval_Template(self, node: ast.Template, scope):
        return "".join(
            part if isinstance(part, str) else to_string(self.evaluate(part, scope))
            for part in node.parts
        )

def _js_mod(a, b):
    # 余数符号跟随被除数 (与 JS 一致)
    result = abs(a) % abs(b)
    return -result if a < 0 else result

import json
import math
from typing import Any, Union

from ..errors import EvaluationRuntimeError
from ..utils.data_parser import UNDEFINED, is_nullish, smart_cast_to_number

Number = Union[int, float]

def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)

def truthy(value: Any) -> bool:
    """JS 风格的真值判断：空列表 / 空对象为真。"""
    if value is None or value is UNDEFINED or value is False:
        return False
    if is_number(value):
        return value != 0 and not (isinstance(value, float) and math.isnan(value))
    if isinstance(value, str):
        return value != ""
    return True

def to_number(value: Any) -> Number:
    """
    算术运算的数值转换。null / undefined / "" 视为 0，便于部分填写的表单正常计算。
    无法转换时抛出 EvaluationRuntimeError。
    """
    if is_nullish(value):
        return 0
    if isinstance(value, bool):
        return int(value)
    if is_number(value):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text == "":
            return 0
        try:
            return smart_cast_to_number(text)
        except (TypeError, ValueError):
            raise EvaluationRuntimeError(f"Cannot convert '{value}' to a number")
    raise EvaluationRuntimeError(f"Cannot convert value of type {type(value).__name__} to a number")

def to_string(value: Any) -> str:
    if is_nullish(value):
        return ""
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)

def strict_equals(left: Any, right: Any) -> bool:
    if left is UNDEFINED or right is UNDEFINED:
        return left is right
    if left is None or right is None:
        return left is right
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if is_number(left) and is_number(right):
        return left == right
    if type(left) is not type(right):
        return False
    return left == right

def loose_equals(left: Any, right: Any) -> bool:
    if is_nullish(left) or is_nullish(right):
        return is_nullish(left) and is_nullish(right)
    if isinstance(left, bool):
        left = int(left)
    if isinstance(right, bool):
        right = int(right)
    if is_number(left) and isinstance(right, str) or isinstance(left, str) and is_number(right):
        try:
            return to_number(left) == to_number(right)
        except EvaluationRuntimeError:
            return False
    return left == right

def compare(op: str, left: Any, right: Any) -> bool:
    if left is UNDEFINED or right is UNDEFINED:
        return False
    if isinstance(left, str) and isinstance(right, str):
        a, b = left, right
    else:
        try:
            a, b = to_number(left), to_number(right)
        except EvaluationRuntimeError:
            return False
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b

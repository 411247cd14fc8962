# engine/expression/functions.py
"""
表达式中允许调用的辅助函数白名单。
只包含无副作用的字符串 / 数值 / 日期格式化函数，不支持用户自定义函数。
"""
import math
from datetime import datetime, date
from typing import Any, Callable, Dict

from ..utils.data_parser import UNDEFINED, is_nullish, smart_cast_to_number
from ..utils.formatters import (
    round_half_up, format_number, format_currency, format_percent, format_date,
)
from .values import to_number, to_string, truthy

def _text(value: Any) -> str:
    return to_string(value)

def _length(value: Any) -> int:
    if is_nullish(value):
        return 0
    if isinstance(value, (str, list, tuple, dict)):
        return len(value)
    return len(to_string(value))

def _substring(value: Any, start: Any, end: Any = UNDEFINED) -> str:
    text = _text(value)
    start = int(to_number(start))
    if is_nullish(end):
        return text[start:]
    return text[start:int(to_number(end))]

def _includes(container: Any, item: Any) -> bool:
    if is_nullish(container):
        return False
    if isinstance(container, (list, tuple)):
        return item in container
    return _text(item) in _text(container)

def _join(items: Any, separator: Any = ",") -> str:
    if not isinstance(items, (list, tuple)):
        return _text(items)
    return _text(separator).join(_text(i) for i in items)

def _round(value: Any, precision: Any = 0) -> Any:
    return round_half_up(to_number(value), int(to_number(precision)))

def _numbers(args) -> list:
    if len(args) == 1 and isinstance(args[0], (list, tuple)):
        args = args[0]
    return [to_number(a) for a in args]

def _min(*args: Any) -> Any:
    values = _numbers(args)
    return min(values) if values else UNDEFINED

def _max(*args: Any) -> Any:
    values = _numbers(args)
    return max(values) if values else UNDEFINED

def _sum(*args: Any) -> Any:
    return sum(_numbers(args))

def _number(value: Any) -> Any:
    if is_nullish(value) or value == "":
        return 0
    try:
        return smart_cast_to_number(value)
    except (TypeError, ValueError):
        return math.nan

def _is_empty(value: Any) -> bool:
    if is_nullish(value):
        return True
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) == 0
    return False

def _coalesce(*args: Any) -> Any:
    for arg in args:
        if not is_nullish(arg):
            return arg
    return UNDEFINED

def _format_date(value: Any, fmt: Any = "%Y-%m-%d") -> str:
    return format_date(value, _text(fmt))

def _format_number(value: Any, decimals: Any = 0) -> str:
    return format_number(value, int(to_number(decimals)))

def _format_currency(value: Any, currency: Any = "USD", decimals: Any = 2) -> str:
    return format_currency(value, _text(currency), int(to_number(decimals)))

def _format_percent(value: Any, decimals: Any = 0) -> str:
    return format_percent(value, int(to_number(decimals)))


ALLOWED_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    # --- 字符串 ---
    "upper": lambda v: _text(v).upper(),
    "lower": lambda v: _text(v).lower(),
    "trim": lambda v: _text(v).strip(),
    "length": _length,
    "concat": lambda *args: "".join(_text(a) for a in args),
    "substring": _substring,
    "replace": lambda v, old, new: _text(v).replace(_text(old), _text(new)),
    "includes": _includes,
    "startsWith": lambda v, prefix: _text(v).startswith(_text(prefix)),
    "endsWith": lambda v, suffix: _text(v).endswith(_text(suffix)),
    "join": _join,
    # --- 数值 ---
    "round": _round,
    "floor": lambda v: math.floor(to_number(v)),
    "ceil": lambda v: math.ceil(to_number(v)),
    "abs": lambda v: abs(to_number(v)),
    "min": _min,
    "max": _max,
    "sum": _sum,
    # --- 类型 ---
    "number": _number,
    "string": _text,
    "boolean": truthy,
    "isEmpty": _is_empty,
    "coalesce": _coalesce,
    # --- 日期 / 格式化 ---
    "now": lambda: datetime.now().isoformat(timespec="seconds"),
    "today": lambda: date.today().isoformat(),
    "formatDate": _format_date,
    "formatNumber": _format_number,
    "formatCurrency": _format_currency,
    "formatPercent": _format_percent,
}

# `now()` / `today()` 依赖时钟，不参与确定性保证
NON_DETERMINISTIC_FUNCTIONS = frozenset({"now", "today"})

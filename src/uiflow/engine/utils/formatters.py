# engine/utils/formatters.py

from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Optional, Union

from .data_parser import is_nullish

EMPTY_DISPLAY = "—"

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "CNY": "¥",
    "INR": "₹",
}

def round_half_up(value: Union[int, float], precision: int) -> Union[int, float]:
    """按给定精度四舍五入 (而非 Python 默认的银行家舍入)"""
    if isinstance(value, bool):
        return value
    try:
        quantum = Decimal(1).scaleb(-precision)
        rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return value
    if precision <= 0:
        return int(rounded)
    return float(rounded)

def _to_number(value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number:  # NaN
        return None
    return number

def format_number(value: Any, decimals: int = 0, use_grouping: bool = True) -> str:
    number = _to_number(value)
    if number is None:
        return EMPTY_DISPLAY
    number = round_half_up(number, decimals)
    spec = f"{',' if use_grouping else ''}.{max(decimals, 0)}f"
    return format(number, spec)

def format_currency(value: Any, currency: str = "USD", decimals: int = 2) -> str:
    number = _to_number(value)
    if number is None:
        return EMPTY_DISPLAY
    symbol = CURRENCY_SYMBOLS.get(currency.upper(), f"{currency.upper()} ")
    sign = "-" if number < 0 else ""
    return f"{sign}{symbol}{format_number(abs(number), decimals)}"

def format_percent(value: Any, decimals: int = 0) -> str:
    """value 为比例值，0.25 -> '25%'"""
    number = _to_number(value)
    if number is None:
        return EMPTY_DISPLAY
    return f"{format_number(number * 100, decimals, use_grouping=False)}%"

def parse_date(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # 与前端保持一致：数字按毫秒时间戳处理
        return datetime.fromtimestamp(value / 1000.0)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            return None
    return None

def format_date(value: Any, fmt: str = "%b %d, %Y") -> str:
    parsed = parse_date(value)
    if parsed is None:
        return EMPTY_DISPLAY
    return parsed.strftime(fmt)

def format_value(value: Any, kind: str = "text", **options) -> str:
    if kind == "number":
        return format_number(value, decimals=options.get("decimals", 0), use_grouping=options.get("useGrouping", True))
    if kind == "currency":
        return format_currency(value, currency=options.get("currency", "USD"), decimals=options.get("decimals", 2))
    if kind == "percent":
        return format_percent(value, decimals=options.get("decimals", 0))
    if kind == "date":
        return format_date(value, fmt=options.get("format", "%b %d, %Y"))
    if is_nullish(value):
        return EMPTY_DISPLAY
    return str(value)

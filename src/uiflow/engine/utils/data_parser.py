# engine/utils/data_parser.py

import copy
import math
import re
from typing import Any, Dict, List, Mapping, Sequence, Union

# ====================================================================
# ===== undefined 哨兵 =====
# ====================================================================

class _Undefined:
    """
    表示“路径不存在”的单例。
    与 None (显式的 null) 区分开，未知路径求值为 UNDEFINED 而不是抛出异常。
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "undefined"

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __reduce__(self):
        return (_Undefined, ())

UNDEFINED = _Undefined()

def is_undefined(value: Any) -> bool:
    return value is UNDEFINED

def is_nullish(value: Any) -> bool:
    return value is None or value is UNDEFINED

def is_empty(value: Any) -> bool:
    """渐进式填写表单时的“空值”判定：undefined / null / 空字符串"""
    return value is None or value is UNDEFINED or value == ""

# ====================================================================
# ===== 路径读写 =====
# ====================================================================

_PATH_TOKEN = re.compile(r'\[(\d+)\]|\[["\']([^"\']*)["\']\]|([^.\[\]]+)')

def split_path(path: Union[str, List[str]]) -> List[Union[str, int]]:
    """
    将路径拆分为片段，保留数组索引。
    'formData.items[0].price' -> ['formData', 'items', 0, 'price']
    """
    if isinstance(path, list):
        path = '.'.join(str(p) for p in path)

    if not isinstance(path, str):
        raise TypeError("path must be a string")

    segments: List[Union[str, int]] = []
    for index, quoted, plain in _PATH_TOKEN.findall(path):
        if index:
            segments.append(int(index))
        elif quoted:
            segments.append(quoted)
        elif plain:
            plain = plain.strip()
            if plain:
                segments.append(plain)
    return segments

def join_path(segments: Sequence[Union[str, int]]) -> str:
    return '.'.join(str(s) for s in segments)

def get_value_by_path(data: Any, path: Union[str, List[str]], default: Any = UNDEFINED) -> Any:
    keys = split_path(path)

    if not keys:
        return default

    value = data
    for key in keys:
        if value is None or value is UNDEFINED:
            return default  # 路径不存在

        if isinstance(value, Mapping):
            key = str(key)
            if key not in value:
                return default
            value = value[key]
        elif isinstance(value, (list, tuple)):
            if isinstance(key, str) and key.isdigit():
                key = int(key)
            if isinstance(key, int) and 0 <= key < len(value):
                value = value[key]
            else:
                return default  # 数组索引超出范围或类型不匹配
        else:
            return default  # 键不存在或类型不匹配

    return value

def set_value_by_path(data: Dict[str, Any], path: str, value: Any, merge: bool = True) -> Dict[str, Any]:
    """
    返回一个写入了 value 的新字典，原字典不会被修改。
    merge=True 且新旧值都是 dict 时做浅合并。
    """
    keys = split_path(path)
    if not keys:
        raise ValueError("path must not be empty")

    root = copy.copy(data) if isinstance(data, dict) else {}
    current = root
    for key in keys[:-1]:
        key = str(key)
        nxt = current.get(key)
        nxt = copy.copy(nxt) if isinstance(nxt, dict) else {}
        current[key] = nxt
        current = nxt

    last = str(keys[-1])
    existing = current.get(last)
    if merge and isinstance(value, dict) and isinstance(existing, dict):
        current[last] = {**existing, **value}
    else:
        current[last] = value
    return root

def delete_value_by_path(data: Dict[str, Any], path: str) -> Dict[str, Any]:
    keys = split_path(path)
    if not keys:
        return copy.copy(data)

    root = copy.copy(data)
    current = root
    for key in keys[:-1]:
        key = str(key)
        nxt = current.get(key)
        if not isinstance(nxt, dict):
            return root
        nxt = copy.copy(nxt)
        current[key] = nxt
        current = nxt
    current.pop(str(keys[-1]), None)
    return root

# ====================================================================
# ===== 模板拆分 =====
# ====================================================================

TEMPLATE_PATTERN = re.compile(r'\{\{(.*?)\}\}', re.DOTALL)

def split_expression(expression: str) -> list:
    """将表达式文本按照 {{ 和 }} 分割成数组"""
    parts = re.split(r'(\{\{.*?\}\})', expression, flags=re.DOTALL)
    parts = [part for part in parts if part]
    return parts

def has_template(value: Any) -> bool:
    return isinstance(value, str) and '{{' in value

# ====================================================================
# ===== 类型转换 =====
# ====================================================================

def smart_cast_to_number(value: Any) -> Union[int, float]:
    """
    Intelligently casts a value to a number (int or float).
    If it can be an integer without data loss, it returns an int.
    Otherwise, it returns a float.
    Raises ValueError / TypeError if it cannot be converted.
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    float_val = float(value)
    if math.isfinite(float_val) and float_val == int(float_val) and not ('.' in str(value) or 'e' in str(value).lower()):
        return int(float_val)
    return float_val

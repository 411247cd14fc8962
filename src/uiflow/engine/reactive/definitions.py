from __future__ import annotations
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, ConfigDict, field_validator

# ============================================================================
# 1. 字段状态 (Field State)
# ============================================================================

FieldStatus = Literal["pristine", "dirty", "valid", "invalid"]

class FieldState(BaseModel):
    """
    字段生命周期：pristine -> dirty -> {valid, invalid}
    hidden / disabled 为正交标记；hidden 字段不参与校验也不进入提交载荷。
    """
    name: str
    status: FieldStatus = "pristine"
    value: Any = None
    hidden: bool = False
    disabled: bool = False
    error: Optional[str] = None
    validating: bool = False
    active: bool = Field(True, description="配置解析失败的字段不会激活")

    @property
    def touched(self) -> bool:
        return self.status != "pristine"

# ============================================================================
# 2. 声明 (Declarations)
# ============================================================================

class VisibilityConfig(BaseModel):
    """条件表达式与权限/角色检查之间是 AND 关系"""
    condition: Optional[Union[str, bool]] = Field(None, description="可见性条件表达式")
    dependencies: Optional[List[str]] = Field(None, description="声明的依赖，只能用于收窄")
    permissions: Optional[List[str]] = Field(None, description="具备其中任一权限即可")
    roles: Optional[List[str]] = Field(None, description="具备其中任一角色即可")

    model_config = ConfigDict(extra="forbid")

FormatFn = Callable[[Any], Any]

class ComputedFieldConfig(BaseModel):
    expression: Union[str, Callable[[Dict[str, Any]], Any]] = Field(..., description="计算表达式，或接收 formData 的函数")
    dependencies: Optional[List[str]] = None
    precision: Optional[int] = Field(None, ge=0)
    format: Optional[Union[Literal["text", "number", "currency", "percent", "date"], FormatFn]] = None
    formatOptions: Dict[str, Any] = Field(default_factory=dict)
    reactive: bool = Field(True, description="False 时只在加载时计算一次")

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

SyncValidateFn = Callable[[Any, Dict[str, Any]], Union[bool, str]]
AsyncValidateFn = Callable[[Any, Dict[str, Any]], Awaitable[Union[bool, str]]]

class ValidationRule(BaseModel):
    """
    跨字段校验规则。expression / validate / async_validate 三选一。
    skip_if_empty=True 时，任一依赖字段为空即判定为通过，避免渐进填写过程中的过早报错。
    """
    expression: Optional[str] = Field(None, description="为真即通过；可通过 value 引用当前字段值")
    validate_fn: Optional[SyncValidateFn] = Field(None, alias="validate")
    async_validate: Optional[AsyncValidateFn] = None
    dependencies: List[str] = Field(default_factory=list)
    message: Optional[str] = None
    debounce_ms: Optional[int] = Field(None, ge=0)
    skip_if_empty: bool = True

    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True, extra="forbid")

    @property
    def is_async(self) -> bool:
        return self.async_validate is not None

class FieldBinding(BaseModel):
    """Widget Renderer 提供的单个表单字段的声明"""
    name: str = Field(..., min_length=1)
    default: Any = None
    required: bool = False
    required_message: str = "This field is required"
    visibility: Optional[Union[VisibilityConfig, str, bool]] = None
    disabled: Optional[Union[str, bool]] = None
    computed: Optional[ComputedFieldConfig] = None
    validation: List[ValidationRule] = Field(default_factory=list)

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    @field_validator("validation", mode="before")
    @classmethod
    def _wrap_single_rule(cls, value):
        if value is None:
            return []
        if isinstance(value, (dict, ValidationRule)):
            return [value]
        return value

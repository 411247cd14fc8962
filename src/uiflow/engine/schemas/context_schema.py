# src/uiflow/engine/schemas/context_schema.py

from typing import Any, Dict, List, Mapping, Optional, Union
from pydantic import BaseModel, Field, ConfigDict

# 固定的顶层命名空间。未带命名空间的字段依赖默认归入 formData。
CONTEXT_NAMESPACES = (
    "formData",
    "pageState",
    "routeParams",
    "queryParams",
    "user",
    "tenant",
    "trigger",
    "result",
    "error",
)

class TriggerInfo(BaseModel):
    """触发动作的 UI 事件信息"""
    widgetId: Optional[str] = None
    eventType: Optional[str] = None
    eventData: Optional[Any] = None

    model_config = ConfigDict(extra="allow")

class Context(BaseModel):
    """
    表达式与动作可读取的全部数据的不可变快照。
    每次交互都应构造新的 Context，而不是原地修改。
    额外字段 (如 forEach 注入的 item / index) 通过 extra="allow" 保留。
    """
    formData: Dict[str, Any] = Field(default_factory=dict, description="表单当前值")
    pageState: Dict[str, Any] = Field(default_factory=dict, description="页面状态快照")
    routeParams: Dict[str, Any] = Field(default_factory=dict, description="路由参数，由 Route Resolver 提供")
    queryParams: Dict[str, Any] = Field(default_factory=dict, description="查询参数")
    user: Optional[Dict[str, Any]] = Field(None, description="当前用户")
    tenant: Optional[Dict[str, Any]] = Field(None, description="当前租户")
    permissions: List[str] = Field(default_factory=list, description="当前用户的权限列表")
    roles: List[str] = Field(default_factory=list, description="当前用户的角色列表")
    trigger: Optional[Dict[str, Any]] = Field(None, description="触发事件")
    result: Any = Field(None, description="上一步动作的成功结果")
    error: Optional[Dict[str, Any]] = Field(None, description="上一步动作的错误信息")

    model_config = ConfigDict(frozen=True, extra="allow")

    @classmethod
    def of(cls, data: Union["Context", Mapping[str, Any], None] = None) -> "Context":
        if isinstance(data, Context):
            return data
        return cls.model_validate(dict(data or {}))

    def merge(self, **updates: Any) -> "Context":
        """返回合并了 updates 的新 Context，当前实例保持不变。"""
        return self.model_copy(update=updates)

    def to_scope(self) -> Dict[str, Any]:
        """表达式求值使用的根作用域 (浅拷贝)"""
        scope = {name: getattr(self, name) for name in type(self).model_fields}
        scope.update(self.model_extra or {})
        return scope

    @property
    def granted_permissions(self) -> List[str]:
        granted = list(self.permissions)
        if self.user:
            granted.extend(self.user.get("permissions") or [])
        return granted

    @property
    def granted_roles(self) -> List[str]:
        granted = list(self.roles)
        if self.user:
            granted.extend(self.user.get("roles") or [])
        return granted

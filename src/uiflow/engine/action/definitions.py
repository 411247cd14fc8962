from __future__ import annotations
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Tuple, Union
from pydantic import (
    AliasChoices, BaseModel, ConfigDict, Discriminator, Field, Tag, field_validator, model_validator,
)

# ============================================================================
# 1. 权威状态定义 (Authoritative Status Definitions)
# ============================================================================

ActionStatus = Literal["PENDING", "EVALUATING", "SKIPPED", "RUNNING", "SUCCESS", "FAILED", "CANCELLED"]

COMPOSITE_KINDS = ("sequence", "parallel", "conditional", "forEach")

class ErrorBody(BaseModel):
    """标准错误信息结构"""
    message: str = Field(..., description="错误消息")
    type: str = Field(..., description="错误类型")
    code: Optional[str] = Field(None, description="业务错误码，如 TIMEOUT / API_ERROR")
    status: Optional[int] = Field(None, description="HTTP 状态码 (如有)")
    fieldErrors: Optional[Dict[str, Any]] = Field(None, description="服务端返回的字段级错误")
    data: Optional[Any] = Field(None, description="附加数据，parallel 失败时为各子动作的错误列表")

class ActionMetadata(BaseModel):
    duration_ms: float = 0.0
    attempts: int = 0
    skipped: bool = False
    cancelled: bool = False

class ActionResult(BaseModel):
    """
    [权威定义] 单个节点的执行结果，由父节点的链式逻辑消费。
    组合节点在 children 中保留每个子节点的结果。
    """
    id: Optional[str] = None
    kind: Optional[str] = None
    success: bool
    data: Any = None
    error: Optional[ErrorBody] = None
    metadata: ActionMetadata = Field(default_factory=ActionMetadata)
    children: List[ActionResult] = Field(default_factory=list)
    chained: List[ActionResult] = Field(default_factory=list, description="onSuccess / onError 链的执行结果")

    @property
    def skipped(self) -> bool:
        return self.metadata.skipped

# ============================================================================
# 2. 策略定义 (Policy)
# ============================================================================

class RetryPolicy(BaseModel):
    """
    仅作用于声明了它的叶子节点。attempts 为总调用次数 (含首次)。
    第 n 次重试前等待 delay (linear) 或 delay * 2^(n-1) (exponential)，
    再受 maxDelay 上限约束并叠加 +/- jitter 比例的随机抖动。
    """
    attempts: int = Field(1, ge=1, description="总尝试次数")
    delay: int = Field(1000, ge=0, description="基础等待时间(毫秒)")
    backoff: Literal["linear", "exponential"] = "linear"
    maxDelay: Optional[int] = Field(None, ge=0, description="单次等待上限(毫秒)，缺省取 RETRY_MAX_DELAY_MS")
    jitter: Optional[float] = Field(None, ge=0.0, le=1.0, description="抖动比例，缺省取 RETRY_JITTER_RATIO")

    model_config = ConfigDict(extra="forbid")

# ============================================================================
# 3. 动作节点 (Action Nodes)
#    叶子节点的 kind 是开放的 (由注册中心决定)，组合节点的 kind 固定
# ============================================================================

def _as_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, (dict, BaseModel)):
        return [value]
    return value

class BaseActionNode(BaseModel):
    """所有动作节点的公共字段"""
    # 这些键若出现在 params 中，会被提升为节点自身的字段
    lifted_params: ClassVar[Tuple[str, ...]] = ()

    id: Optional[str] = Field(None, description="节点标识，用于日志与回调")
    kind: str = Field(..., validation_alias=AliasChoices("kind", "type"), description="动作类型")
    when: Optional[Union[str, bool]] = Field(None, description="守卫条件，为假时节点被跳过")
    params: Dict[str, Any] = Field(default_factory=dict)
    onSuccess: List[ActionNode] = Field(default_factory=list)
    onError: List[ActionNode] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        kind = data.get("kind", data.get("type"))
        # 非 conditional 节点上的 condition 即守卫条件
        if kind != "conditional" and "condition" in data and "when" not in data:
            data["when"] = data.pop("condition")
        params = data.get("params")
        if cls.lifted_params and isinstance(params, dict):
            params = dict(params)
            for key in cls.lifted_params:
                if key not in data and key in params:
                    data[key] = params.pop(key)
            data["params"] = params
        return data

    @field_validator("onSuccess", "onError", mode="before")
    @classmethod
    def _wrap_single(cls, value: Any) -> Any:
        return _as_list(value)

    @property
    def label(self) -> str:
        return f"{self.id or '<anonymous>'} ({self.kind})"

class LeafAction(BaseActionNode):
    """副作用叶子节点，由 ActionRegistry 中对应的 handler 执行"""
    timeout: Optional[int] = Field(None, ge=0, description="单次尝试的超时时间(毫秒)")
    retry: Optional[RetryPolicy] = None

    @field_validator("kind")
    @classmethod
    def _not_composite(cls, value: str) -> str:
        if value in COMPOSITE_KINDS:
            raise ValueError(f"'{value}' is a composite kind")
        return value

class SequenceAction(BaseActionNode):
    lifted_params: ClassVar[Tuple[str, ...]] = ("actions", "stopOnError")

    kind: Literal["sequence"] = Field(..., validation_alias=AliasChoices("kind", "type"))
    actions: List[ActionNode] = Field(..., min_length=1)
    stopOnError: bool = True

class ParallelAction(BaseActionNode):
    lifted_params: ClassVar[Tuple[str, ...]] = ("actions", "waitForAll")

    kind: Literal["parallel"] = Field(..., validation_alias=AliasChoices("kind", "type"))
    actions: List[ActionNode] = Field(..., min_length=1)
    waitForAll: bool = True

class ConditionalAction(BaseActionNode):
    lifted_params: ClassVar[Tuple[str, ...]] = ("condition", "then", "else")

    kind: Literal["conditional"] = Field(..., validation_alias=AliasChoices("kind", "type"))
    condition: Union[str, bool]
    then: List[ActionNode] = Field(..., min_length=1)
    else_: List[ActionNode] = Field(default_factory=list, alias="else")

    @field_validator("then", "else_", mode="before")
    @classmethod
    def _wrap_branch(cls, value: Any) -> Any:
        return _as_list(value)

class ForEachAction(BaseActionNode):
    lifted_params: ClassVar[Tuple[str, ...]] = ("collection", "action", "itemAs", "indexAs", "parallel", "concurrency", "stopOnError")

    kind: Literal["forEach"] = Field(..., validation_alias=AliasChoices("kind", "type"))
    collection: Union[str, List[Any]] = Field(..., description="上下文路径、模板表达式或字面量列表")
    action: ActionNode
    itemAs: str = Field("item", min_length=1)
    indexAs: str = Field("index", min_length=1)
    parallel: bool = False
    concurrency: Optional[int] = Field(None, ge=1, description="并行时的并发上限，缺省取 FOREACH_MAX_CONCURRENCY")
    stopOnError: bool = Field(True, description="仅对顺序执行生效")

def _node_tag(value: Any) -> str:
    if isinstance(value, dict):
        kind = value.get("kind", value.get("type"))
    else:
        kind = getattr(value, "kind", None)
    return kind if kind in COMPOSITE_KINDS else "leaf"

ActionNode = Annotated[
    Union[
        Annotated[LeafAction, Tag("leaf")],
        Annotated[SequenceAction, Tag("sequence")],
        Annotated[ParallelAction, Tag("parallel")],
        Annotated[ConditionalAction, Tag("conditional")],
        Annotated[ForEachAction, Tag("forEach")],
    ],
    Discriminator(_node_tag),
]

class ActionTree(BaseModel):
    """解析入口：单个根节点"""
    root: ActionNode

for _model in (ActionResult, BaseActionNode, LeafAction, SequenceAction, ParallelAction, ConditionalAction, ForEachAction, ActionTree):
    _model.model_rebuild()

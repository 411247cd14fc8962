from typing import Any, Dict, Mapping, Optional, Protocol

# ============================================================================
# 协作方服务协议 (Collaborator Service Protocols)
# 编排器只依赖这些协议，具体实现由宿主 (页面/渲染层) 注入。
# ============================================================================

class ToastService(Protocol):
    async def show(self, message: str, variant: str = "info", duration: Optional[int] = None) -> None:
        ...

class ModalService(Protocol):
    async def open(self, modal_id: str, props: Optional[Dict[str, Any]] = None) -> Any:
        """返回值作为 showDialog 的结果数据 (如 {"confirmed": True})"""
        ...

    async def close(self, modal_id: Optional[str] = None) -> None:
        ...

class NavigationService(Protocol):
    async def navigate(self, path: str, options: Optional[Dict[str, Any]] = None) -> None:
        ...

    async def go_back(self, fallback: Optional[str] = None) -> None:
        ...

    async def reload(self, hard: bool = False) -> None:
        ...

class DatasourceResponse(Protocol):
    status: int
    data: Any
    headers: Mapping[str, str]

class DatasourceService(Protocol):
    """
    执行 apiCall / executeAction 叶子节点，返回 {status, data}。
    刷新与缓存失效同样由数据源层负责。
    """
    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
        timeout_ms: Optional[int] = None,
    ) -> DatasourceResponse:
        ...

    async def execute_action(self, action_id: str, context: Optional[Dict[str, Any]] = None) -> DatasourceResponse:
        ...

    async def refresh(self, datasource_id: str, params: Optional[Dict[str, Any]] = None) -> Any:
        ...

    async def invalidate(self, keys: Optional[list] = None) -> None:
        ...

class FormService(Protocol):
    """由 ReactiveFieldEngine 实现"""
    form_id: str

    @property
    def errors(self) -> Dict[str, str]:
        ...

    async def validate_form(self) -> bool:
        ...

    def reset(self, values: Optional[Mapping[str, Any]] = None) -> None:
        ...

    def submit_payload(self) -> Dict[str, Any]:
        ...

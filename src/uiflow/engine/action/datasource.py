# engine/action/datasource.py

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from ..errors import ActionExecutionError, ActionTimeoutError

logger = logging.getLogger(__name__)

class DatasourceResult(BaseModel):
    status: int
    data: Any = None
    headers: Dict[str, str] = Field(default_factory=dict)

class DatasourceConfig(BaseModel):
    """refreshDatasource 可刷新的具名数据源"""
    url: str
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    params: Dict[str, Any] = Field(default_factory=dict)

class HttpDatasource:
    """
    基于 httpx 的 DatasourceService 实现。
    只负责把 apiCall / executeAction 翻译成 HTTP 请求并返回 {status, data}；
    非 2xx 的判定交给调用方 (handler)。
    """

    def __init__(
        self,
        base_url: str = "",
        client: Optional[httpx.AsyncClient] = None,
        action_endpoint: str = "/ui/actions/execute",
        datasources: Optional[Dict[str, DatasourceConfig]] = None,
        timeout: float = 30.0,
    ):
        self.http_client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.action_endpoint = action_endpoint
        self.datasources: Dict[str, DatasourceConfig] = dict(datasources or {})
        self._cache: Dict[str, Any] = {}

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
        timeout_ms: Optional[int] = None,
    ) -> DatasourceResult:
        method = method.upper()
        kwargs: Dict[str, Any] = {}
        if timeout_ms is not None:
            kwargs["timeout"] = timeout_ms / 1000.0
        if body is not None and method != "GET":
            kwargs["json"] = body

        try:
            response = await self.http_client.request(
                method=method, url=url, headers=headers, params=params, **kwargs
            )
        except httpx.TimeoutException as e:
            raise ActionTimeoutError(f"Request to {url} timed out", cause=e)
        except httpx.RequestError as e:
            # 捕获网络层面的错误
            raise ActionExecutionError(f"Request failed for {url}: {e}", code="NETWORK_ERROR", cause=e)

        return DatasourceResult(
            status=response.status_code,
            data=self._parse_body(response, url),
            headers=dict(response.headers),
        )

    @staticmethod
    def _parse_body(response: httpx.Response, url: str) -> Any:
        if not response.content:
            return None
        content_type = response.headers.get("content-type", "")
        if "json" not in content_type.lower():
            raise ActionExecutionError(
                f'Expected JSON response from "{url}" but received content type "{content_type}" '
                f"with status {response.status_code}. Body (truncated): {response.text[:200]}",
                code="INVALID_RESPONSE",
                status=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ActionExecutionError(
                f'Failed to parse JSON response from "{url}": {e}', code="INVALID_RESPONSE", status=response.status_code
            )

    async def execute_action(self, action_id: str, context: Optional[Dict[str, Any]] = None) -> DatasourceResult:
        return await self.request("POST", self.action_endpoint, body={"actionId": action_id, "context": context or {}})

    # ------------------------------------------------------------------
    # 具名数据源与缓存
    # ------------------------------------------------------------------
    def register(self, datasource_id: str, config: DatasourceConfig) -> None:
        self.datasources[datasource_id] = config

    def get_cached(self, datasource_id: str) -> Any:
        return self._cache.get(datasource_id)

    async def refresh(self, datasource_id: str, params: Optional[Dict[str, Any]] = None) -> Any:
        config = self.datasources.get(datasource_id)
        if config is None:
            raise ActionExecutionError(f"Datasource '{datasource_id}' is not registered", code="DATASOURCE_NOT_FOUND")
        result = await self.request(
            config.method, config.url, headers=config.headers, params={**config.params, **(params or {})}
        )
        if result.status >= 400:
            raise ActionExecutionError(
                f"Refreshing datasource '{datasource_id}' failed", code="DATASOURCE_ERROR", status=result.status, data=result.data
            )
        self._cache[datasource_id] = result.data
        return result.data

    async def invalidate(self, keys: Optional[List[str]] = None) -> None:
        if not keys:
            self._cache.clear()
            return
        for key in keys:
            self._cache.pop(key, None)

    async def aclose(self) -> None:
        await self.http_client.aclose()

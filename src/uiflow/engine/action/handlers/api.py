from typing import Any, Dict

from ...errors import ActionExecutionError
from ..registry import BaseActionHandler, register_action

def raise_for_response(response: Any, default_message: str, default_code: str) -> None:
    """非 2xx 响应转为 ActionExecutionError，保留服务端给出的 message / code / fieldErrors"""
    status = getattr(response, "status", None)
    if status is None or status < 400:
        return
    body = response.data if isinstance(response.data, dict) else {}
    raise ActionExecutionError(
        body.get("message") or default_message,
        code=body.get("code") or default_code,
        status=status,
        field_errors=body.get("fieldErrors"),
        data=response.data,
    )

@register_action("apiCall")
class ApiCallHandler(BaseActionHandler):
    params_schema = {
        "type": "object",
        "properties": {
            "url": {"type": "string", "minLength": 1},
            "method": {"enum": ["GET", "POST", "PUT", "DELETE", "PATCH", "get", "post", "put", "delete", "patch"]},
            "headers": {"type": "object"},
            "queryParams": {"type": "object"},
            "timeout": {"type": "integer", "minimum": 0},
        },
        "required": ["url"],
    }

    async def execute(self, params: Dict[str, Any]) -> Any:
        datasource = self.services.require("datasource")
        response = await datasource.request(
            params.get("method", "GET"),
            params["url"],
            headers={"Content-Type": "application/json", **(params.get("headers") or {})},
            params=params.get("queryParams"),
            body=params.get("body"),
            timeout_ms=params.get("timeout"),
        )
        raise_for_response(response, "API request failed", "API_ERROR")
        return {"status": response.status, "data": response.data, "headers": dict(response.headers or {})}

@register_action("executeAction")
class ExecuteActionHandler(BaseActionHandler):
    """
    执行命名动作：优先查找页面注册的动作 (ActionServices.actions)，
    否则交由数据源层调用后端 action gateway。
    """
    params_schema = {
        "type": "object",
        "properties": {
            "actionId": {"type": "string", "minLength": 1},
            "context": {"type": "object"},
        },
        "required": ["actionId"],
    }

    async def execute(self, params: Dict[str, Any]) -> Any:
        action_id = params["actionId"]
        if action_id in self.services.actions:
            extra = {"params": params["context"]} if "context" in params else None
            result = await self.runtime.run_named_action(action_id, extra)
            if not result.success:
                error = result.error
                raise ActionExecutionError(
                    error.message if error else f"Action '{action_id}' failed",
                    code=error.code if error else None,
                    status=error.status if error else None,
                    field_errors=error.fieldErrors if error else None,
                    data=error.data if error else None,
                )
            return result.data

        datasource = self.services.require("datasource")
        response = await datasource.execute_action(action_id, params.get("context"))
        raise_for_response(response, "Action execution failed", "EXECUTE_ACTION_ERROR")
        return response.data

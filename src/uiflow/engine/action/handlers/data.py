from typing import Any, Dict

from ..registry import BaseActionHandler, register_action

@register_action("refreshDatasource")
class RefreshDatasourceHandler(BaseActionHandler):
    params_schema = {
        "type": "object",
        "properties": {
            "datasourceId": {"type": "string", "minLength": 1},
            "params": {"type": "object"},
        },
        "required": ["datasourceId"],
    }

    async def execute(self, params: Dict[str, Any]) -> Any:
        datasource = self.services.require("datasource")
        return await datasource.refresh(params["datasourceId"], params.get("params"))

@register_action("invalidateCache")
class InvalidateCacheHandler(BaseActionHandler):
    params_schema = {
        "type": "object",
        "properties": {"keys": {"type": "array", "items": {"type": "string"}}},
    }

    async def execute(self, params: Dict[str, Any]) -> Any:
        datasource = self.services.require("datasource")
        keys = params.get("keys") or None
        await datasource.invalidate(keys)
        return {"keys": keys}

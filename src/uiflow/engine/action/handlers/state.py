from typing import Any, Dict

from ..registry import BaseActionHandler, register_action

@register_action("setState")
class SetStateHandler(BaseActionHandler):
    """写入页面状态。省略 path 时整体替换。"""
    params_schema = {
        "type": "object",
        "properties": {
            "path": {"type": "string"},
            "merge": {"type": "boolean"},
        },
        "required": ["value"],
    }

    async def execute(self, params: Dict[str, Any]) -> Any:
        path = params.get("path")
        value = params["value"]
        await self.services.state.set(path, value, merge=params.get("merge", True))
        return {"path": path, "value": value}

@register_action("resetState")
class ResetStateHandler(BaseActionHandler):
    """恢复页面状态的初始值；给定 paths 时只恢复这些路径"""
    params_schema = {
        "type": "object",
        "properties": {"paths": {"type": "array", "items": {"type": "string"}}},
    }

    async def execute(self, params: Dict[str, Any]) -> Any:
        paths = params.get("paths") or None
        await self.services.state.reset(paths)
        return {"paths": paths}

@register_action("mergeState")
class MergeStateHandler(BaseActionHandler):
    params_schema = {
        "type": "object",
        "properties": {"updates": {"type": "object"}},
        "required": ["updates"],
    }

    async def execute(self, params: Dict[str, Any]) -> Any:
        updates = params["updates"]
        await self.services.state.merge(updates)
        return {"updates": updates}

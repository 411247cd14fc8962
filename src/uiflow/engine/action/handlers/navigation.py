from typing import Any, Dict

from ..registry import BaseActionHandler, register_action

@register_action("navigate")
class NavigateHandler(BaseActionHandler):
    params_schema = {
        "type": "object",
        "properties": {
            "to": {"type": "string", "minLength": 1},
            "query": {"type": "object"},
            "replace": {"type": "boolean"},
            "external": {"type": "boolean"},
            "openInNewTab": {"type": "boolean"},
        },
        "required": ["to"],
    }

    async def execute(self, params: Dict[str, Any]) -> Any:
        navigation = self.services.require("navigation")
        to = params["to"]
        options = {k: params[k] for k in ("query", "replace", "external", "openInNewTab", "state") if k in params}
        await navigation.navigate(to, options)
        return {"path": to}

@register_action("goBack")
class GoBackHandler(BaseActionHandler):
    params_schema = {
        "type": "object",
        "properties": {"fallback": {"type": "string"}},
    }

    async def execute(self, params: Dict[str, Any]) -> Any:
        navigation = self.services.require("navigation")
        await navigation.go_back(params.get("fallback"))
        return None

@register_action("reload")
class ReloadHandler(BaseActionHandler):
    params_schema = {
        "type": "object",
        "properties": {"hard": {"type": "boolean"}},
    }

    async def execute(self, params: Dict[str, Any]) -> Any:
        navigation = self.services.require("navigation")
        hard = bool(params.get("hard", False))
        await navigation.reload(hard)
        return {"hard": hard}

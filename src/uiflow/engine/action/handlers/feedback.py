from typing import Any, Dict

from ..registry import BaseActionHandler, register_action

TOAST_VARIANTS = ["success", "error", "warning", "info"]

@register_action("showToast")
class ShowToastHandler(BaseActionHandler):
    params_schema = {
        "type": "object",
        "properties": {
            "message": {"type": "string", "minLength": 1},
            "variant": {"enum": TOAST_VARIANTS},
            "duration": {"type": "integer", "minimum": 0},
        },
        "required": ["message"],
    }

    async def execute(self, params: Dict[str, Any]) -> Any:
        toast = self.services.require("toast")
        message = params["message"]
        variant = params.get("variant", "info")
        await toast.show(message, variant, params.get("duration", 5000))
        return {"message": message, "variant": variant}

@register_action("showDialog")
class ShowDialogHandler(BaseActionHandler):
    """
    打开弹窗。modalId 之外的参数作为 props 传给 ModalService.open，
    其返回值 (如 {"confirmed": true}) 即本动作的结果数据。
    """
    params_schema = {
        "type": "object",
        "properties": {
            "modalId": {"type": "string", "minLength": 1},
            "title": {"type": "string"},
            "message": {"type": "string"},
            "variant": {"enum": ["info", "warning", "error", "confirm"]},
        },
    }

    async def execute(self, params: Dict[str, Any]) -> Any:
        modal = self.services.require("modal")
        props = dict(params)
        modal_id = props.pop("modalId", "dialog")
        outcome = await modal.open(modal_id, props)
        if outcome is None:
            return {"modalId": modal_id}
        return outcome

@register_action("hideDialog")
class HideDialogHandler(BaseActionHandler):
    params_schema = {
        "type": "object",
        "properties": {"modalId": {"type": "string"}},
    }

    async def execute(self, params: Dict[str, Any]) -> Any:
        modal = self.services.require("modal")
        modal_id = params.get("modalId")
        await modal.close(modal_id)
        return {"modalId": modal_id}

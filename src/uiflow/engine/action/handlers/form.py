from typing import Any, Dict

from ...errors import ActionExecutionError
from ..registry import BaseActionHandler, register_action
from .api import raise_for_response

_FORM_ID = {"formId": {"type": "string", "minLength": 1}}

@register_action("validateForm")
class ValidateFormHandler(BaseActionHandler):
    params_schema = {"type": "object", "properties": dict(_FORM_ID)}

    async def execute(self, params: Dict[str, Any]) -> Any:
        form = self.services.get_form(params.get("formId"))
        if not await form.validate_form():
            raise ActionExecutionError("Form validation failed", code="VALIDATION_ERROR", field_errors=form.errors)
        return {"valid": True}

@register_action("resetForm")
class ResetFormHandler(BaseActionHandler):
    params_schema = {
        "type": "object",
        "properties": {**_FORM_ID, "values": {"type": "object"}},
    }

    async def execute(self, params: Dict[str, Any]) -> Any:
        form = self.services.get_form(params.get("formId"))
        form.reset(params.get("values"))
        return {"formId": form.form_id}

@register_action("submitForm")
class SubmitFormHandler(BaseActionHandler):
    """
    校验 -> 生成提交载荷 (不含隐藏字段) -> 可选地提交到 url。
    未配置 url 时，载荷本身即结果数据，交给 onSuccess 链处理。
    """
    params_schema = {
        "type": "object",
        "properties": {
            **_FORM_ID,
            "url": {"type": "string", "minLength": 1},
            "method": {"enum": ["POST", "PUT", "PATCH", "post", "put", "patch"]},
            "headers": {"type": "object"},
        },
    }

    async def execute(self, params: Dict[str, Any]) -> Any:
        form = self.services.get_form(params.get("formId"))
        if not await form.validate_form():
            raise ActionExecutionError("Form validation failed", code="VALIDATION_ERROR", field_errors=form.errors)

        payload = form.submit_payload()
        if not params.get("url"):
            return payload

        datasource = self.services.require("datasource")
        response = await datasource.request(
            params.get("method", "POST"),
            params["url"],
            headers={"Content-Type": "application/json", **(params.get("headers") or {})},
            body=payload,
        )
        raise_for_response(response, "Form submission failed", "SUBMIT_ERROR")
        return {"payload": payload, "status": response.status, "data": response.data}

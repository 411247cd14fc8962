# tests/engine/action/test_handlers.py
import pytest

from uiflow.engine.action import ActionEngineService, ActionServices, DatasourceResult
from uiflow.engine.reactive import ReactiveFieldEngine

pytestmark = pytest.mark.asyncio

# --- feedback ---

async def test_show_toast_defaults(action_engine, mock_services):
    result = await action_engine.execute({"kind": "showToast", "params": {"message": "Saved"}})

    assert result.success is True
    assert result.data == {"message": "Saved", "variant": "info"}
    mock_services.toast.show.assert_awaited_once_with("Saved", "info", 5000)

async def test_show_dialog_returns_modal_outcome(action_engine, mock_services):
    mock_services.modal.open.return_value = {"confirmed": True}
    result = await action_engine.execute({
        "kind": "showDialog",
        "params": {"title": "Delete order?", "variant": "confirm"},
    })

    assert result.data == {"confirmed": True}
    mock_services.modal.open.assert_awaited_once_with("dialog", {"title": "Delete order?", "variant": "confirm"})

async def test_hide_dialog(action_engine, mock_services):
    await action_engine.execute({"kind": "hideDialog", "params": {"modalId": "confirm"}})
    mock_services.modal.close.assert_awaited_once_with("confirm")

async def test_missing_service_fails_only_that_leaf(registry):
    service = ActionEngineService(services=ActionServices(), registry=registry)
    result = await service.execute({"kind": "showToast", "params": {"message": "hi"}})

    assert result.success is False
    assert result.error.code == "SERVICE_UNAVAILABLE"

async def test_invalid_params(action_engine):
    result = await action_engine.execute({"kind": "showToast", "params": {"variant": "loud"}})
    assert result.success is False
    assert result.error.code == "INVALID_PARAMS"

# --- navigation ---

async def test_navigate_resolves_path(action_engine, mock_services):
    result = await action_engine.execute(
        {"kind": "navigate", "params": {"to": "/orders/{{routeParams.id}}", "replace": True}},
        {"routeParams": {"id": 42}},
    )

    assert result.data == {"path": "/orders/42"}
    mock_services.navigation.navigate.assert_awaited_once_with("/orders/42", {"replace": True})

async def test_go_back_and_reload(action_engine, mock_services):
    await action_engine.execute({"kind": "goBack", "params": {"fallback": "/home"}})
    await action_engine.execute({"kind": "reload", "params": {"hard": True}})

    mock_services.navigation.go_back.assert_awaited_once_with("/home")
    mock_services.navigation.reload.assert_awaited_once_with(True)

# --- state ---

async def test_state_handlers(action_engine):
    await action_engine.execute({"kind": "setState", "params": {"path": "filters.status", "value": "open"}})
    await action_engine.execute({"kind": "mergeState", "params": {"updates": {"page": 3, "filters.sort": "date"}}})
    assert action_engine.state.get() == {"filters": {"status": "open", "sort": "date"}, "page": 3}

    await action_engine.execute({"kind": "resetState", "params": {"paths": ["filters"]}})
    assert action_engine.state.get() == {"filters": {"status": "all"}, "page": 3}

async def test_set_state_requires_value(action_engine):
    result = await action_engine.execute({"kind": "setState", "params": {"path": "x", "value": "{{formData.missing}}"}})
    assert result.error.code == "INVALID_PARAMS"

async def test_unresolved_path_fails_instead_of_replacing_state(action_engine):
    result = await action_engine.execute(
        {"kind": "setState", "params": {"path": "{{trigger.target}}", "value": {"y": 2}}}
    )

    assert result.success is False
    assert result.error.code == "INVALID_PARAMS"
    assert "path" in result.error.message
    assert action_engine.state.get() == {"filters": {"status": "all"}}

# --- api ---

async def test_api_call_success(action_engine, mock_services):
    mock_services.datasource.request.return_value = DatasourceResult(status=201, data={"id": 7})
    result = await action_engine.execute(
        {"kind": "apiCall", "params": {"url": "/orders", "method": "POST", "body": {"name": "{{formData.name}}"}}},
        {"formData": {"name": "Ada"}},
    )

    assert result.success is True
    assert result.data == {"status": 201, "data": {"id": 7}, "headers": {}}
    mock_services.datasource.request.assert_awaited_once_with(
        "POST", "/orders",
        headers={"Content-Type": "application/json"},
        params=None,
        body={"name": "Ada"},
        timeout_ms=None,
    )

async def test_api_call_error_keeps_server_details(action_engine, mock_services):
    mock_services.datasource.request.return_value = DatasourceResult(
        status=422, data={"message": "Invalid order", "code": "ORDER_INVALID", "fieldErrors": {"qty": "Too many"}},
    )
    result = await action_engine.execute({
        "kind": "apiCall",
        "params": {"url": "/orders"},
        "onError": {"kind": "showToast", "params": {"message": "{{error.message}}", "variant": "error"}},
    })

    assert result.success is False
    assert result.error.code == "ORDER_INVALID"
    assert result.error.status == 422
    assert result.error.fieldErrors == {"qty": "Too many"}
    mock_services.toast.show.assert_awaited_once_with("Invalid order", "error", 5000)

async def test_execute_named_action(action_engine, mock_services):
    mock_services.actions["greet"] = {"kind": "showToast", "params": {"message": "Hello {{params.name}}"}}
    result = await action_engine.execute({
        "kind": "executeAction",
        "params": {"actionId": "greet", "context": {"name": "{{user.name}}"}},
    }, {"user": {"name": "Ada"}})

    assert result.success is True
    mock_services.toast.show.assert_awaited_once_with("Hello Ada", "info", 5000)

async def test_execute_named_action_failure(action_engine, mock_services):
    mock_services.actions["broken"] = {"kind": "fail", "params": {"message": "nope", "code": "BROKEN"}}
    result = await action_engine.execute({"kind": "executeAction", "params": {"actionId": "broken"}})

    assert result.success is False
    assert result.error.message == "nope"
    assert result.error.code == "BROKEN"

async def test_execute_remote_action(action_engine, mock_services):
    mock_services.datasource.execute_action.return_value = DatasourceResult(status=200, data={"ok": True})
    result = await action_engine.execute({
        "kind": "executeAction",
        "params": {"actionId": "recalculate", "context": {"orderId": "{{routeParams.id}}"}},
    }, {"routeParams": {"id": 42}})

    assert result.data == {"ok": True}
    mock_services.datasource.execute_action.assert_awaited_once_with("recalculate", {"orderId": 42})

# --- data ---

async def test_refresh_and_invalidate(action_engine, mock_services):
    mock_services.datasource.refresh.return_value = [{"id": 1}]
    result = await action_engine.execute({
        "kind": "refreshDatasource",
        "params": {"datasourceId": "orders", "params": {"page": 2}},
    })
    await action_engine.execute({"kind": "invalidateCache", "params": {"keys": ["orders"]}})

    assert result.data == [{"id": 1}]
    mock_services.datasource.refresh.assert_awaited_once_with("orders", {"page": 2})
    mock_services.datasource.invalidate.assert_awaited_once_with(["orders"])

# --- form ---

@pytest.fixture
def signup_form(mock_services):
    form = ReactiveFieldEngine(form_id="signup")
    form.register({"name": "email", "required": True})
    form.register({"name": "newsletter", "default": False})
    form.register({"name": "topics", "visibility": "{{formData.newsletter}}", "default": []})
    mock_services.forms["signup"] = form
    return form

async def test_validate_form_reports_field_errors(action_engine, signup_form):
    result = await action_engine.execute({"kind": "validateForm", "params": {"formId": "signup"}})

    assert result.success is False
    assert result.error.code == "VALIDATION_ERROR"
    assert result.error.fieldErrors == {"email": "This field is required"}

async def test_submit_form_returns_visible_payload(action_engine, signup_form):
    signup_form.set_value("email", "ada@example.com")
    result = await action_engine.execute({"kind": "submitForm"})

    assert result.success is True
    assert result.data == {"email": "ada@example.com", "newsletter": False}

async def test_submit_form_posts_to_url(action_engine, mock_services, signup_form):
    signup_form.set_value("email", "ada@example.com")
    mock_services.datasource.request.return_value = DatasourceResult(status=200, data={"id": 1})

    result = await action_engine.execute({"kind": "submitForm", "params": {"formId": "signup", "url": "/signup"}})

    assert result.data["status"] == 200
    mock_services.datasource.request.assert_awaited_once_with(
        "POST", "/signup",
        headers={"Content-Type": "application/json"},
        body={"email": "ada@example.com", "newsletter": False},
    )

async def test_reset_form(action_engine, signup_form):
    signup_form.set_value("email", "ada@example.com")
    await action_engine.execute({"kind": "resetForm", "params": {"formId": "signup"}})
    assert signup_form.values["email"] is None

async def test_unknown_form(action_engine, signup_form):
    result = await action_engine.execute({"kind": "validateForm", "params": {"formId": "checkout"}})
    assert result.error.code == "FORM_NOT_FOUND"

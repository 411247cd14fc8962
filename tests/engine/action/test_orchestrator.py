# tests/engine/action/test_orchestrator.py
import asyncio
import random

import pytest

from uiflow.engine.action import ActionEngineService, ActionOrchestrator, RetryPolicy
from uiflow.engine.errors import CompositionError
from uiflow.engine.expression import SandboxViolation
from uiflow.engine.expression import ExpressionEngine


def sleep_delays(mock_sleep):
    return [c.args[0] for c in mock_sleep.call_args_list]

# ============================================================================
# sequence
# ============================================================================

@pytest.mark.asyncio
async def test_sequence_stops_on_first_failure(action_engine, recorder):
    result = await action_engine.execute({
        "kind": "sequence",
        "actions": [
            {"kind": "fail", "params": {"message": "A failed"}},
            {"kind": "record", "params": {"step": "B"}},
        ],
    })

    assert result.success is False
    assert result.error.message == "A failed"
    assert len(result.children) == 1
    assert {"step": "B"} not in recorder.calls

@pytest.mark.asyncio
async def test_sequence_continues_when_stop_on_error_disabled(action_engine, recorder):
    result = await action_engine.execute({
        "kind": "sequence",
        "stopOnError": False,
        "actions": [{"kind": "fail"}, {"kind": "record", "params": {"step": "B"}}],
    })

    assert result.success is False
    assert recorder.calls[-1] == {"step": "B"}
    assert len(result.children) == 2

@pytest.mark.asyncio
async def test_sequence_passes_previous_result_forward(action_engine):
    result = await action_engine.execute({
        "kind": "sequence",
        "actions": [
            {"kind": "double", "params": {"value": 2}},
            {"kind": "double", "params": {"value": "{{result}}"}},
        ],
    })

    assert result.success is True
    assert result.data == [4, 8]

# ============================================================================
# parallel
# ============================================================================

@pytest.mark.asyncio
async def test_parallel_collects_every_failure(action_engine):
    result = await action_engine.execute({
        "kind": "parallel",
        "actions": [
            {"kind": "fail", "params": {"message": "A failed"}},
            {"kind": "fail", "params": {"message": "B failed"}},
        ],
    })

    assert result.success is False
    assert result.error.code == "PARALLEL_ERROR"
    assert sorted(e["message"] for e in result.error.data) == ["A failed", "B failed"]
    assert len(result.children) == 2

@pytest.mark.asyncio
async def test_parallel_success_keeps_declaration_order(action_engine):
    result = await action_engine.execute({
        "kind": "parallel",
        "actions": [{"kind": "double", "params": {"value": n}} for n in (1, 2, 3)],
    })
    assert result.success is True
    assert result.data == [2, 4, 6]

@pytest.mark.asyncio
async def test_parallel_without_wait_for_all_returns_on_first_failure(action_engine, recorder):
    result = await action_engine.execute({
        "kind": "parallel",
        "waitForAll": False,
        "actions": [{"kind": "block"}, {"kind": "fail", "params": {"message": "fast failure"}}],
    })

    assert result.success is False
    assert result.error.message == "fast failure"
    # 已在运行的叶子不被强制终止
    recorder.gate.set()
    for _ in range(5):
        await asyncio.sleep(0)

# ============================================================================
# forEach
# ============================================================================

@pytest.mark.asyncio
async def test_for_each_runs_in_order(action_engine):
    result = await action_engine.execute({
        "kind": "forEach",
        "collection": [1, 2, 3],
        "action": {"kind": "double", "params": {"value": "{{item}}"}},
    })
    assert result.success is True
    assert result.data == [2, 4, 6]

@pytest.mark.asyncio
async def test_for_each_parallel_with_bounded_concurrency(action_engine):
    result = await action_engine.execute({
        "kind": "forEach",
        "collection": "formData.items",
        "parallel": True,
        "concurrency": 2,
        "action": {"kind": "double", "params": {"value": "{{row.qty}}"}},
        "itemAs": "row",
    }, {"formData": {"items": [{"qty": 1}, {"qty": 2}, {"qty": 3}, {"qty": 4}]}})

    assert result.success is True
    assert result.data == [2, 4, 6, 8]

@pytest.mark.asyncio
async def test_for_each_exposes_index(action_engine, recorder):
    await action_engine.execute({
        "kind": "forEach",
        "collection": "{{formData.tags}}",
        "action": {"kind": "record", "params": {"label": "{{index}}:{{item}}"}},
    }, {"formData": {"tags": ["a", "b"]}})

    assert recorder.calls == [{"label": "0:a"}, {"label": "1:b"}]

@pytest.mark.asyncio
async def test_for_each_stops_on_error(action_engine, recorder):
    result = await action_engine.execute({
        "kind": "forEach",
        "collection": [1, 2, 3],
        "action": {"kind": "fail", "when": "{{item}} === 2", "params": {"message": "item {{item}}"}},
    })

    assert result.success is False
    assert result.error.message == "item 2"
    assert len(result.children) == 2
    assert recorder.calls == [{"message": "item 2"}]

@pytest.mark.asyncio
async def test_for_each_missing_collection_is_empty(action_engine):
    result = await action_engine.execute({
        "kind": "forEach",
        "collection": "formData.rows",
        "action": {"kind": "record"},
    }, {"formData": {}})
    assert result.success is True
    assert result.data == []

@pytest.mark.asyncio
async def test_for_each_rejects_non_list_collection(action_engine):
    result = await action_engine.execute({
        "kind": "forEach",
        "collection": "formData.address",
        "action": {"kind": "record"},
    }, {"formData": {"address": {"city": "Oslo"}}})
    assert result.success is False
    assert result.error.code == "INVALID_COLLECTION"

# ============================================================================
# conditional / guards
# ============================================================================

@pytest.mark.asyncio
async def test_conditional_picks_branch(action_engine, recorder):
    node = {
        "kind": "conditional",
        "condition": "{{formData.age}} >= 18",
        "then": {"kind": "record", "params": {"branch": "adult"}},
        "else": [{"kind": "record", "params": {"branch": "minor"}}],
    }

    adult = await action_engine.execute(node, {"formData": {"age": 30}})
    minor = await action_engine.execute(node, {"formData": {"age": 12}})

    assert adult.data["condition"] is True
    assert minor.data["condition"] is False
    assert recorder.calls == [{"branch": "adult"}, {"branch": "minor"}]

@pytest.mark.asyncio
async def test_conditional_without_else_branch(action_engine):
    result = await action_engine.execute({
        "kind": "conditional",
        "condition": "false",
        "then": [{"kind": "record"}],
    })
    assert result.success is True
    assert result.data == {"condition": False, "executed": False, "results": []}

@pytest.mark.asyncio
async def test_falsy_guard_skips_node(action_engine, recorder, mock_callbacks):
    result = await action_engine.execute(
        {"kind": "record", "condition": "{{formData.enabled}}", "params": {"x": 1}},
        {"formData": {"enabled": False}},
        callbacks=mock_callbacks,
    )

    assert result.success is True
    assert result.skipped is True
    assert result.data == {"skipped": True}
    assert recorder.calls == []
    mock_callbacks.on_action_start.assert_awaited_once()
    mock_callbacks.on_action_skipped.assert_awaited_once_with(result)
    mock_callbacks.on_action_finish.assert_not_awaited()

@pytest.mark.asyncio
async def test_guard_sandbox_violation_fails_closed(action_engine, recorder):
    # 动态下标在运行期才命中禁用名
    result = await action_engine.execute(
        {"kind": "record", "when": "formData[formData.key]"},
        {"formData": {"key": "constructor"}},
    )
    assert result.skipped is True
    assert recorder.calls == []

# ============================================================================
# chaining
# ============================================================================

@pytest.mark.asyncio
async def test_on_error_receives_error_message(action_engine, mock_services):
    result = await action_engine.execute({
        "kind": "fail",
        "params": {"message": "Server down"},
        "onError": {"kind": "showToast", "params": {"message": "{{error.message}}", "variant": "error"}},
    })

    assert result.success is False
    assert result.chained[0].success is True
    mock_services.toast.show.assert_awaited_once_with("Server down", "error", 5000)

@pytest.mark.asyncio
async def test_on_success_receives_result(action_engine, recorder):
    result = await action_engine.execute({
        "kind": "double",
        "params": {"value": 21},
        "onSuccess": [{"kind": "record", "params": {"got": "{{result}}"}}],
    })

    assert result.success is True
    assert recorder.calls == [{"got": 42}]

@pytest.mark.asyncio
async def test_failing_on_error_chain_does_not_change_node_result(action_engine):
    result = await action_engine.execute({
        "kind": "fail",
        "params": {"message": "original"},
        "onError": [{"kind": "fail", "params": {"message": "handler broke"}}, {"kind": "record"}],
    })

    assert result.error.message == "original"
    assert len(result.chained) == 1
    assert result.chained[0].error.message == "handler broke"

# ============================================================================
# retry / timeout
# ============================================================================

@pytest.mark.asyncio
async def test_exponential_retry_invokes_handler_three_times(action_engine, recorder, mock_sleep):
    result = await action_engine.execute({
        "kind": "fail",
        "retry": {"attempts": 3, "delay": 100, "backoff": "exponential"},
    })

    assert result.success is False
    assert result.metadata.attempts == 3
    assert len(recorder.calls) == 3
    assert sleep_delays(mock_sleep) == pytest.approx([0.1, 0.2])

@pytest.mark.asyncio
async def test_retry_recovers(action_engine, recorder, mock_sleep):
    recorder.failures["inventory"] = 2
    result = await action_engine.execute({
        "kind": "flaky",
        "params": {"key": "inventory"},
        "retry": {"attempts": 5, "delay": 50},
    })

    assert result.success is True
    assert result.data == "ok"
    assert result.metadata.attempts == 3
    assert sleep_delays(mock_sleep) == pytest.approx([0.05, 0.05])

@pytest.mark.asyncio
async def test_leaf_timeout(action_engine, recorder):
    result = await action_engine.execute({"kind": "block", "timeout": 10})

    assert result.success is False
    assert result.error.code == "TIMEOUT"
    recorder.gate.set()
    await asyncio.sleep(0)

def test_retry_delay_policy(monkeypatch):
    linear = RetryPolicy(attempts=5, delay=100)
    exponential = RetryPolicy(attempts=5, delay=100, backoff="exponential")
    capped = RetryPolicy(attempts=5, delay=100, backoff="exponential", maxDelay=300)

    assert ActionOrchestrator.retry_delay(linear, 3) == pytest.approx(0.1)
    assert ActionOrchestrator.retry_delay(exponential, 4) == pytest.approx(0.8)
    assert ActionOrchestrator.retry_delay(capped, 4) == pytest.approx(0.3)

    monkeypatch.setattr(random, "uniform", lambda low, high: high)
    jittered = RetryPolicy(attempts=2, delay=100, jitter=0.5)
    assert ActionOrchestrator.retry_delay(jittered, 1) == pytest.approx(0.15)

# ============================================================================
# cancellation / callbacks / interceptors
# ============================================================================

@pytest.mark.asyncio
async def test_cancel_all_prevents_remaining_children(action_engine, recorder):
    task = asyncio.create_task(action_engine.execute({
        "kind": "sequence",
        "actions": [{"kind": "block"}, {"kind": "record", "params": {"step": "after"}}],
    }))
    await recorder.started.wait()

    assert action_engine.cancel_all() == 1
    recorder.gate.set()
    result = await task

    assert result.metadata.cancelled is True
    assert result.error.code == "CANCELLED"
    assert recorder.calls == []
    assert action_engine.cancel_all() == 0

@pytest.mark.asyncio
async def test_cancel_interrupts_retry_wait(mock_services, registry, recorder):
    release = asyncio.Event()

    async def slow_sleep(seconds):
        await release.wait()

    service = ActionEngineService(services=mock_services, registry=registry, sleep=slow_sleep)
    task = asyncio.create_task(service.execute({"kind": "fail", "retry": {"attempts": 3, "delay": 1000}}))
    while not recorder.calls:
        await asyncio.sleep(0)
    await asyncio.sleep(0)

    service.cancel_all()
    result = await task

    assert result.metadata.cancelled is True
    assert len(recorder.calls) == 1

@pytest.mark.asyncio
async def test_generic_event_callback(action_engine):
    events = []

    class EventSink:
        async def on_event(self, type, data):
            events.append(type)

    await action_engine.execute({"kind": "double", "params": {"value": 1}}, callbacks=EventSink())
    assert events == ["action_start", "action_finish"]

@pytest.mark.asyncio
async def test_failing_callback_does_not_abort_the_chain(action_engine, mock_callbacks):
    mock_callbacks.on_action_finish.side_effect = RuntimeError("observer down")

    result = await action_engine.execute({
        "kind": "parallel",
        "actions": [
            {"kind": "double", "params": {"value": 1}},
            {"kind": "double", "params": {"value": 2}},
        ],
    }, callbacks=mock_callbacks)

    assert result.success is True
    assert result.data == [2, 4]

@pytest.mark.asyncio
async def test_interceptors_wrap_leaf_in_declaration_order(mock_services, registry, interceptor_factory):
    log = []
    service = ActionEngineService(
        services=mock_services,
        registry=registry,
        interceptors=[interceptor_factory("outer", log), interceptor_factory("inner", log)],
    )

    await service.execute({"kind": "double", "params": {"value": 1}})

    assert log == ["outer:before:double", "inner:before:double", "inner:after:True", "outer:after:True"]

# ============================================================================
# page state / parsing
# ============================================================================

@pytest.mark.asyncio
async def test_page_state_written_by_one_step_is_read_by_the_next(action_engine, recorder):
    await action_engine.execute({
        "kind": "sequence",
        "actions": [
            {"kind": "setState", "params": {"path": "filters.status", "value": "open"}},
            {"kind": "record", "params": {"status": "{{pageState.filters.status}}"}},
        ],
    })
    assert recorder.calls == [{"status": "open"}]

@pytest.mark.asyncio
async def test_page_state_store_overrides_caller_snapshot(action_engine, recorder):
    await action_engine.execute(
        {"kind": "record", "params": {"status": "{{pageState.filters.status}}"}},
        {"pageState": {"filters": {"status": "stale"}}},
    )
    assert recorder.calls == [{"status": "all"}]

@pytest.mark.asyncio
async def test_execute_rejects_malformed_config(action_engine):
    with pytest.raises(CompositionError):
        await action_engine.execute({"kind": "teleport"})

@pytest.mark.asyncio
async def test_sandbox_violation_in_params_is_fatal_in_development(mock_services, registry):
    service = ActionEngineService(services=mock_services, registry=registry, engine=ExpressionEngine(development=True))
    with pytest.raises(SandboxViolation):
        await service.execute({"kind": "record", "params": {"x": "{{window}}"}})

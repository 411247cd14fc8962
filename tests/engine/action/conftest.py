# tests/engine/action/conftest.py
import asyncio
from typing import Any, Dict, List
from unittest.mock import AsyncMock

import pytest

from uiflow.engine.action import (
    ActionEngineService, ActionServices, BaseActionHandler, PageStateStore, default_action_registry,
)
from uiflow.engine.errors import ActionExecutionError
from uiflow.engine.expression import ExpressionEngine

# --- Mock Implementations ---

class HandlerRecorder:
    """测试用叶子动作的调用记录与控制开关"""
    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.failures: Dict[str, int] = {}
        self.started = asyncio.Event()
        self.gate = asyncio.Event()

def build_registry(recorder: HandlerRecorder):
    registry = default_action_registry.copy()

    @registry.register("double")
    class DoubleHandler(BaseActionHandler):
        async def execute(self, params):
            return params["value"] * 2

    @registry.register("record")
    class RecordHandler(BaseActionHandler):
        async def execute(self, params):
            recorder.calls.append(params)
            return params

    @registry.register("fail")
    class FailHandler(BaseActionHandler):
        async def execute(self, params):
            recorder.calls.append(params)
            raise ActionExecutionError(params.get("message", "boom"), code=params.get("code"))

    @registry.register("flaky")
    class FlakyHandler(BaseActionHandler):
        """前 failures 次调用失败，之后成功"""
        async def execute(self, params):
            key = params["key"]
            recorder.calls.append(params)
            remaining = recorder.failures.get(key, 0)
            if remaining > 0:
                recorder.failures[key] = remaining - 1
                raise ActionExecutionError(f"{key} not ready")
            return "ok"

    @registry.register("block")
    class BlockHandler(BaseActionHandler):
        async def execute(self, params):
            recorder.started.set()
            await recorder.gate.wait()
            return "released"

    return registry

class RecordingInterceptor:
    def __init__(self, name: str, log: List[str]):
        self.name = name
        self.log = log

    async def intercept(self, node, context, next_call):
        self.log.append(f"{self.name}:before:{node.kind}")
        result = await next_call()
        self.log.append(f"{self.name}:after:{result.success}")
        return result

# --- Pytest Fixtures ---

@pytest.fixture
def recorder():
    return HandlerRecorder()

@pytest.fixture
def registry(recorder):
    return build_registry(recorder)

@pytest.fixture
def mock_sleep():
    return AsyncMock(return_value=None)

@pytest.fixture
def mock_services():
    return ActionServices(
        toast=AsyncMock(),
        modal=AsyncMock(),
        navigation=AsyncMock(),
        datasource=AsyncMock(),
        state=PageStateStore({"filters": {"status": "all"}}),
    )

@pytest.fixture
def mock_callbacks():
    callbacks = AsyncMock()
    callbacks.on_action_start = AsyncMock()
    callbacks.on_action_finish = AsyncMock()
    callbacks.on_action_error = AsyncMock()
    callbacks.on_action_skipped = AsyncMock()
    return callbacks

@pytest.fixture
def action_engine(mock_services, registry, mock_sleep):
    return ActionEngineService(
        services=mock_services,
        engine=ExpressionEngine(development=False),
        registry=registry,
        sleep=mock_sleep,
    )

@pytest.fixture
def interceptor_factory():
    return RecordingInterceptor

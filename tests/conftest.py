# tests/conftest.py

import pytest

from uiflow.engine.expression import ExpressionEngine
from uiflow.engine.schemas.context_schema import Context

# --- Pytest Fixtures ---

@pytest.fixture
def engine():
    """生产模式的表达式引擎：沙箱违规按 fail-closed 处理"""
    return ExpressionEngine(development=False)

@pytest.fixture
def dev_engine():
    """开发模式：沙箱违规直接抛出"""
    return ExpressionEngine(development=True)

@pytest.fixture
def order_context():
    return Context(
        formData={"qty": 5, "price": 10.5, "status": "unemployed", "items": [{"price": 1}, {"price": 2}]},
        pageState={"mode": "view"},
        routeParams={"id": 42},
        user={"name": "ada", "permissions": ["orders:read"], "roles": ["member"]},
    )

# tests/engine/reactive/conftest.py
import pytest

from uiflow.engine.expression import ExpressionEngine
from uiflow.engine.reactive import ReactiveFieldEngine

# --- Pytest Fixtures ---

@pytest.fixture
def form():
    return ReactiveFieldEngine(engine=ExpressionEngine(development=False), form_id="signup")

@pytest.fixture
def employment_form(form):
    """status 决定 employer 是否可见"""
    form.register({"name": "status", "default": "unemployed"})
    form.register({
        "name": "employer",
        "required": True,
        "visibility": {"condition": "{{formData.status}} === 'employed'"},
    })
    return form

# tests/engine/expression/test_dependencies.py
import logging

import pytest

from uiflow.engine.expression import (
    affects, get_dependencies, merge_declared_dependencies, normalize_dependency, paths_overlap,
)

@pytest.mark.parametrize("expression, expected", [
    ("{{formData.qty}} * {{formData.price}}", {"formData.qty", "formData.price"}),
    ("upper(user.name)", {"user.name"}),
    ("formData.a ? pageState.b.c : routeParams.id", {"formData.a", "pageState.b.c", "routeParams.id"}),
    ("formData.items[0].price", {"formData.items.0.price"}),
    ("'x' + 1", set()),
    ("Total: {{formData.total}}", {"formData.total"}),
])
def test_static_paths(engine, expression, expected):
    assert engine.get_dependencies(expression) == expected

def test_dynamic_index_stops_at_static_prefix(engine):
    deps = engine.get_dependencies("formData.items[formData.i].price")
    assert deps == {"formData.items", "formData.i"}

def test_dependencies_cover_paths_read_in_every_branch(engine):
    expression = "formData.useShipping ? formData.shipping.city : formData.billing.city"
    deps = engine.get_dependencies(expression)
    for context in (
        {"formData": {"useShipping": True, "shipping": {"city": "Paris"}}},
        {"formData": {"useShipping": False, "billing": {"city": "Oslo"}}},
    ):
        engine.evaluate(expression, context)
        assert {"formData.useShipping", "formData.shipping.city", "formData.billing.city"} <= deps

def test_module_level_get_dependencies():
    assert get_dependencies("{{formData.a}} + 1") == {"formData.a"}

def test_normalize_dependency():
    assert normalize_dependency("quantity") == "formData.quantity"
    assert normalize_dependency("pageState.filters") == "pageState.filters"
    assert normalize_dependency("items[0].price") == "formData.items.0.price"

def test_path_overlap():
    assert paths_overlap("formData.items", "formData.items.0.price")
    assert paths_overlap("formData.items.0", "formData.items")
    assert not paths_overlap("formData.item", "formData.items")
    assert affects(["formData.qty"], ["formData.price", "formData.qty"])
    assert not affects(["pageState.mode"], ["formData.qty"])

def test_declared_dependencies_narrow_when_complete():
    merged = merge_declared_dependencies({"formData.a.b"}, ["a"], "{{formData.a.b}}")
    assert merged == {"formData.a"}

def test_under_declared_dependencies_are_added_back_with_warning(caplog):
    with caplog.at_level(logging.WARNING):
        merged = merge_declared_dependencies({"formData.a", "formData.b"}, ["a"], "a + b")
    assert merged == {"formData.a", "formData.b"}
    assert "omit paths" in caplog.text

def test_no_declaration_keeps_inferred():
    assert merge_declared_dependencies({"formData.a"}, None) == {"formData.a"}

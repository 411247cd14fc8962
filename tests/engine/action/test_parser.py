# tests/engine/action/test_parser.py
import pytest

from uiflow.engine.action import (
    ConditionalAction, ForEachAction, LeafAction, SequenceAction, default_action_registry, parse_action,
)
from uiflow.engine.errors import CompositionError
from uiflow.engine.expression import ParseError

def nested_sequence(depth: int) -> dict:
    node = {"kind": "reload"}
    for _ in range(depth - 1):
        node = {"kind": "sequence", "actions": [node]}
    return node

def test_parses_leaf_with_type_alias():
    node = parse_action({"type": "navigate", "params": {"to": "/orders"}})
    assert isinstance(node, LeafAction)
    assert node.kind == "navigate"
    assert node.params == {"to": "/orders"}

def test_condition_on_leaf_becomes_guard():
    node = parse_action({"kind": "reload", "condition": "{{formData.dirty}}"})
    assert node.when == "{{formData.dirty}}"

def test_single_chain_node_is_wrapped_in_list():
    node = parse_action({
        "kind": "apiCall",
        "params": {"url": "/save"},
        "onSuccess": {"kind": "showToast", "params": {"message": "Saved"}},
    })
    assert len(node.onSuccess) == 1
    assert node.onSuccess[0].kind == "showToast"
    assert node.onError == []

def test_composite_fields_can_live_in_params():
    node = parse_action({
        "kind": "forEach",
        "params": {"collection": "formData.items", "action": {"kind": "reload"}, "parallel": True},
    })
    assert isinstance(node, ForEachAction)
    assert node.collection == "formData.items"
    assert node.parallel is True
    assert node.params == {}

def test_conditional_else_alias():
    node = parse_action({
        "kind": "conditional",
        "condition": "{{formData.ok}}",
        "then": [{"kind": "reload"}],
        "else": {"kind": "goBack"},
    })
    assert isinstance(node, ConditionalAction)
    assert node.else_[0].kind == "goBack"

def test_nested_tree():
    node = parse_action({
        "kind": "sequence",
        "actions": [
            {"kind": "validateForm"},
            {"kind": "parallel", "actions": [{"kind": "refreshDatasource", "params": {"datasourceId": "orders"}}]},
        ],
    })
    assert isinstance(node, SequenceAction)
    assert node.actions[1].kind == "parallel"

@pytest.mark.parametrize("config, message", [
    ({"kind": "teleport"}, "Unknown action kind 'teleport'"),
    ({"params": {}}, "missing 'kind'"),
    ({"kind": "forEach", "action": {"kind": "reload"}}, "requires a 'collection'"),
    ({"kind": "forEach", "collection": "formData.items"}, "requires an 'action'"),
    ({"kind": "sequence", "actions": []}, "non-empty 'actions'"),
    ({"kind": "conditional", "condition": "true"}, "requires a 'then'"),
    ({"kind": "apiCall", "retry": {"attempts": 0}}, "at least 1"),
    ({"kind": "apiCall", "retry": {"attempts": -2}}, "at least 1"),
    ({"kind": "sequence", "actions": [{"kind": "reload"}], "retry": {"attempts": 2}}, "only supported on leaf"),
    ({"kind": "sequence", "actions": ["reload"]}, "must be an object"),
])
def test_structural_errors(config, message):
    with pytest.raises(CompositionError, match=message):
        parse_action(config)

def test_error_path_points_at_offending_node():
    with pytest.raises(CompositionError) as exc_info:
        parse_action({"kind": "sequence", "actions": [{"kind": "reload"}, {"kind": "teleport"}]})
    assert exc_info.value.path == "root.actions[1]"

def test_pydantic_errors_become_composition_errors():
    with pytest.raises(CompositionError, match="Invalid action configuration"):
        parse_action({"kind": "showToast", "timeout": -5})
    with pytest.raises(CompositionError):
        parse_action({"kind": "reload", "unexpected": True})

def test_depth_limit():
    parse_action(nested_sequence(5), max_depth=5)
    with pytest.raises(CompositionError, match="maximum depth of 5"):
        parse_action(nested_sequence(6), max_depth=5)

def test_malformed_condition_is_rejected_at_load_time():
    with pytest.raises(ParseError):
        parse_action({"kind": "reload", "when": "{{formData.a ===}}"})
    with pytest.raises(ParseError):
        parse_action({"kind": "conditional", "condition": "1 +", "then": [{"kind": "reload"}]})

def test_custom_registry_kinds():
    registry = default_action_registry.copy()

    @registry.register("confetti")
    class ConfettiHandler:
        pass

    assert parse_action({"kind": "confetti"}, registry=registry).kind == "confetti"
    with pytest.raises(CompositionError):
        parse_action({"kind": "confetti"})

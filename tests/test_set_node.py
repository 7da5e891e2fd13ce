"""Tests for the Set node and the trigger entry node."""

import pytest

from flowline.core.state import RunMode
from flowline.nodes.base import NodeInputItem, PassThroughNode
from flowline.nodes.set import SetNode
from flowline.nodes.trigger import TriggerNode
from flowline.utils.errors import ParameterValidationError
from tests._helpers import item, make_context


def test_operations_required():
    """Test that construction fails without operations."""
    with pytest.raises(ParameterValidationError):
        SetNode("set_1", {})
    with pytest.raises(ParameterValidationError):
        SetNode("set_1", {"operations": []})


def test_invalid_operation_rejected():
    """Test per-operation validation."""
    with pytest.raises(ParameterValidationError, match="name is required"):
        SetNode("set_1", {"operations": [{"value": 1, "type": "set"}]})
    with pytest.raises(ParameterValidationError, match="type must be"):
        SetNode("set_1", {"operations": [{"name": "a", "type": "rename"}]})


@pytest.mark.asyncio
async def test_set_values_with_expressions():
    """Test setting nested values resolved against the item."""
    node = SetNode(
        "set_1",
        {
            "operations": [
                {"name": "greeting", "value": "Hi {{ $json.name }}", "type": "set"},
                {"name": "profile.age", "value": "{{ $json.age }}", "type": "set"},
            ]
        },
    )
    original = {"name": "Ada", "age": 36}

    output = await node.execute([item(original)], make_context("set_1"))

    assert output == [{"name": "Ada", "age": 36, "greeting": "Hi Ada", "profile": {"age": 36}}]
    # input item is not mutated
    assert original == {"name": "Ada", "age": 36}


@pytest.mark.asyncio
async def test_unset_and_keep_only_set():
    """Test removing fields and starting from an empty object."""
    unset = SetNode("unset", {"operations": [{"name": "secret", "type": "unset"}]})
    only = SetNode(
        "only",
        {
            "operations": [{"name": "id", "value": "{{ $json.id }}", "type": "set"}],
            "options": {"keepOnlySet": True},
        },
    )
    data = {"id": 3, "secret": "x"}

    assert await unset.execute([item(data)], make_context()) == [{"id": 3}]
    assert await only.execute([item(data)], make_context()) == [{"id": 3}]


@pytest.mark.asyncio
async def test_dot_notation_disabled():
    """Test treating names as literal keys."""
    node = SetNode(
        "set_1",
        {
            "operations": [{"name": "a.b", "value": 1, "type": "set"}],
            "options": {"dot_notation": False},
        },
    )

    assert await node.execute([item({})], make_context()) == [{"a.b": 1}]


@pytest.mark.asyncio
async def test_one_output_per_item():
    """Test that each input item produces its own output."""
    node = SetNode("set_1", {"operations": [{"name": "seen", "value": True, "type": "set"}]})

    output = await node.execute([item({"n": 1}), item({"n": 2})], make_context())

    assert output == [{"n": 1, "seen": True}, {"n": 2, "seen": True}]


@pytest.mark.asyncio
async def test_item_failure_raises_by_default():
    """Test that a failing operation propagates."""
    node = SetNode("set_1", {"operations": [{"name": "a.b", "value": 1, "type": "set"}]})

    class Exploding(dict):
        def __deepcopy__(self, memo):
            raise RuntimeError("cannot copy")

    with pytest.raises(RuntimeError):
        await node.execute([item(Exploding())], make_context())


@pytest.mark.asyncio
async def test_item_failure_recorded_when_continuing():
    """Test that failing items become error entries under continue_on_failure."""
    node = SetNode("set_1", {"operations": [{"name": "a.b", "value": 1, "type": "set"}]})

    class Exploding(dict):
        def __deepcopy__(self, memo):
            raise RuntimeError("cannot copy")

    output = await node.execute(
        [item(Exploding()), item({"ok": True})],
        make_context(continue_on_failure=True),
    )

    assert output[0] == {"error": "cannot copy"}
    assert output[1] == {"ok": True, "a": {"b": 1}}


@pytest.mark.asyncio
async def test_trigger_node_emits_payload():
    """Test that the entry node outputs the trigger payload."""
    node = TriggerNode("start")
    context = make_context("start")

    assert await node.execute([NodeInputItem()], context) == {"mode": "manual"}

    fired = context.__class__(
        graph=context.graph,
        config=context.config,
        mode=RunMode.WEBHOOK,
        trigger_data={"request": {"body": {"x": 1}}},
    )
    assert await node.execute([NodeInputItem()], fired) == {
        "request": {"body": {"x": 1}},
        "mode": "webhook",
    }


@pytest.mark.asyncio
async def test_pass_through_node():
    """Test single and multiple input pass-through."""
    node = PassThroughNode("noop")

    assert await node.execute([item({"a": 1})], make_context()) == {"a": 1}
    assert await node.execute([item(1), item(2)], make_context()) == [1, 2]

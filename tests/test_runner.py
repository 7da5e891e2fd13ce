"""Tests for the node registry and the workflow runner."""

import pytest

from flowline import MemorySink, NodeRegistry, WorkflowRunner
from flowline.core.executor import NodeStatus, WorkflowExecutionResult
from flowline.core.state import RunMode
from flowline.nodes.base import PassThroughNode
from flowline.nodes.set import SetNode
from flowline.nodes.trigger import TriggerNode
from flowline.triggers.schedule import ScheduleTrigger
from flowline.triggers.webhook import WebhookTrigger
from flowline.utils.errors import InvalidNodeTypeError, ParameterValidationError
from flowline.utils.registry import normalize_type
from tests._helpers import RecordingNode, make_graph

GREETING = {"operations": [{"name": "greeting", "value": "hi from {{ $json.mode }}", "type": "set"}]}


def greeting_graph(trigger_type="manualTrigger", set_type="set", trigger_parameters=None):
    return make_graph(
        ["start", "greet"],
        [("start", "greet")],
        types={"start": trigger_type, "greet": set_type},
        parameters={"start": trigger_parameters or {}, "greet": GREETING},
    )


class TestRegistry:
    def test_normalize_type(self):
        assert normalize_type("n8n-nodes-base.httpRequest") == "httpRequest"
        assert normalize_type("n8n-nodes-base.cron") == "scheduleTrigger"
        assert normalize_type("start") == "manualTrigger"
        assert normalize_type("set") == "set"

    def test_builtin_types(self, registry):
        assert registry.get_node_type("n8n-nodes-base.set") is SetNode
        assert registry.get_node_type("webhook") is TriggerNode
        assert registry.get_node_type("noOp") is PassThroughNode
        assert registry.get_trigger_type("cron") is ScheduleTrigger
        assert registry.is_trigger_type("n8n-nodes-base.webhook")
        assert not registry.is_trigger_type("manualTrigger")

    def test_unknown_type(self, registry):
        with pytest.raises(InvalidNodeTypeError, match="not registered"):
            registry.get_node_type("emailSend")
        with pytest.raises(InvalidNodeTypeError):
            registry.get_trigger_type("set")

    def test_register_custom_type(self, registry):
        registry.register_node_type("recording", RecordingNode)

        assert registry.has_node_type("recording")
        assert "recording" in registry.list_node_types()
        node = registry.create_node(make_graph(["r"], types={"r": "recording"}).get_node("r"))
        assert isinstance(node, RecordingNode)

    def test_create_trigger_wraps_parameter_errors(self, registry):
        graph = make_graph(["hook"], types={"hook": "webhook"}, parameters={"hook": {"path": "orders"}})

        with pytest.raises(ParameterValidationError) as exc_info:
            registry.create_trigger(graph.get_node("hook"))

        assert isinstance(exc_info.value.__cause__, ValueError)


class TestRunner:
    @pytest.mark.asyncio
    async def test_run_manual_workflow(self, fast_config):
        """Test a manual run from entry node through a Set node."""
        runner = WorkflowRunner(config=fast_config)

        result = await runner.run(greeting_graph())

        assert result.success
        assert result.results["start"].data == {"mode": "manual"}
        assert result.results["greet"].data == [{"mode": "manual", "greeting": "hi from manual"}]

    @pytest.mark.asyncio
    async def test_prefixed_types(self, fast_config):
        runner = WorkflowRunner(config=fast_config)

        result = await runner.run(greeting_graph("n8n-nodes-base.start", "n8n-nodes-base.set"))

        assert result.success
        assert result.results["greet"].data[0]["greeting"] == "hi from manual"

    def test_unknown_node_type_fails_build(self, fast_config):
        runner = WorkflowRunner(config=fast_config)

        with pytest.raises(InvalidNodeTypeError):
            runner.build_engine(greeting_graph(set_type="emailSend"))

    def test_invalid_parameters_fail_build(self, fast_config):
        runner = WorkflowRunner(config=fast_config)
        graph = make_graph(["greet"], types={"greet": "set"}, parameters={"greet": {}})

        with pytest.raises(ParameterValidationError):
            runner.build_engine(graph)

    @pytest.mark.asyncio
    async def test_disabled_nodes_are_not_built(self, fast_config):
        """Test that a disabled node is skipped even when its type is unknown."""
        runner = WorkflowRunner(config=fast_config)
        graph = make_graph(
            ["start", "legacy"],
            [("start", "legacy")],
            types={"start": "manualTrigger", "legacy": "emailSend"},
            disabled=["legacy"],
        )

        result = await runner.run(graph)

        assert result.success
        assert result.statuses["legacy"] == NodeStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_results_saved_to_sink(self, fast_config):
        sink = MemorySink()
        runner = WorkflowRunner(sink=sink, config=fast_config)

        result = await runner.run(greeting_graph())

        assert await sink.list_runs() == [result.run_id]

    def test_config_from_environment(self, monkeypatch):
        monkeypatch.setenv("FLOWLINE_MAX_RETRIES", "7")

        assert WorkflowRunner().config.max_retries == 7


class TestRunnerTriggers:
    def test_triggers_for_entry_nodes(self, fast_config):
        """Test that only enabled entry nodes with a trigger type get triggers."""
        graph = make_graph(
            ["manual", "every_hour", "orders", "old_hook", "greet"],
            types={
                "manual": "manualTrigger",
                "every_hour": "n8n-nodes-base.scheduleTrigger",
                "orders": "webhook",
                "old_hook": "webhook",
                "greet": "set",
            },
            parameters={
                "every_hour": {"rule": "0 * * * *"},
                "orders": {"path": "/orders"},
                "greet": GREETING,
            },
            disabled=["old_hook"],
        )
        runner = WorkflowRunner(config=fast_config)

        triggers = runner.triggers_for(graph)

        assert [trigger.id for trigger in triggers] == ["every_hour", "orders"]
        assert isinstance(triggers[0], ScheduleTrigger)
        assert isinstance(triggers[1], WebhookTrigger)
        assert triggers[1].path == "/orders"

    @pytest.mark.asyncio
    async def test_subscriber_runs_workflow_per_firing(self, fast_config):
        """Test that a trigger firing starts one run carrying the payload."""
        sink = MemorySink()
        runner = WorkflowRunner(sink=sink, config=fast_config)
        graph = greeting_graph("scheduleTrigger", trigger_parameters={"rule": "0 * * * *"})
        trigger = runner.triggers_for(graph)[0]
        await trigger.start(runner.subscriber_for(graph))

        try:
            outcomes = await trigger.fire_trigger(trigger.trigger_output(note="tick"))
        finally:
            await trigger.stop()

        result = outcomes[0].result
        assert outcomes[0].success
        assert isinstance(result, WorkflowExecutionResult)
        assert result.success
        entry = result.results["start"].data
        assert entry["trigger_id"] == "start"
        assert entry["note"] == "tick"
        assert entry["mode"] == RunMode.TRIGGER.value
        assert await sink.list_runs() == [result.run_id]

    @pytest.mark.asyncio
    async def test_webhook_payload_runs_in_webhook_mode(self, fast_config):
        runner = WorkflowRunner(config=fast_config)
        subscriber = runner.subscriber_for(greeting_graph("webhook"))

        result = await subscriber({"trigger_type": "webhook", "request": {"body": {"x": 1}}})

        assert result.results["start"].data["request"] == {"body": {"x": 1}}
        assert result.results["greet"].data[0]["greeting"] == "hi from webhook"

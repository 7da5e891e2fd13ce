"""Tests for run report sinks."""

import pytest

from flowline import ExecutionEngine, MemorySink
from flowline.sinks.sqlite import SQLiteSink
from tests._helpers import RecordingNode, make_graph


async def run_once(config, output=None):
    graph = make_graph(["a", "b"], [("a", "b")])
    engine = ExecutionEngine(graph, config)
    engine.register_node("a", RecordingNode("a", output=output))
    engine.register_node("b", RecordingNode("b"))
    return await engine.execute()


@pytest.fixture(params=["memory", "sqlite"])
def any_sink(request, tmp_path):
    if request.param == "memory":
        return MemorySink()
    return SQLiteSink(str(tmp_path / "runs" / "flowline.db"))


class TestSinks:
    @pytest.mark.asyncio
    async def test_save_and_load(self, any_sink, fast_config):
        """Test that a stored report matches the result and keeps logs apart."""
        result = await run_once(fast_config, output={"value": 42})

        await any_sink.save_result(result)
        stored = await any_sink.load_result(result.run_id)
        logs = await any_sink.load_logs(result.run_id)

        expected = result.to_dict()
        expected_logs = expected.pop("logs")
        assert stored == expected
        assert stored["results"]["a"]["data"] == {"value": 42}
        assert "logs" not in stored
        assert [entry["message"] for entry in logs] == [entry["message"] for entry in expected_logs]
        assert all(entry["run_id"] == result.run_id for entry in logs)

    @pytest.mark.asyncio
    async def test_missing_run(self, any_sink):
        assert await any_sink.load_result("exec_missing") is None
        assert await any_sink.load_logs("exec_missing") == []
        assert not await any_sink.delete_result("exec_missing")

    @pytest.mark.asyncio
    async def test_list_runs_newest_first(self, any_sink, fast_config):
        first = await run_once(fast_config)
        second = await run_once(fast_config)

        await any_sink.save_result(first)
        await any_sink.save_result(second)

        assert await any_sink.list_runs() == [second.run_id, first.run_id]

        # saving again moves a run to the front
        await any_sink.save_result(first)
        assert await any_sink.list_runs() == [first.run_id, second.run_id]

    @pytest.mark.asyncio
    async def test_delete_result(self, any_sink, fast_config):
        result = await run_once(fast_config)
        await any_sink.save_result(result)

        assert await any_sink.delete_result(result.run_id)

        assert await any_sink.load_result(result.run_id) is None
        assert await any_sink.load_logs(result.run_id) == []
        assert await any_sink.list_runs() == []


class TestMemorySink:
    @pytest.mark.asyncio
    async def test_loaded_report_is_a_copy(self, fast_config):
        sink = MemorySink()
        result = await run_once(fast_config, output={"value": 1})
        await sink.save_result(result)

        loaded = await sink.load_result(result.run_id)
        loaded["results"]["a"]["data"]["value"] = 99

        assert (await sink.load_result(result.run_id))["results"]["a"]["data"] == {"value": 1}

    @pytest.mark.asyncio
    async def test_clear(self, fast_config):
        sink = MemorySink()
        await sink.save_result(await run_once(fast_config))

        assert len(sink) == 1
        sink.clear()
        assert len(sink) == 0


class TestSQLiteSink:
    @pytest.mark.asyncio
    async def test_reports_survive_a_new_instance(self, tmp_path, fast_config):
        db_path = str(tmp_path / "flowline.db")
        result = await run_once(fast_config)
        await SQLiteSink(db_path).save_result(result)

        reopened = SQLiteSink(db_path)

        assert await reopened.list_runs() == [result.run_id]
        assert (await reopened.load_result(result.run_id))["success"] is True

    @pytest.mark.asyncio
    async def test_cleanup_keeps_recent_runs(self, tmp_path, fast_config):
        sink = SQLiteSink(str(tmp_path / "flowline.db"))
        result = await run_once(fast_config)
        await sink.save_result(result)

        assert await sink.cleanup_old_runs(max_age_days=1) == 0
        assert await sink.list_runs() == [result.run_id]

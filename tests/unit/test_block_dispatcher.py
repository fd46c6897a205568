"""
Unit tests for the block dispatcher.

Tests:
- Block callback fires exactly once per block
- Handler routing by namespaced id with the first authorizing identity
- Unregistered ids are ignored silently
- Malformed payloads and failing handlers do not stop sibling operations
- Async handlers are awaited
"""

import pytest

from ledger_ingest.dispatcher import BlockDispatcher
from ledger_ingest.errors import PayloadDecodeError
from ledger_ingest.metrics import EngineMetrics
from ledger_ingest.mock_client import custom_json_op, make_block
from ledger_ingest.registry import OperationRegistry
from ledger_ingest.types import Transaction


class Recorder:
    """Collects handler and block callback invocations."""

    def __init__(self):
        self.calls = []
        self.blocks = []

    def handler(self, name):
        def handle(payload, who):
            self.calls.append((name, payload, who))
        return handle

    def on_block(self, height, block):
        self.blocks.append((height, block))


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def errors():
    return []


@pytest.fixture
def setup(recorder, errors):
    registry = OperationRegistry(prefix="myapp_")
    registry.set_block_callback(recorder.on_block)
    metrics = EngineMetrics()
    dispatcher = BlockDispatcher(registry, metrics, errors.append)
    return registry, dispatcher, metrics


class TestBlockCallback:
    """Test the new-block callback."""

    @pytest.mark.asyncio
    async def test_called_once_for_block_without_operations(self, setup, recorder):
        """Blocks with no custom_json still notify the block callback."""
        registry, dispatcher, _ = setup
        registry.register("greet", recorder.handler("greet"))
        block = make_block(4, [[["vote", {"voter": "bob"}]]])

        await dispatcher.process(block, 4)

        assert recorder.blocks == [(4, block)]
        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_failing_block_callback_does_not_stop_handlers(self, setup, recorder):
        registry, dispatcher, metrics = setup

        def broken(height, block):
            raise RuntimeError("boom")

        registry.set_block_callback(broken)
        registry.register("greet", recorder.handler("greet"))
        block = make_block(1, [[custom_json_op("myapp_greet", {"msg": "hi"})]])

        result = await dispatcher.process(block, 1)

        assert recorder.calls == [("greet", {"msg": "hi"}, "alice")]
        assert result.errors == 1
        assert metrics.handler_errors == 1


class TestHandlerRouting:
    """Test custom_json routing."""

    @pytest.mark.asyncio
    async def test_block_10_greet_scenario(self, setup, recorder):
        """Vote is ignored; myapp_greet reaches the greet handler with alice."""
        registry, dispatcher, _ = setup
        registry.register("greet", recorder.handler("greet"))
        block = make_block(10, [[
            ["vote", {"voter": "bob", "author": "carol", "permlink": "p", "weight": 10000}],
            ["custom_json", {
                "id": "myapp_greet",
                "json": "{\"msg\":\"hi\"}",
                "required_posting_auths": ["alice"],
                "required_auths": [],
            }],
        ]])

        result = await dispatcher.process(block, 10)

        assert recorder.calls == [("greet", {"msg": "hi"}, "alice")]
        assert recorder.blocks == [(10, block)]
        assert result.operations_matched == 1
        assert result.handlers_invoked == 1

    @pytest.mark.asyncio
    async def test_unregistered_id_ignored(self, setup, recorder, errors):
        """No handler, no invocation, no error."""
        registry, dispatcher, _ = setup
        registry.register("greet", recorder.handler("greet"))
        block = make_block(2, [[custom_json_op("myapp_other", {"a": 1})]])

        result = await dispatcher.process(block, 2)

        assert recorder.calls == []
        assert errors == []
        assert result.errors == 0
        assert result.operations_matched == 0

    @pytest.mark.asyncio
    async def test_other_namespace_ignored(self, setup, recorder):
        """An id registered under this prefix does not match a foreign prefix."""
        registry, dispatcher, _ = setup
        registry.register("greet", recorder.handler("greet"))
        block = make_block(2, [[custom_json_op("otherapp_greet", {"a": 1})]])

        await dispatcher.process(block, 2)

        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_operations_dispatched_in_order(self, setup, recorder):
        registry, dispatcher, _ = setup
        registry.register("a", recorder.handler("a"))
        registry.register("b", recorder.handler("b"))
        block = make_block(3, [
            [custom_json_op("myapp_a", {"n": 1}), custom_json_op("myapp_b", {"n": 2})],
            [custom_json_op("myapp_a", {"n": 3}, posting_auths=("dave",))],
        ])

        await dispatcher.process(block, 3)

        assert recorder.calls == [
            ("a", {"n": 1}, "alice"),
            ("b", {"n": 2}, "alice"),
            ("a", {"n": 3}, "dave"),
        ]

    @pytest.mark.asyncio
    async def test_async_handler_awaited(self, setup):
        registry, dispatcher, _ = setup
        seen = []

        async def handle(payload, who):
            seen.append((payload, who))

        registry.register("greet", handle)
        block = make_block(5, [[custom_json_op("myapp_greet", [1, 2])]])

        await dispatcher.process(block, 5)

        assert seen == [([1, 2], "alice")]


class TestErrorIsolation:
    """Test that one bad operation does not affect the others."""

    @pytest.mark.asyncio
    async def test_malformed_payload_skipped(self, setup, recorder, errors):
        """A bad payload is reported; later operations and transactions still run."""
        registry, dispatcher, metrics = setup
        registry.register("greet", recorder.handler("greet"))
        block = make_block(6, [
            [custom_json_op("myapp_greet", "{not json"), custom_json_op("myapp_greet", {"n": 1})],
            [custom_json_op("myapp_greet", {"n": 2})],
        ])

        result = await dispatcher.process(block, 6)

        assert [payload for _, payload, _ in recorder.calls] == [{"n": 1}, {"n": 2}]
        assert result.errors == 1
        assert metrics.payload_errors == 1
        assert len(errors) == 1
        assert isinstance(errors[0], PayloadDecodeError)
        assert errors[0].height == 6
        assert errors[0].op_id == "myapp_greet"

    @pytest.mark.asyncio
    async def test_failing_handler_isolated(self, setup, recorder):
        registry, dispatcher, metrics = setup

        def broken(payload, who):
            raise KeyError("missing")

        registry.register("bad", broken)
        registry.register("good", recorder.handler("good"))
        block = make_block(7, [[custom_json_op("myapp_bad", {}), custom_json_op("myapp_good", {})]])

        result = await dispatcher.process(block, 7)

        assert recorder.calls == [("good", {}, "alice")]
        assert result.handlers_invoked == 1
        assert metrics.handler_errors == 1

    @pytest.mark.asyncio
    async def test_metrics_count_blocks(self, setup):
        _, dispatcher, metrics = setup

        await dispatcher.process(make_block(1), 1)
        await dispatcher.process(make_block(2), 2)

        assert metrics.blocks_processed == 2
        assert metrics.last_block_time > 0

    @pytest.mark.asyncio
    async def test_non_object_operation_body_ignored(self, setup, recorder):
        registry, dispatcher, metrics = setup
        registry.register("greet", recorder.handler("greet"))
        block = make_block(8, [
            [["custom_json", "not-a-dict"], custom_json_op("myapp_greet", {"n": 1})],
        ])

        result = await dispatcher.process(block, 8)

        assert recorder.calls == [("greet", {"n": 1}, "alice")]
        assert result.errors == 0

    @pytest.mark.asyncio
    async def test_unreadable_transaction_skipped(self, setup, recorder):
        """A transaction that cannot be read does not stop the rest of the block."""
        registry, dispatcher, metrics = setup
        registry.register("greet", recorder.handler("greet"))
        block = make_block(9, [[custom_json_op("myapp_greet", {"n": 2})]])
        block.transactions.insert(0, Transaction(operations=[("custom_json", "raw")]))

        result = await dispatcher.process(block, 9)

        assert recorder.calls == [("greet", {"n": 2}, "alice")]
        assert result.errors == 1
        assert metrics.payload_errors == 1
        assert recorder.blocks[0][0] == 9


class TestInFlight:
    """Test the in-flight dispatch flag."""

    @pytest.mark.asyncio
    async def test_in_flight_only_during_process(self, setup):
        registry, dispatcher, _ = setup
        seen = []
        registry.set_block_callback(lambda height, block: seen.append(dispatcher.in_flight))

        assert dispatcher.in_flight is False
        await dispatcher.process(make_block(1), 1)
        await dispatcher.wait_idle()

        assert seen == [True]
        assert dispatcher.in_flight is False

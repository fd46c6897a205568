"""
Unit tests for the live stream consumer.

Tests:
- Stale block filtering against the cursor
- Cursor follows the streamed block height
- Pause ends consumption cleanly
- Unexpected feed end is reported
"""

import asyncio

import pytest

from ledger_ingest.cursor import BlockCursor
from ledger_ingest.dispatcher import BlockDispatcher
from ledger_ingest.errors import StreamTerminationError
from ledger_ingest.metrics import EngineMetrics
from ledger_ingest.mock_client import MockLedgerClient, make_block
from ledger_ingest.registry import OperationRegistry
from ledger_ingest.stream_consumer import StreamConsumer, StreamOutcome
from ledger_ingest.types import Block


@pytest.fixture
def harness():
    """StreamConsumer wired to a mock client, with the cursor at 9."""
    client = MockLedgerClient()
    cursor = BlockCursor(9)
    registry = OperationRegistry()
    heights = []
    registry.set_block_callback(lambda height, block: heights.append(height))
    metrics = EngineMetrics()
    errors = []
    stop = asyncio.Event()
    dispatcher = BlockDispatcher(registry, metrics, errors.append)
    consumer = StreamConsumer(client, cursor, dispatcher, metrics, stop, errors.append)
    return consumer, client, cursor, heights, errors, stop, metrics


class TestStreamFiltering:
    """Test stale block handling."""

    @pytest.mark.asyncio
    async def test_stale_block_discarded(self, harness, wait_until):
        """Block 7 while cursor is 9: no dispatch, cursor stays 9."""
        consumer, client, cursor, heights, _, _, metrics = harness
        task = asyncio.ensure_future(consumer.run())
        await wait_until(lambda: client.feed is not None)

        client.feed.push(make_block(7))
        client.feed.push(make_block(9))
        await wait_until(lambda: heights == [9])

        assert metrics.stale_blocks_discarded == 1
        assert cursor.value == 10

        consumer.pause()
        assert await task is StreamOutcome.PAUSED

    @pytest.mark.asyncio
    async def test_cursor_follows_block_height(self, harness, wait_until):
        consumer, client, cursor, heights, _, _, metrics = harness
        task = asyncio.ensure_future(consumer.run())
        await wait_until(lambda: client.feed is not None)

        for height in (9, 10, 12):
            client.feed.push(make_block(height))
        await wait_until(lambda: len(heights) == 3)

        assert heights == [9, 10, 12]
        assert cursor.value == 13
        assert metrics.blocks_streamed == 3

        consumer.pause()
        await task

    @pytest.mark.asyncio
    async def test_duplicate_block_dispatched_once(self, harness, wait_until):
        consumer, client, cursor, heights, _, _, metrics = harness
        task = asyncio.ensure_future(consumer.run())
        await wait_until(lambda: client.feed is not None)

        client.feed.push(make_block(9))
        client.feed.push(make_block(9))
        client.feed.push(make_block(10))
        await wait_until(lambda: cursor.value == 11)

        assert heights == [9, 10]
        assert metrics.stale_blocks_discarded == 1

        consumer.pause()
        await task

    @pytest.mark.asyncio
    async def test_block_without_id_dropped(self, harness, wait_until):
        consumer, client, cursor, heights, errors, _, _ = harness
        task = asyncio.ensure_future(consumer.run())
        await wait_until(lambda: client.feed is not None)

        client.feed.push(Block(block_id="", transactions=[]))
        client.feed.push(make_block(9))
        await wait_until(lambda: heights == [9])

        assert errors == []

        consumer.pause()
        await task


class TestStreamEnd:
    """Test feed termination handling."""

    @pytest.mark.asyncio
    async def test_unexpected_end_reported(self, harness, wait_until):
        consumer, client, cursor, _, errors, _, metrics = harness
        task = asyncio.ensure_future(consumer.run())
        await wait_until(lambda: client.feed is not None)

        client.feed.end()
        outcome = await task

        assert outcome is StreamOutcome.TERMINATED
        assert metrics.stream_terminations == 1
        assert len(errors) == 1
        assert isinstance(errors[0], StreamTerminationError)
        assert errors[0].cursor == 9

    @pytest.mark.asyncio
    async def test_pause_is_not_termination(self, harness, wait_until):
        consumer, client, _, _, errors, _, metrics = harness
        task = asyncio.ensure_future(consumer.run())
        await wait_until(lambda: client.feed is not None)

        consumer.pause()

        assert await task is StreamOutcome.PAUSED
        assert errors == []
        assert metrics.stream_terminations == 0

    @pytest.mark.asyncio
    async def test_stop_before_run_never_subscribes(self, harness):
        consumer, client, _, _, _, stop, _ = harness
        stop.set()

        assert await consumer.run() is StreamOutcome.PAUSED
        assert client.feeds == []

    @pytest.mark.asyncio
    async def test_subscribes_from_cursor(self, harness, wait_until):
        consumer, client, _, _, _, _, _ = harness
        task = asyncio.ensure_future(consumer.run())
        await wait_until(lambda: client.feed is not None)

        assert ("subscribe_block_stream", 9) in client.calls

        consumer.pause()
        await task

"""Tests for call correlation IDs on log records."""

import asyncio
import logging

import pytest

from receptionist.logging_context import CallIdFilter, bind_call


def _record() -> logging.LogRecord:
    return logging.LogRecord("test", logging.INFO, __file__, 1, "hello", None, None)


class TestCallIdFilter:
    @pytest.mark.asyncio
    async def test_defaults_outside_a_call(self):
        async def read():
            record = _record()
            CallIdFilter().filter(record)
            return record

        record = await asyncio.create_task(read())
        assert record.call_id == "NO_CALL_ID"
        assert record.session_id == "NO_SESSION"

    @pytest.mark.asyncio
    async def test_bound_ids_stay_in_their_task(self):
        async def worker(call_id, session_id):
            bind_call(call_id, session_id)
            await asyncio.sleep(0)
            record = _record()
            CallIdFilter().filter(record)
            return record.call_id, record.session_id

        first, second = await asyncio.gather(
            worker("CA-1", "sess-1"), worker("CA-2", "sess-2")
        )
        assert first == ("CA-1", "sess-1")
        assert second == ("CA-2", "sess-2")

    def test_filter_never_drops_records(self):
        assert CallIdFilter().filter(_record()) is True

"""
DJED ANALYTICS - Unit Tests for the Blockfrost Adapter, Batching and Datum Cache
"""
import asyncio
import aiohttp
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

from djed_analytics.data.batching import gather_or_cancel, process_batch
from djed_analytics.data.cache.datum_cache import DatumCache
from djed_analytics.exceptions import ChainApiError, DecodeError, RateLimitError, ResourceNotFound, TransientError
from djed_analytics.tests.fakes import FakeResponse, FakeSession, make_adapter

SLEEP = "djed_analytics.data.adapters.blockfrost_adapter.asyncio.sleep"


class TestRetry:
    @pytest.mark.asyncio
    async def test_success_first_try(self):
        session = FakeSession([FakeResponse(body={"hash": "abc"})])
        adapter = make_adapter(session)
        assert await adapter.fetch_one("/blocks/abc") == {"hash": "abc"}
        assert session.calls == [("/blocks/abc", {})]

    @pytest.mark.asyncio
    async def test_rate_limit_backs_off_exponentially(self):
        session = FakeSession([
            FakeResponse(status=429, text=""),
            FakeResponse(status=429, text=""),
            FakeResponse(body=[1, 2]),
        ])
        adapter = make_adapter(session, max_retries=5, rate_limit_backoff=2.0)
        with patch(SLEEP, new=AsyncMock()) as sleep:
            assert await adapter.fetch_one("/x") == [1, 2]
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_retry_after_header_honoured(self):
        session = FakeSession([
            FakeResponse(status=429, text="", headers={"Retry-After": "30"}),
            FakeResponse(body={}),
        ])
        adapter = make_adapter(session, rate_limit_backoff=2.0)
        with patch(SLEEP, new=AsyncMock()) as sleep:
            await adapter.fetch_one("/x")
        sleep.assert_awaited_once_with(30.0)

    @pytest.mark.asyncio
    async def test_transport_and_server_errors_retried(self):
        session = FakeSession([
            aiohttp.ClientConnectionError("reset"),
            asyncio.TimeoutError(),
            FakeResponse(status=503, text="busy"),
            FakeResponse(body={"ok": True}),
        ])
        adapter = make_adapter(session, max_retries=4, backoff=1.0)
        with patch(SLEEP, new=AsyncMock()) as sleep:
            assert await adapter.fetch_one("/x") == {"ok": True}
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_empty_body_retried(self):
        session = FakeSession([FakeResponse(text="  "), FakeResponse(body={"ok": 1})])
        adapter = make_adapter(session)
        with patch(SLEEP, new=AsyncMock()):
            assert await adapter.fetch_one("/x") == {"ok": 1}

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_transient(self):
        session = FakeSession([FakeResponse(status=502, text="")] * 3)
        adapter = make_adapter(session, max_retries=3)
        with patch(SLEEP, new=AsyncMock()) as sleep:
            with pytest.raises(TransientError) as info:
                await adapter.fetch_one("/x")
        assert info.value.attempts == 3
        assert info.value.status == 502
        assert sleep.await_count == 2
        assert len(session.calls) == 3

    @pytest.mark.asyncio
    async def test_exhausted_rate_limit_is_rate_limit_error(self):
        session = FakeSession([FakeResponse(status=429, text="")] * 2)
        adapter = make_adapter(session, max_retries=2)
        with patch(SLEEP, new=AsyncMock()):
            with pytest.raises(RateLimitError):
                await adapter.fetch_one("/x")

    @pytest.mark.asyncio
    async def test_not_found_is_never_retried(self):
        session = FakeSession([FakeResponse(status=404, text="{}")])
        adapter = make_adapter(session)
        with patch(SLEEP, new=AsyncMock()) as sleep:
            with pytest.raises(ResourceNotFound):
                await adapter.fetch_one("/blocks/gone")
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self):
        session = FakeSession([FakeResponse(status=403, text="forbidden")])
        adapter = make_adapter(session)
        with pytest.raises(ChainApiError) as info:
            await adapter.fetch_one("/x")
        assert info.value.status == 403
        assert not isinstance(info.value, ResourceNotFound)

    @pytest.mark.asyncio
    async def test_block_exists(self):
        session = FakeSession([FakeResponse(body={"hash": "a"}), FakeResponse(status=404, text="")])
        adapter = make_adapter(session)
        assert await adapter.block_exists("a") is True
        assert await adapter.block_exists("b") is False

    @pytest.mark.asyncio
    async def test_block_exists_propagates_transient(self):
        session = FakeSession([FakeResponse(status=500, text="")] * 3)
        adapter = make_adapter(session)
        with patch(SLEEP, new=AsyncMock()):
            with pytest.raises(TransientError):
                await adapter.block_exists("a")


class TestPagination:
    @pytest.mark.asyncio
    async def test_stops_on_empty_page(self):
        session = FakeSession([
            FakeResponse(body=[1, 2]),
            FakeResponse(body=[3]),
            FakeResponse(body=[]),
        ])
        adapter = make_adapter(session, page_size=2)
        assert await adapter.fetch_paginated("/list", {"order": "desc"}) == [1, 2, 3]
        assert [c[1]["page"] for c in session.calls] == [1, 2, 3]
        assert all(c[1]["count"] == 2 and c[1]["order"] == "desc" for c in session.calls)

    @pytest.mark.asyncio
    async def test_take_while_stops_early(self):
        session = FakeSession([FakeResponse(body=[9, 8]), FakeResponse(body=[7, 3]), FakeResponse(body=[2, 1])])
        adapter = make_adapter(session)
        assert await adapter.fetch_paginated("/list", take_while=lambda n: n > 5) == [9, 8, 7]
        assert len(session.calls) == 2

    @pytest.mark.asyncio
    async def test_asset_transactions_since(self):
        cutoff = datetime(2025, 2, 1, tzinfo=timezone.utc)
        cutoff_s = int(cutoff.timestamp())
        session = FakeSession([
            FakeResponse(body=[
                {"tx_hash": "new", "block_time": cutoff_s + 10},
                {"tx_hash": "edge", "block_time": cutoff_s},
            ]),
            FakeResponse(body=[{"tx_hash": "old", "block_time": cutoff_s - 1}]),
        ])
        adapter = make_adapter(session)
        txs = await adapter.asset_transactions("asset1", since=cutoff)
        assert [t["tx_hash"] for t in txs] == ["new", "edge"]
        assert session.calls[0][0] == "/assets/asset1/transactions"


class TestDatumCache:
    @pytest.mark.asyncio
    async def test_datum_fetched_once(self):
        session = FakeSession([FakeResponse(body={"json_value": {"int": 1}})])
        adapter = make_adapter(session)
        assert await adapter.datum("h1") == {"int": 1}
        assert await adapter.datum("h1") == {"int": 1}
        assert len(session.calls) == 1
        assert adapter.datum_cache.stats["hits"] == 1

    @pytest.mark.asyncio
    async def test_datum_without_json_value(self):
        session = FakeSession([FakeResponse(body={"cbor": "d87980"})])
        adapter = make_adapter(session)
        with pytest.raises(DecodeError):
            await adapter.datum("h1")

    def test_cache_is_bounded(self):
        cache = DatumCache(maxsize=2)
        for key in ("a", "b", "c"):
            cache.put(key, {"int": 0})
        assert len(cache) == 2
        assert cache.get("a") is None


class TestProcessBatch:
    @pytest.mark.asyncio
    async def test_preserves_order_and_limits_concurrency(self):
        running = 0
        peak = 0

        async def work(n):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0)
            running -= 1
            return n * 10

        assert await process_batch(list(range(7)), work, batch_size=3) == [0, 10, 20, 30, 40, 50, 60]
        assert peak <= 3

    @pytest.mark.asyncio
    async def test_delay_between_batches_only(self):
        async def work(n):
            return n

        with patch("djed_analytics.data.batching.asyncio.sleep", new=AsyncMock()) as sleep:
            await process_batch([1, 2, 3, 4, 5], work, batch_size=2, delay_seconds=0.3)
        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.3)

    @pytest.mark.asyncio
    async def test_first_error_propagates(self):
        async def work(n):
            if n == 2:
                raise TransientError("boom")
            return n

        with pytest.raises(TransientError):
            await process_batch([1, 2, 3], work, batch_size=5)

    @pytest.mark.asyncio
    async def test_empty_input(self):
        async def work(n):
            return n

        assert await process_batch([], work, batch_size=2) == []

    @pytest.mark.asyncio
    async def test_invalid_batch_size(self):
        async def work(n):
            return n

        with pytest.raises(ValueError):
            await process_batch([1], work, batch_size=0)


class TestGatherOrCancel:
    @pytest.mark.asyncio
    async def test_results_in_order(self):
        async def value(n, pause):
            await asyncio.sleep(pause)
            return n

        assert await gather_or_cancel(value(1, 0.02), value(2, 0), value(3, 0.01)) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_failure_cancels_siblings(self):
        finished = []
        cancelled = []

        async def slow(name):
            try:
                await asyncio.sleep(0.2)
            except asyncio.CancelledError:
                cancelled.append(name)
                raise
            finished.append(name)

        async def failing():
            raise TransientError("pool load failed")

        with pytest.raises(TransientError):
            await gather_or_cancel(failing(), slow("oracle"), slow("other"))
        assert sorted(cancelled) == ["oracle", "other"]
        await asyncio.sleep(0.3)
        assert finished == []

"""
DJED ANALYTICS - Unit Tests for the Snapshot Loader
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, patch

from djed_analytics.data.models import SnapshotKind
from djed_analytics.exceptions import ConfigurationError, TransientError
from djed_analytics.sync.snapshots import SnapshotLoader
from djed_analytics.tests.factories import oracle_datum_json, pool_datum_json
from djed_analytics.tests.fakes import FakeResponse, FakeSession, make_adapter, no_delay_batches

T0 = 1738368000  # 2025-02-01T00:00:00Z

TXS = {
    "pool-asset": [{"tx_hash": "p1", "block_time": T0 + 1800}, {"tx_hash": "p2", "block_time": T0 + 7200}],
    "oracle-asset": [{"tx_hash": "o1", "block_time": T0 + 4500}, {"tx_hash": "o2", "block_time": T0 + 10800}],
}

DATUMS = {
    "dp1": pool_datum_json(1_000, 500, 250),
    "dp2": pool_datum_json(2_000, 350, 150),
    "do1": oracle_datum_json(3, 1),
    "do2": {"constructor": 0, "fields": []},  # undecodable
}


def utxos(tx_hash):
    asset = "pool-asset" if tx_hash.startswith("p") else "oracle-asset"
    return {
        "hash": tx_hash,
        "outputs": [
            {"amount": [{"unit": "lovelace", "quantity": "5"}, {"unit": asset, "quantity": "1"}],
             "data_hash": f"d{tx_hash}"},
            {"amount": [{"unit": "lovelace", "quantity": "5"}], "data_hash": "unrelated"},
            {"amount": [{"unit": asset, "quantity": "1"}], "data_hash": None},
        ],
    }


def chain_handler(path, params):
    parts = path.strip("/").split("/")
    if parts[0] == "assets":
        return FakeResponse(body=TXS[parts[1]] if params["page"] == 1 else [])
    if parts[0] == "txs" and len(parts) == 3:
        return FakeResponse(body=utxos(parts[1]))
    if parts[0] == "txs":
        slots = {"p1": 1, "o1": 2, "p2": 3, "o2": 4}
        return FakeResponse(body={"block": f"block-{parts[1]}", "slot": slots[parts[1]]})
    if parts[:2] == ["scripts", "datum"]:
        return FakeResponse(body={"json_value": DATUMS[parts[2]]})
    return FakeResponse(status=404, text="")


def make_loader(handler=chain_handler):
    adapter = make_adapter(FakeSession(handler=handler), page_size=100)
    loader = SnapshotLoader(adapter)
    loader.chain = adapter.chain
    loader.batch = no_delay_batches()
    return loader


class TestSnapshotLoader:
    @pytest.mark.asyncio
    async def test_loads_orders_and_skips_undecodable(self):
        snapshots = await make_loader().load()
        assert [s.block_hash for s in snapshots] == ["block-p1", "block-o1", "block-p2"]
        assert [s.kind for s in snapshots] == [SnapshotKind.POOL, SnapshotKind.ORACLE, SnapshotKind.POOL]
        assert snapshots[0].timestamp.isoformat() == "2025-02-01T00:30:00+00:00"
        assert snapshots[0].datum.ada_in_reserve == 1_000
        assert snapshots[1].slot == 2

    @pytest.mark.asyncio
    async def test_missing_datum_is_skipped(self):
        def handler(path, params):
            if path == "/scripts/datum/dp2":
                return FakeResponse(status=404, text="")
            return chain_handler(path, params)

        snapshots = await make_loader(handler).load()
        assert [s.block_hash for s in snapshots] == ["block-p1", "block-o1"]

    @pytest.mark.asyncio
    async def test_transient_failure_aborts_the_load(self):
        def handler(path, params):
            if path == "/txs/o1":
                return FakeResponse(status=503, text="")
            return chain_handler(path, params)

        with patch("djed_analytics.data.adapters.blockfrost_adapter.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(TransientError):
                await make_loader(handler).load()

    @pytest.mark.asyncio
    async def test_requires_asset_ids(self):
        loader = make_loader()
        loader.chain = loader.chain.model_copy(update={"pool_asset_id": ""})
        with pytest.raises(ConfigurationError):
            await loader.load()

    @pytest.mark.asyncio
    async def test_transaction_without_block_is_skipped(self):
        def handler(path, params):
            if path == "/txs/p2":
                return FakeResponse(body={"hash": "p2"})
            return chain_handler(path, params)

        snapshots = await make_loader(handler).load()
        assert [s.block_hash for s in snapshots] == ["block-p1", "block-o1"]

    @pytest.mark.asyncio
    async def test_listing_entries_without_hash_are_dropped(self):
        def handler(path, params):
            if path == "/assets/pool-asset/transactions" and params["page"] == 1:
                return FakeResponse(body=TXS["pool-asset"] + [{"block_time": T0 + 9000}])
            return chain_handler(path, params)

        snapshots = await make_loader(handler).load()
        assert [s.block_hash for s in snapshots] == ["block-p1", "block-o1", "block-p2"]

    @pytest.mark.asyncio
    async def test_failed_kind_cancels_the_other(self):
        loader = make_loader()
        completed = []

        async def load_kind(kind, asset, decoder, since):
            if kind == SnapshotKind.POOL:
                raise TransientError("pool transactions unavailable")
            await asyncio.sleep(0.2)
            completed.append(kind)
            return []

        with patch.object(loader, "_load_kind", side_effect=load_kind):
            with pytest.raises(TransientError):
                await loader.load()
        await asyncio.sleep(0.3)
        assert completed == []

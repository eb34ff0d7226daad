"""
DJED ANALYTICS - Snapshot Loading & Ordering
Builds the merged, time-ordered stream of pool and oracle snapshots that
every metric pipeline consumes.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from djed_analytics.config.settings import get_settings
from djed_analytics.data.adapters.blockfrost_adapter import BlockfrostAdapter
from djed_analytics.data.batching import gather_or_cancel, process_batch
from djed_analytics.data.datums import decode_oracle_datum, decode_pool_datum
from djed_analytics.data.models import Snapshot, SnapshotKind
from djed_analytics.exceptions import ConfigurationError, DecodeError, ResourceNotFound
from djed_analytics.utils.helpers import from_unix_seconds
from djed_analytics.utils.logger import get_logger

logger = get_logger("snapshots")


def order_snapshots(pool: Sequence[Snapshot], oracle: Sequence[Snapshot]) -> List[Snapshot]:
    """
    Merge pool and oracle snapshots into one sequence, ascending by timestamp.

    Ties keep input order (pool before oracle, then position within each
    collection). Snapshots whose timestamp carries no timezone cannot be
    placed on the UTC timeline and are dropped with a warning.
    """
    merged: List[Snapshot] = []
    for snapshot in list(pool) + list(oracle):
        if snapshot.timestamp.tzinfo is None or snapshot.timestamp.utcoffset() is None:
            logger.warning("snapshot_timestamp_malformed", kind=snapshot.kind.value,
                           block_hash=snapshot.block_hash, timestamp=str(snapshot.timestamp))
            continue
        merged.append(snapshot)
    merged.sort(key=lambda s: s.timestamp)
    return merged


@dataclass(frozen=True)
class _DatumOutput:
    tx_hash: str
    data_hash: str
    block_time: datetime


def _outputs_carrying(asset: str, txs: List[Dict[str, Any]], utxos: List[Dict[str, Any]]) -> List[_DatumOutput]:
    """Outputs that hold `asset` and a datum, stamped with their transaction's block time."""
    block_times = {tx["tx_hash"]: tx["block_time"] for tx in txs}
    outputs: List[_DatumOutput] = []
    for utxo in utxos:
        tx_hash = utxo.get("hash")
        block_time = block_times.get(tx_hash)
        if block_time is None:
            continue
        for output in utxo.get("outputs", []):
            if not output.get("data_hash"):
                continue
            if not any(amount.get("unit") == asset for amount in output.get("amount", [])):
                continue
            outputs.append(_DatumOutput(
                tx_hash=tx_hash,
                data_hash=output["data_hash"],
                block_time=from_unix_seconds(block_time),
            ))
    return outputs


class SnapshotLoader:
    """Fetches and decodes pool and oracle snapshots from the chain-data API."""

    def __init__(self, adapter: BlockfrostAdapter):
        self.adapter = adapter
        settings = get_settings()
        self.chain = settings.chain
        self.batch = settings.batch

    async def load(self, since: Optional[datetime] = None) -> List[Snapshot]:
        """
        Every decodable snapshot (optionally only those from `since` on),
        merged and ordered by timestamp.
        """
        if not self.chain.pool_asset_id or not self.chain.oracle_asset_id:
            raise ConfigurationError("POOL_ASSET_ID and ORACLE_ASSET_ID must be set")

        pool, oracle = await gather_or_cancel(
            self._load_kind(SnapshotKind.POOL, self.chain.pool_asset_id, decode_pool_datum, since),
            self._load_kind(SnapshotKind.ORACLE, self.chain.oracle_asset_id, decode_oracle_datum, since),
        )
        ordered = order_snapshots(pool, oracle)
        logger.info("snapshots_loaded", pool=len(pool), oracle=len(oracle),
                    since=since.isoformat() if since else None)
        return ordered

    async def _load_kind(
        self,
        kind: SnapshotKind,
        asset: str,
        decoder: Callable[[Dict[str, Any]], Any],
        since: Optional[datetime],
    ) -> List[Snapshot]:
        txs = await self.adapter.asset_transactions(asset, since=since)
        complete = [tx for tx in txs if tx.get("tx_hash") and tx.get("block_time") is not None]
        if len(complete) != len(txs):
            logger.warning("asset_transactions_malformed", kind=kind.value, dropped=len(txs) - len(complete))
        txs = complete
        logger.info("asset_transactions_fetched", kind=kind.value, count=len(txs))
        if not txs:
            return []

        utxos = await process_batch(
            txs,
            lambda tx: self.adapter.transaction_utxos(tx["tx_hash"]),
            self.batch.utxo_batch_size,
            self.batch.utxo_batch_delay_seconds,
        )
        outputs = _outputs_carrying(asset, txs, utxos)

        async def enrich(output: _DatumOutput) -> Optional[Snapshot]:
            return await self._snapshot_for(kind, output, decoder)

        snapshots = await process_batch(
            outputs, enrich, self.batch.datum_batch_size, self.batch.datum_batch_delay_seconds
        )
        decoded = [s for s in snapshots if s is not None]
        logger.info("snapshots_decoded", kind=kind.value, outputs=len(outputs),
                    decoded=len(decoded), skipped=len(outputs) - len(decoded))
        return decoded

    async def _snapshot_for(
        self,
        kind: SnapshotKind,
        output: _DatumOutput,
        decoder: Callable[[Dict[str, Any]], Any],
    ) -> Optional[Snapshot]:
        try:
            raw, tx = await gather_or_cancel(
                self.adapter.datum(output.data_hash),
                self.adapter.transaction(output.tx_hash),
            )
            datum = decoder(raw)
            block_hash, slot = tx.get("block"), tx.get("slot")
            if not block_hash or slot is None:
                raise DecodeError(f"transaction {output.tx_hash} has no block or slot")
            return Snapshot(
                kind=kind,
                datum=datum,
                timestamp=output.block_time,
                block_hash=block_hash,
                slot=int(slot),
            )
        except (DecodeError, ResourceNotFound) as e:
            logger.warning("snapshot_decode_skipped", kind=kind.value, tx_hash=output.tx_hash,
                           data_hash=output.data_hash, error=str(e))
            return None

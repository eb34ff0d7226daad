"""
DJED ANALYTICS - Rollback Detector
Checks that the anchor block is still on-chain before a cycle writes
anything, and rewinds the analytics tables to the newest surviving block
when it is not.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from djed_analytics.data.adapters.base import ChainDataAdapter
from djed_analytics.data.models import BlockRef
from djed_analytics.db.repository import AnalyticsRepository
from djed_analytics.exceptions import RollbackExceedsHistory
from djed_analytics.utils.logger import get_logger

logger = get_logger("rollback")

ANALYTICS_STREAM = "analytics"


class RollbackState(str, Enum):
    VALID = "valid"
    ROLLING_BACK = "rolling_back"


@dataclass
class RollbackOutcome:
    state: RollbackState
    anchor: Optional[BlockRef] = None
    new_anchor: Optional[BlockRef] = None
    probed: int = 0
    deleted: Dict[str, int] = field(default_factory=dict)

    @property
    def rolled_back(self) -> bool:
        return self.state == RollbackState.ROLLING_BACK


class RollbackDetector:
    """
    Valid -> RollingBack when the anchor block 404s.

    Only "not found" counts as divergence. Any other failure while probing
    (exhausted retries, API errors) propagates so the cycle aborts without
    touching stored rows.
    """

    def __init__(self, adapter: ChainDataAdapter, repository: AnalyticsRepository,
                 stream: str = ANALYTICS_STREAM):
        self.adapter = adapter
        self.repository = repository
        self.stream = stream

    async def current_anchor(self) -> Optional[BlockRef]:
        anchor = await self.repository.get_anchor(self.stream)
        if anchor is None:
            anchor = await self.repository.latest_block()
        return anchor

    async def check(self) -> RollbackOutcome:
        anchor = await self.current_anchor()
        if anchor is None:
            logger.debug("rollback_check_skipped", reason="nothing_persisted")
            return RollbackOutcome(state=RollbackState.VALID)

        if await self.adapter.block_exists(anchor.block_hash):
            logger.info("no_rollback_detected", block_hash=anchor.block_hash, slot=anchor.slot)
            return RollbackOutcome(state=RollbackState.VALID, anchor=anchor)

        logger.warning("rollback_detected", block_hash=anchor.block_hash, slot=anchor.slot)
        return await self._rewind(anchor)

    async def _rewind(self, anchor: BlockRef) -> RollbackOutcome:
        candidates = await self.repository.distinct_blocks(max_slot=anchor.slot)
        probed = 0
        for candidate in candidates:
            if candidate.block_hash == anchor.block_hash:
                continue
            probed += 1
            if not await self.adapter.block_exists(candidate.block_hash):
                logger.debug("rollback_candidate_missing", block_hash=candidate.block_hash,
                             slot=candidate.slot)
                continue

            logger.warning("rollback_anchor_found", block_hash=candidate.block_hash,
                           slot=candidate.slot, probed=probed)
            deleted = await self.repository.delete_after_slot(candidate.slot)
            await self.repository.set_anchor(self.stream, candidate)
            logger.info("rollback_completed", new_slot=candidate.slot, deleted=deleted)
            return RollbackOutcome(
                state=RollbackState.ROLLING_BACK,
                anchor=anchor,
                new_anchor=candidate,
                probed=probed,
                deleted=deleted,
            )

        raise RollbackExceedsHistory(
            f"No stored block at or below slot {anchor.slot} exists on-chain "
            f"({probed} probed); full resync required"
        )

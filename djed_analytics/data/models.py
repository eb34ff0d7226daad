"""
DJED ANALYTICS - Data Models for On-Chain Snapshots
Canonical, immutable structures passed between the client, the weighting
state machine and the aggregator.
"""
from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from typing import Optional, Union
from datetime import datetime
from enum import Enum
from fractions import Fraction


class Network(str, Enum):
    MAINNET = "Mainnet"
    PREPROD = "Preprod"


class SnapshotKind(str, Enum):
    POOL = "pool"
    ORACLE = "oracle"


class Token(str, Enum):
    ADA = "ADA"
    DJED = "DJED"
    SHEN = "SHEN"


class PoolState(BaseModel):
    """Reserve and circulation amounts from the pool datum, in base units."""
    model_config = ConfigDict(frozen=True)

    ada_in_reserve: int
    djed_in_circulation: int
    shen_in_circulation: int


class OracleState(BaseModel):
    """ADA/USD exchange rate as an exact fraction plus its validity window (POSIX ms)."""
    model_config = ConfigDict(frozen=True)

    ada_usd_numerator: int
    ada_usd_denominator: int
    valid_from_ms: Optional[int] = None
    valid_to_ms: Optional[int] = None

    @field_validator("ada_usd_denominator")
    @classmethod
    def _positive_denominator(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("exchange-rate denominator must be positive")
        return v

    @property
    def ada_usd_rate(self) -> Fraction:
        return Fraction(self.ada_usd_numerator, self.ada_usd_denominator)


class Snapshot(BaseModel):
    """
    One decoded observation of on-chain state.

    `kind` selects the datum shape: a POOL snapshot always carries a
    PoolState and an ORACLE snapshot an OracleState.
    """
    model_config = ConfigDict(frozen=True)

    kind: SnapshotKind
    datum: Union[PoolState, OracleState]
    timestamp: datetime
    block_hash: str
    slot: int

    @model_validator(mode="after")
    def _datum_matches_kind(self) -> "Snapshot":
        expected = PoolState if self.kind == SnapshotKind.POOL else OracleState
        if not isinstance(self.datum, expected):
            raise ValueError(f"{self.kind.value} snapshot carries {type(self.datum).__name__}")
        return self


class BlockRef(BaseModel):
    """A persisted (block, slot) pair used as a rollback anchor candidate."""
    model_config = ConfigDict(frozen=True)

    block_hash: str
    slot: int

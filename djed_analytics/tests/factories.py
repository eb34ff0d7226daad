"""
DJED ANALYTICS - Test Factories
Snapshot and Plutus-JSON builders shared by unit and integration tests.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from djed_analytics.data.models import Snapshot, SnapshotKind


def parse_ts(iso: str) -> datetime:
    return datetime.strptime(iso, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)


def snap(kind: str, datum, iso: str, block: Optional[str] = None, slot: int = 0) -> Snapshot:
    return Snapshot(
        kind=SnapshotKind(kind),
        datum=datum,
        timestamp=parse_ts(iso),
        block_hash=block or f"{kind}-{iso}",
        slot=slot,
    )


def plutus_int(value: int) -> Dict[str, Any]:
    return {"int": value}


def plutus_constr(constructor: int, *fields) -> Dict[str, Any]:
    return {"constructor": constructor, "fields": list(fields)}


def pool_datum_json(ada: int, djed: int, shen: int) -> Dict[str, Any]:
    """Pool datum as served by the chain API, trailing fields included."""
    out_ref = plutus_constr(0, plutus_constr(0, {"bytes": "362e24ab"}), plutus_int(0))
    return plutus_constr(
        0,
        plutus_int(ada), plutus_int(djed), plutus_int(shen),
        plutus_constr(0, plutus_constr(0, out_ref, plutus_int(1734350770000))),
        plutus_int(1823130), plutus_int(1530050),
        plutus_constr(1),
        {"bytes": "8db269c3ec630e06ae29f74bc39edd1f87c819f1056206e879a1cd61"},
        out_ref, out_ref,
    )


def oracle_datum_json(numerator: int, denominator: int,
                      lower_ms: Optional[int] = 1744156444000,
                      upper_ms: Optional[int] = 1744157344000) -> Dict[str, Any]:
    def bound(ms: Optional[int], infinite_constructor: int):
        extended = plutus_constr(1, plutus_int(ms)) if ms is not None else plutus_constr(infinite_constructor)
        return plutus_constr(0, extended, plutus_constr(1))

    return plutus_constr(
        0,
        {"bytes": "baf00a3e"},
        plutus_constr(
            0,
            plutus_constr(0, plutus_int(denominator), plutus_int(numerator)),
            plutus_constr(0, bound(lower_ms, 0), bound(upper_ms, 2)),
            {"bytes": "555344"},
        ),
        {"bytes": "815aca02"},
    )

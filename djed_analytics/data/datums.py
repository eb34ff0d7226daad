"""
DJED ANALYTICS - Plutus Datum Decoding
Turns the detailed-schema JSON form of inline/hashed datums (as served by the
chain-data API) into PoolState / OracleState.
"""
from typing import Any, Dict, List, Optional

from djed_analytics.data.models import OracleState, PoolState
from djed_analytics.exceptions import DecodeError

# Plutus `Extended` constructors for interval bounds
_NEG_INF, _FINITE, _POS_INF = 0, 1, 2


def _fields(node: Any, expected_constructor: Optional[int] = None, min_len: int = 0) -> List[Any]:
    if not isinstance(node, dict) or "fields" not in node:
        raise DecodeError(f"expected a constructor node, got {node!r:.80}")
    if expected_constructor is not None and node.get("constructor") != expected_constructor:
        raise DecodeError(
            f"expected constructor {expected_constructor}, got {node.get('constructor')}"
        )
    fields = node["fields"]
    if not isinstance(fields, list) or len(fields) < min_len:
        raise DecodeError(f"constructor has {len(fields) if isinstance(fields, list) else 0} fields, need {min_len}")
    return fields


def _int(node: Any) -> int:
    if not isinstance(node, dict) or "int" not in node:
        raise DecodeError(f"expected an integer node, got {node!r:.80}")
    value = node["int"]
    # big integers may come back as strings
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"bad integer {value!r}") from e


def _bound_ms(bound: Any) -> Optional[int]:
    """Finite bound -> POSIX ms; infinite bound -> None."""
    extended = _fields(bound, min_len=1)[0]
    if not isinstance(extended, dict):
        raise DecodeError("malformed interval bound")
    constructor = extended.get("constructor")
    if constructor == _FINITE:
        return _int(_fields(extended, min_len=1)[0])
    if constructor in (_NEG_INF, _POS_INF):
        return None
    raise DecodeError(f"unknown interval bound constructor {constructor}")


def decode_pool_datum(value: Dict[str, Any]) -> PoolState:
    """
    Pool datum layout: constructor 0 with ADA in reserve, DJED in
    circulation and SHEN in circulation as the first three integer fields.
    Trailing fields (last order, min ADA, policy ids) are ignored.
    """
    fields = _fields(value, expected_constructor=0, min_len=3)
    ada, djed, shen = (_int(f) for f in fields[:3])
    if min(ada, djed, shen) < 0:
        raise DecodeError("negative amount in pool datum")
    return PoolState(ada_in_reserve=ada, djed_in_circulation=djed, shen_in_circulation=shen)


def decode_oracle_datum(value: Dict[str, Any]) -> OracleState:
    """
    Oracle datum layout: constructor 0 with the oracle fields second:
    (ADA/USD rate {denominator, numerator}, validity range {lower, upper}, expressed-in).
    """
    oracle_fields = _fields(_fields(value, expected_constructor=0, min_len=2)[1], min_len=2)
    denominator, numerator = (_int(f) for f in _fields(oracle_fields[0], min_len=2)[:2])
    if denominator <= 0 or numerator < 0:
        raise DecodeError(f"invalid exchange rate {numerator}/{denominator}")
    lower, upper = _fields(oracle_fields[1], min_len=2)[:2]
    return OracleState(
        ada_usd_numerator=numerator,
        ada_usd_denominator=denominator,
        valid_from_ms=_bound_ms(lower),
        valid_to_ms=_bound_ms(upper),
    )

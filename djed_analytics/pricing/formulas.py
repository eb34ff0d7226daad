"""
DJED ANALYTICS - Protocol Formulas
Exact rational arithmetic over pool and oracle state. Nothing in here ever
touches a float; conversion happens when a row is persisted.
"""
from fractions import Fraction
from typing import Dict

from djed_analytics.data.models import OracleState, PoolState, Token


def djed_ada_rate(ada_usd_rate: Fraction) -> Fraction:
    """ADA per DJED (DJED is pegged to 1 USD)."""
    return 1 / ada_usd_rate


def reserve_ratio(pool: PoolState, oracle: OracleState) -> Fraction:
    """Reserve value over the value of DJED in circulation."""
    return Fraction(pool.ada_in_reserve) / (
        djed_ada_rate(oracle.ada_usd_rate) * pool.djed_in_circulation
    )


def shen_ada_rate(pool: PoolState, oracle: OracleState) -> Fraction:
    """ADA per SHEN: the reserve left after backing DJED, split across SHEN holders."""
    liabilities = djed_ada_rate(oracle.ada_usd_rate) * pool.djed_in_circulation
    return (pool.ada_in_reserve - liabilities) / pool.shen_in_circulation


def shen_usd_rate(pool: PoolState, oracle: OracleState) -> Fraction:
    return shen_ada_rate(pool, oracle) * oracle.ada_usd_rate


def market_cap(token: Token, pool: PoolState, oracle: OracleState) -> Dict[str, Fraction]:
    """Market capitalisation of DJED or SHEN, in USD and ADA."""
    if token == Token.DJED:
        circulation = Fraction(pool.djed_in_circulation)
        return {
            "usd_value": circulation,
            "ada_value": circulation * djed_ada_rate(oracle.ada_usd_rate),
        }
    if token == Token.SHEN:
        circulation = Fraction(pool.shen_in_circulation)
        return {
            "usd_value": circulation * shen_usd_rate(pool, oracle),
            "ada_value": circulation * shen_ada_rate(pool, oracle),
        }
    raise ValueError(f"No market cap for {token.value}")


def token_price(token: Token, pool: PoolState, oracle: OracleState) -> Dict[str, Fraction]:
    """Unit price of a token in ADA and USD."""
    rate = oracle.ada_usd_rate
    if token == Token.ADA:
        return {"ada_value": Fraction(1), "usd_value": rate}
    if token == Token.DJED:
        return {"ada_value": djed_ada_rate(rate), "usd_value": Fraction(1)}
    if token == Token.SHEN:
        return {"ada_value": shen_ada_rate(pool, oracle), "usd_value": shen_usd_rate(pool, oracle)}
    raise ValueError(f"Unknown token {token}")

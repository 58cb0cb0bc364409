"""
constant_product.py - Constant-Product Liquidity Strategy

A minimal x*y=k pool used as the reference LP strategy. The strategy's
wallet IS the pool: its OHM and pair balances are the reserves, and the LP
token's outstanding supply is the negative SYSTEM_WALLET balance.

Liquidity math (integral amounts, always rounded down):
    first deposit:  liquidity = floor(sqrt(ohm * pair))
    later deposits: amounts are trimmed to the reserve ratio and
                    liquidity = min(ohm * S / R_ohm, pair * S / R_pair)
    withdrawal:     ohm = L * R_ohm / S,  pair = L * R_pair / S

Optional params: 'min_ohm' and 'min_pair' bound the amounts actually used
(build) or returned (unwind).
"""

from __future__ import annotations
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Mapping, Optional, Tuple

from ..core import (
    LedgerView, Move, Unit, SYSTEM_WALLET, UNIT_TYPE_LP_TOKEN, UnitNotRegistered,
    _freeze_state,
)
from .gateway import (
    LiquidityRequest, StrategyResult, UnwindRequest, UnwindResult, StrategyFailed,
)


def _floor(value: Decimal) -> Decimal:
    return value.to_integral_value(rounding=ROUND_FLOOR)


def create_lp_token(symbol: str, ohm_token: str, pair_token: str, pool_wallet: str) -> Unit:
    """LP share unit of a constant-product pool."""
    return Unit(
        symbol=symbol,
        name=f"{ohm_token}-{pair_token} LP",
        unit_type=UNIT_TYPE_LP_TOKEN,
        min_balance=Decimal("0"),
        decimal_places=0,
        _frozen_state=_freeze_state({
            'ohm_token': ohm_token,
            'pair_token': pair_token,
            'pool_wallet': pool_wallet,
        }),
    )


def _minimum(params: Mapping[str, Any], key: str) -> Decimal:
    value = params.get(key, 0)
    return value if isinstance(value, Decimal) else Decimal(str(value))


class ConstantProductStrategy:
    """
    Reference Strategy implementation for one OHM/pair pool.

    The LP token unit is created by the first build() if it is not yet
    registered. The pool wallet must be registered with the ledger.
    """

    def __init__(self, strategy_id: str, wallet: str, pair_token: str, lp_token: Optional[str] = None):
        if not strategy_id or not wallet or not pair_token:
            raise ValueError("strategy_id, wallet and pair_token are required")
        self.strategy_id = strategy_id
        self.wallet = wallet
        self.pair_token = pair_token
        self.lp_token = lp_token or f"LP_{strategy_id}"

    def __repr__(self):
        return f"ConstantProductStrategy({self.strategy_id}, pool={self.wallet}, lp={self.lp_token})"

    def lp_supply(self, view: LedgerView) -> Optional[Decimal]:
        """Outstanding LP supply, or None if the LP token does not exist yet."""
        try:
            return -view.get_balance(SYSTEM_WALLET, self.lp_token)
        except UnitNotRegistered:
            return None

    def reserves(self, view: LedgerView, ohm_token: str) -> Tuple[Decimal, Decimal]:
        """(ohm, pair) held by the pool."""
        return (view.get_balance(self.wallet, ohm_token),
                view.get_balance(self.wallet, self.pair_token))

    def quote_liquidity(
        self,
        ohm_amount: Decimal,
        pair_amount: Decimal,
        reserve_ohm: Decimal,
        reserve_pair: Decimal,
        supply: Decimal,
    ) -> Tuple[Decimal, Decimal, Decimal]:
        """
        Amounts used and liquidity minted for a deposit.

        Returns:
            (ohm_used, pair_used, liquidity)
        """
        if supply == 0 or reserve_ohm == 0 or reserve_pair == 0:
            return ohm_amount, pair_amount, _floor((ohm_amount * pair_amount).sqrt())

        pair_optimal = _floor(ohm_amount * reserve_pair / reserve_ohm)
        if pair_optimal <= pair_amount:
            ohm_used, pair_used = ohm_amount, pair_optimal
        else:
            ohm_used, pair_used = _floor(pair_amount * reserve_ohm / reserve_pair), pair_amount
        liquidity = min(
            _floor(ohm_used * supply / reserve_ohm),
            _floor(pair_used * supply / reserve_pair),
        )
        return ohm_used, pair_used, liquidity

    def build(self, view: LedgerView, request: LiquidityRequest) -> StrategyResult:
        """
        Add liquidity and mint LP tokens to request.lp_recipient.

        Raises:
            StrategyFailed: on a pair mismatch, slippage below the minimums
                or a deposit too small to mint liquidity
        """
        if request.pair_token != self.pair_token:
            raise StrategyFailed(f"{self.strategy_id} pools {self.pair_token}, not {request.pair_token}")
        if request.pair_amount <= 0:
            raise StrategyFailed(f"{self.strategy_id} needs a pair amount")

        supply = self.lp_supply(view)
        units_to_create: Tuple[Unit, ...] = ()
        if supply is None:
            units_to_create = (create_lp_token(self.lp_token, request.ohm_token,
                                               self.pair_token, self.wallet),)
            supply = Decimal("0")
        reserve_ohm, reserve_pair = self.reserves(view, request.ohm_token)

        ohm_used, pair_used, liquidity = self.quote_liquidity(
            request.ohm_amount, request.pair_amount, reserve_ohm, reserve_pair, supply
        )
        if ohm_used < _minimum(request.params, 'min_ohm'):
            raise StrategyFailed(f"{self.strategy_id}: ohm used {ohm_used} below min_ohm")
        if pair_used < _minimum(request.params, 'min_pair'):
            raise StrategyFailed(f"{self.strategy_id}: pair used {pair_used} below min_pair")
        if liquidity <= 0:
            raise StrategyFailed(f"{self.strategy_id}: insufficient liquidity minted")

        mint = Move(liquidity, self.lp_token, SYSTEM_WALLET, request.lp_recipient,
                    f"add_liquidity_{self.strategy_id}")
        return StrategyResult(
            moves=(mint,),
            lp_token=self.lp_token,
            liquidity=liquidity,
            ohm_leftover=request.ohm_amount - ohm_used,
            pair_leftover=request.pair_amount - pair_used,
            units_to_create=units_to_create,
        )

    def unwind(self, view: LedgerView, request: UnwindRequest) -> UnwindResult:
        """
        Burn LP tokens held by request.lp_holder and release the pro-rata reserves.

        Raises:
            StrategyFailed: on an unknown LP token or slippage below the minimums
        """
        if request.lp_token != self.lp_token:
            raise StrategyFailed(f"{self.strategy_id} does not issue {request.lp_token}")
        supply = self.lp_supply(view)
        if not supply:
            raise StrategyFailed(f"{self.strategy_id} has no liquidity")
        reserve_ohm, reserve_pair = self.reserves(view, request.ohm_token)

        ohm_out = _floor(request.liquidity * reserve_ohm / supply)
        pair_out = _floor(request.liquidity * reserve_pair / supply)
        if ohm_out < _minimum(request.params, 'min_ohm'):
            raise StrategyFailed(f"{self.strategy_id}: ohm returned {ohm_out} below min_ohm")
        if pair_out < _minimum(request.params, 'min_pair'):
            raise StrategyFailed(f"{self.strategy_id}: pair returned {pair_out} below min_pair")

        burn = Move(request.liquidity, self.lp_token, request.lp_holder, SYSTEM_WALLET,
                    f"remove_liquidity_{self.strategy_id}")
        return UnwindResult(moves=(burn,), ohm_returned=ohm_out, pair_returned=pair_out)

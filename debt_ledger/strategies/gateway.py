"""
gateway.py - Strategy Gateway for LP Borrowers

LP borrowers never receive the debt asset directly. Instead the facility
mints it into a whitelisted strategy, which pairs it with the borrower's
pair asset and returns LP tokens into facility custody:

    create_lp:
        SYSTEM_WALLET   --ohm_amount-->      strategy.wallet   (mint)
        borrower        --pair_amount-->     strategy.wallet
        <strategy moves>                                         (e.g. LP mint -> facility)
        strategy.wallet --ohm_leftover-->    SYSTEM_WALLET     (burn)
        strategy.wallet --pair_leftover-->   borrower

    remove_lp:
        <strategy moves>                                         (e.g. LP burn)
        strategy.wallet --min(ohm, debt)-->  SYSTEM_WALLET     (burn, repays debt)
        strategy.wallet --ohm excess-->      borrower
        strategy.wallet --pair_returned-->   borrower

Everything, the strategy's own moves included, executes as ONE transaction,
so a strategy failure leaves no partial state behind.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Mapping, Optional, Protocol, Tuple, runtime_checkable

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, OriginType, TransactionOrigin,
    AmountAboveBorrowerBalance, ExternalCallFailed, StrategyUnauthorized, to_amount,
)
from ..notifications import LpCreated, LpRemoved
from ..units.debt_facility import (
    BorrowerKind, load_debt_facility, require_borrower, require_positive,
    calculate_borrow, build_facility_transaction,
)
from ..units.debt_token import mint_move, burn_move
from ..valuation import RateSource, resolve_rate_source


class StrategyFailed(ExternalCallFailed):
    """A strategy could not build or unwind liquidity."""


# ============================================================================
# REQUESTS AND RESULTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class LiquidityRequest:
    """What the facility asks a strategy to build."""
    borrower: str
    ohm_token: str
    pair_token: str
    ohm_amount: Decimal
    pair_amount: Decimal
    lp_recipient: str
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class StrategyResult:
    """
    Outcome of Strategy.build().

    moves run after the facility has funded strategy.wallet; leftovers stay
    in strategy.wallet for the facility to settle.
    """
    moves: Tuple[Move, ...]
    lp_token: str
    liquidity: Decimal
    ohm_leftover: Decimal = Decimal("0")
    pair_leftover: Decimal = Decimal("0")
    units_to_create: Tuple[Unit, ...] = ()


@dataclass(frozen=True, slots=True)
class UnwindRequest:
    """What the facility asks a strategy to unwind."""
    borrower: str
    ohm_token: str
    pair_token: str
    lp_token: str
    liquidity: Decimal
    lp_holder: str
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class UnwindResult:
    """Outcome of Strategy.unwind(); returned tokens are left in strategy.wallet."""
    moves: Tuple[Move, ...]
    ohm_returned: Decimal
    pair_returned: Decimal


@runtime_checkable
class Strategy(Protocol):
    """
    Protocol for LP strategies.

    build() and unwind() are pure: they read the ledger through the view
    and describe moves, never execute them.
    """

    strategy_id: str
    wallet: str
    pair_token: str

    def build(self, view: LedgerView, request: LiquidityRequest) -> StrategyResult:
        ...

    def unwind(self, view: LedgerView, request: UnwindRequest) -> UnwindResult:
        ...


class StrategyRegistry:
    """Maps strategy identity to its handle."""

    def __init__(self):
        self._strategies: Dict[str, Strategy] = {}

    def check(self, strategy: Strategy) -> None:
        """
        Raises:
            ValueError: if another handle is registered under the same identity
        """
        existing = self._strategies.get(strategy.strategy_id)
        if existing is not None and existing is not strategy:
            raise ValueError(f"strategy {strategy.strategy_id} already registered")

    def register(self, strategy: Strategy) -> None:
        self.check(strategy)
        self._strategies[strategy.strategy_id] = strategy

    def get(self, strategy_id: str) -> Strategy:
        """
        Raises:
            StrategyUnauthorized: if no handle is registered for strategy_id
        """
        try:
            return self._strategies[strategy_id]
        except KeyError:
            raise StrategyUnauthorized(strategy_id) from None

    def __contains__(self, strategy_id: str) -> bool:
        return strategy_id in self._strategies

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._strategies))

    def __len__(self) -> int:
        return len(self._strategies)


def _resolve_strategy(state, registry: StrategyRegistry, strategy_id: str) -> Strategy:
    if strategy_id not in state.strategies:
        raise StrategyUnauthorized(strategy_id)
    return registry.get(strategy_id)


def _check_leftover(strategy_id: str, name: str, leftover: Decimal, requested: Decimal) -> Decimal:
    if leftover < 0 or leftover > requested:
        raise StrategyFailed(
            f"{strategy_id} reported {name} leftover {leftover} outside [0, {requested}]"
        )
    return leftover


# ============================================================================
# CREATE / REMOVE LP
# ============================================================================

def compute_create_lp(
    view: LedgerView,
    symbol: str,
    registry: StrategyRegistry,
    borrower: str,
    ohm_amount: Decimal,
    pair_amount: Decimal,
    strategy_id: str,
    params: Optional[Mapping[str, Any]] = None,
    rate_source: Optional[RateSource] = None,
) -> PendingTransaction:
    """
    Borrow ohm_amount into a whitelisted strategy and record the LP it returns.

    Net debt recorded is ohm_amount - ohm_leftover; the limit checks use the
    full ohm_amount.

    Raises:
        NotBorrower: if borrower is not an active LP borrower
        StrategyUnauthorized: if strategy_id is not whitelisted or has no handle
        InvalidNumber: if ohm_amount is zero
        AboveBorrowersDebtLimit, OHMAmountMoreThanAvailableLoan, AboveGlobalDebtLimit
        StrategyFailed: if the strategy fails or reports impossible leftovers
    """
    terms, state = load_debt_facility(view, symbol)
    record = require_borrower(state, borrower, BorrowerKind.LP)
    strategy = _resolve_strategy(state, registry, strategy_id)
    pair_token = strategy.pair_token
    ohm_amount = require_positive(ohm_amount)
    pair_amount = to_amount(pair_amount)
    rate = resolve_rate_source(terms.collateral_token, rate_source).exchange_rate(view)
    calculate_borrow(state, record, ohm_amount, rate)

    request = LiquidityRequest(
        borrower=borrower,
        ohm_token=terms.debt_token,
        pair_token=pair_token,
        ohm_amount=ohm_amount,
        pair_amount=pair_amount,
        lp_recipient=terms.facility_wallet,
        params=dict(params or {}),
    )
    result = strategy.build(view, request)
    ohm_leftover = _check_leftover(strategy_id, "ohm", result.ohm_leftover, ohm_amount)
    pair_leftover = _check_leftover(strategy_id, "pair", result.pair_leftover, pair_amount)
    liquidity = to_amount(result.liquidity)
    if liquidity == 0:
        raise StrategyFailed(f"{strategy_id} returned no liquidity")

    contract = f"create_lp_{symbol}"
    moves: List[Move] = [mint_move(terms.debt_token, strategy.wallet, ohm_amount, contract)]
    if pair_amount > 0:
        moves.append(Move(pair_amount, pair_token, borrower, strategy.wallet, contract))
    moves.extend(result.moves)
    if ohm_leftover > 0:
        moves.append(burn_move(terms.debt_token, strategy.wallet, ohm_leftover, contract))
    if pair_leftover > 0:
        moves.append(Move(pair_leftover, pair_token, strategy.wallet, borrower, contract))

    borrowed = ohm_amount - ohm_leftover
    positions = dict(record.lp_positions)
    positions[result.lp_token] = positions.get(result.lp_token, Decimal("0")) + liquidity
    new_record = replace(record, debt=record.debt + borrowed, lp_positions=positions)
    new_state = state.with_borrower(
        borrower, new_record,
        total_outstanding_debt=state.total_outstanding_debt + borrowed,
    )
    return build_facility_transaction(
        view, symbol, terms, state, new_state, moves,
        LpCreated(borrower, strategy_id, result.lp_token, liquidity,
                  borrowed, ohm_leftover, pair_leftover),
        TransactionOrigin(OriginType.STRATEGY, borrower, symbol, "CREATE_LP"),
        result.units_to_create,
    )


def compute_remove_lp(
    view: LedgerView,
    symbol: str,
    registry: StrategyRegistry,
    borrower: str,
    liquidity: Decimal,
    strategy_id: str,
    lp_token: str,
    params: Optional[Mapping[str, Any]] = None,
) -> PendingTransaction:
    """
    Unwind liquidity through a strategy and repay debt with the returned OHM.

    Raises:
        NotBorrower: if borrower is not an active LP borrower
        StrategyUnauthorized: if strategy_id is not whitelisted or has no handle
        InvalidNumber: if liquidity is zero
        AmountAboveBorrowerBalance: if liquidity exceeds the recorded position
    """
    terms, state = load_debt_facility(view, symbol)
    record = require_borrower(state, borrower, BorrowerKind.LP)
    strategy = _resolve_strategy(state, registry, strategy_id)
    pair_token = strategy.pair_token
    liquidity = require_positive(liquidity)
    held = record.lp_positions.get(lp_token, Decimal("0"))
    if liquidity > held:
        raise AmountAboveBorrowerBalance(liquidity)

    request = UnwindRequest(
        borrower=borrower,
        ohm_token=terms.debt_token,
        pair_token=pair_token,
        lp_token=lp_token,
        liquidity=liquidity,
        lp_holder=terms.facility_wallet,
        params=dict(params or {}),
    )
    result = strategy.unwind(view, request)
    ohm_returned = to_amount(result.ohm_returned)
    pair_returned = to_amount(result.pair_returned)

    repaid = min(ohm_returned, record.debt)
    to_borrower = ohm_returned - repaid
    contract = f"remove_lp_{symbol}"
    moves: List[Move] = list(result.moves)
    if repaid > 0:
        moves.append(burn_move(terms.debt_token, strategy.wallet, repaid, contract))
    if to_borrower > 0:
        moves.append(Move(to_borrower, terms.debt_token, strategy.wallet, borrower, contract))
    if pair_returned > 0:
        moves.append(Move(pair_returned, pair_token, strategy.wallet, borrower, contract))

    positions = dict(record.lp_positions)
    positions[lp_token] = held - liquidity
    if positions[lp_token] == 0:
        del positions[lp_token]
    new_record = replace(record, debt=record.debt - repaid, lp_positions=positions)
    new_state = state.with_borrower(
        borrower, new_record,
        total_outstanding_debt=state.total_outstanding_debt - repaid,
    )
    return build_facility_transaction(
        view, symbol, terms, state, new_state, moves,
        LpRemoved(borrower, strategy_id, lp_token, liquidity, repaid, to_borrower, pair_returned),
        TransactionOrigin(OriginType.STRATEGY, borrower, symbol, "REMOVE_LP"),
    )


"""
rebasing_token.py - Rebasing Collateral Token

A rebasing token (sOHM-style) whose holders' redeemable balances grow at
every rebase without any transfer.

=== ACCOUNTING MODEL ===

Ledger balances of this unit are ACCOUNTING UNITS, which never rebase:

    redeemable_balance = floor(units * index)

A rebase is a pure state change raising the unit's 'index'. No balance is
touched, so a rebase can never break conservation and can never round away
a holder's value. The index is monotonic non-decreasing.

Transfers are denominated in redeemable tokens. The sender is debited
ceil(amount / index) units, so a transfer never moves more value than the
sender owns.

=== PURE FUNCTIONS ===

    balance_of(view, wallet, symbol)                     -> Decimal
    compute_rebase(view, symbol, new_index)              -> PendingTransaction
    compute_rebase_by_growth(view, symbol, growth)       -> PendingTransaction
    compute_token_transfer(view, symbol, src, dst, amt)  -> PendingTransaction
"""

from __future__ import annotations
from decimal import Decimal, ROUND_UP

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType, UNIT_TYPE_REBASING_TOKEN,
    build_transaction, to_amount, _freeze_state,
)
from ..valuation import UNIT_DECIMAL_PLACES, units_to_redeemable, redeemable_to_units


def create_rebasing_token(
    symbol: str,
    name: str,
    index: Decimal = Decimal("1"),
) -> Unit:
    """
    Create a rebasing token unit.

    Args:
        symbol: Token symbol (e.g., "sOHM")
        name: Human-readable name
        index: Initial exchange rate of one accounting unit (default 1)

    Returns:
        Unit with 18-decimal accounting-unit balances and a non-negative
        min_balance.

    Raises:
        ValueError: if index is not positive
    """
    if not isinstance(index, Decimal):
        index = Decimal(str(index))
    if index <= 0:
        raise ValueError(f"index must be positive, got {index}")

    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_REBASING_TOKEN,
        min_balance=Decimal("0"),
        decimal_places=UNIT_DECIMAL_PLACES,
        _frozen_state=_freeze_state({
            'index': index,
            'rebase_count': 0,
            'last_rebase': None,
        }),
    )


def get_index(view: LedgerView, symbol: str) -> Decimal:
    """Current exchange rate of one accounting unit."""
    index = view.get_unit_state(symbol)['index']
    return index if isinstance(index, Decimal) else Decimal(str(index))


def balance_of(view: LedgerView, wallet: str, symbol: str) -> Decimal:
    """Redeemable balance of a wallet, rounded down."""
    return units_to_redeemable(view.get_balance(wallet, symbol), get_index(view, symbol))


def compute_rebase(view: LedgerView, symbol: str, new_index: Decimal) -> PendingTransaction:
    """
    Raise the token's index to new_index.

    Raises:
        ValueError: if new_index is not positive or below the current index
    """
    if not isinstance(new_index, Decimal):
        new_index = Decimal(str(new_index))
    if new_index <= 0:
        raise ValueError(f"index must be positive, got {new_index}")

    state = view.get_unit_state(symbol)
    current = state['index']
    if new_index < current:
        raise ValueError(f"rebase cannot lower index of {symbol}: {new_index} < {current}")

    new_state = {
        **state,
        'index': new_index,
        'rebase_count': state.get('rebase_count', 0) + 1,
        'last_rebase': view.current_time,
    }
    origin = TransactionOrigin(OriginType.SYSTEM, "rebase", symbol, "REBASE")
    return build_transaction(
        view, [], [UnitStateChange(symbol, state, new_state)], origin=origin
    )


def compute_rebase_by_growth(view: LedgerView, symbol: str, growth: Decimal) -> PendingTransaction:
    """
    Rebase by a relative growth rate: index * (1 + growth).

    Example:
        # 0.05% epoch reward
        ledger.execute(compute_rebase_by_growth(ledger, "sOHM", Decimal("0.0005")))
    """
    if not isinstance(growth, Decimal):
        growth = Decimal(str(growth))
    if growth < 0:
        raise ValueError(f"growth must be non-negative, got {growth}")
    return compute_rebase(view, symbol, get_index(view, symbol) * (Decimal("1") + growth))


def compute_token_transfer(
    view: LedgerView,
    symbol: str,
    source: str,
    dest: str,
    amount: Decimal,
) -> PendingTransaction:
    """
    Transfer a redeemable amount between wallets.

    The sender is debited the amount's accounting units rounded up. If the
    sender does not hold them, the ledger rejects the transaction.
    """
    amount = to_amount(amount)
    if amount == 0:
        raise ValueError("transfer amount must be positive")
    units = redeemable_to_units(amount, get_index(view, symbol), ROUND_UP)
    move = Move(units, symbol, source, dest, f"transfer_{symbol}")
    origin = TransactionOrigin(OriginType.USER_ACTION, source, symbol, "TRANSFER")
    return build_transaction(view, [move], origin=origin)

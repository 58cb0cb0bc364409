"""
debt_token.py - Debt Asset with Mint Authority

The debt asset (OHM-style) is issued and retired through SYSTEM_WALLET:

    mint:  SYSTEM_WALLET -> recipient
    burn:  holder        -> SYSTEM_WALLET

so outstanding supply is always the negative of the system wallet's balance.

The mint authority enforces its own ceiling on how much may be outstanding,
independent of any facility limit. The ceiling lives in the unit's state and
is checked by mint_ceiling_rule, which runs during ledger validation: a mint
above the ceiling rejects the whole transaction it belongs to.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Optional

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType, TransferRuleViolation,
    SYSTEM_WALLET, UNIT_TYPE_DEBT_TOKEN,
    build_transaction, to_amount, _freeze_state,
)


def outstanding_supply(view: LedgerView, symbol: str) -> Decimal:
    """Amount minted and not yet burned."""
    return -view.get_balance(SYSTEM_WALLET, symbol)


def mint_ceiling_rule(view: LedgerView, move: Move) -> None:
    """
    Reject mints that would push outstanding supply above the mint ceiling.

    Only moves out of SYSTEM_WALLET are mints. A missing ceiling means unlimited.

    Raises:
        TransferRuleViolation: if the mint exceeds the remaining capacity
    """
    if move.source != SYSTEM_WALLET:
        return
    ceiling = view.get_unit_state(move.unit_symbol).get('mint_ceiling')
    if ceiling is None:
        return
    outstanding = outstanding_supply(view, move.unit_symbol)
    if outstanding + move.quantity > ceiling:
        raise TransferRuleViolation(
            f"mint of {move.quantity} {move.unit_symbol} exceeds ceiling "
            f"{ceiling} (outstanding {outstanding})"
        )


def create_debt_token(
    symbol: str,
    name: str,
    decimal_places: int = 0,
    mint_ceiling: Optional[Decimal] = None,
) -> Unit:
    """
    Create the debt asset unit.

    Args:
        symbol: Token symbol (e.g., "OHM")
        name: Human-readable name
        decimal_places: Precision of balances; amounts are in smallest units, so 0
        mint_ceiling: Maximum outstanding supply the mint authority allows (None = unlimited)
    """
    if mint_ceiling is not None:
        mint_ceiling = to_amount(mint_ceiling)
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_DEBT_TOKEN,
        min_balance=Decimal("0"),
        decimal_places=decimal_places,
        transfer_rule=mint_ceiling_rule,
        _frozen_state=_freeze_state({'mint_ceiling': mint_ceiling}),
    )


def compute_set_mint_ceiling(
    view: LedgerView,
    symbol: str,
    ceiling: Optional[Decimal],
) -> PendingTransaction:
    """
    Change the mint authority's ceiling.

    A ceiling below the current outstanding supply is allowed: it only
    blocks further mints.
    """
    if ceiling is not None:
        ceiling = to_amount(ceiling)
    state = view.get_unit_state(symbol)
    new_state = {**state, 'mint_ceiling': ceiling}
    origin = TransactionOrigin(OriginType.SYSTEM, "mint_authority", symbol, "SET_MINT_CEILING")
    return build_transaction(view, [], [UnitStateChange(symbol, state, new_state)], origin=origin)


def mint_move(symbol: str, recipient: str, amount: Decimal, contract_id: str) -> Move:
    """Move issuing amount to recipient."""
    return Move(amount, symbol, SYSTEM_WALLET, recipient, contract_id)


def burn_move(symbol: str, holder: str, amount: Decimal, contract_id: str) -> Move:
    """Move retiring amount held by holder."""
    return Move(amount, symbol, holder, SYSTEM_WALLET, contract_id)


def compute_mint(view: LedgerView, symbol: str, recipient: str, amount: Decimal) -> PendingTransaction:
    """Mint amount to recipient, subject to the ceiling."""
    amount = to_amount(amount)
    origin = TransactionOrigin(OriginType.SYSTEM, "mint_authority", symbol, "MINT")
    return build_transaction(view, [mint_move(symbol, recipient, amount, f"mint_{symbol}")], origin=origin)


def compute_burn(view: LedgerView, symbol: str, holder: str, amount: Decimal) -> PendingTransaction:
    """Burn amount from holder."""
    amount = to_amount(amount)
    origin = TransactionOrigin(OriginType.USER_ACTION, holder, symbol, "BURN")
    return build_transaction(view, [burn_move(symbol, holder, amount, f"burn_{symbol}")], origin=origin)

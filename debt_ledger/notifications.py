"""
notifications.py - Records published by the debt facility

Every successful facility operation attaches one notification to its
PendingTransaction. The Ledger publishes it to subscribers only after the
transaction applies, so observers never see an operation that was rolled back.

Field order of each record is a compatibility contract with observers:
as_tuple() returns the fields in declaration order.
"""

from __future__ import annotations
from dataclasses import dataclass, astuple
from decimal import Decimal
from typing import Tuple, Any


class _Notification:
    """Shared helpers for notification records."""

    __slots__ = ()

    @property
    def name(self) -> str:
        return type(self).__name__

    def as_tuple(self) -> Tuple[Any, ...]:
        return astuple(self)


# ============================================================================
# GOVERNANCE
# ============================================================================

@dataclass(frozen=True, slots=True)
class GlobalLimitChanged(_Notification):
    limit: Decimal


@dataclass(frozen=True, slots=True)
class BorrowerAllowed(_Notification):
    borrower: str
    is_non_lp: bool
    is_lp: bool


@dataclass(frozen=True, slots=True)
class BorrowerDebtLimitSet(_Notification):
    borrower: str
    limit: Decimal


@dataclass(frozen=True, slots=True)
class BorrowerRevoked(_Notification):
    borrower: str
    is_non_lp: bool
    is_lp: bool


@dataclass(frozen=True, slots=True)
class StrategyWhitelisted(_Notification):
    strategy: str


@dataclass(frozen=True, slots=True)
class StrategyRemoved(_Notification):
    strategy: str


# ============================================================================
# BORROWER SELF-SERVICE
# ============================================================================

@dataclass(frozen=True, slots=True)
class BorrowerDeposit(_Notification):
    borrower: str
    asset: str
    amount: Decimal


@dataclass(frozen=True, slots=True)
class Borrowed(_Notification):
    borrower: str
    amount: Decimal
    new_debt: Decimal
    new_global_debt: Decimal


@dataclass(frozen=True, slots=True)
class Withdrawal(_Notification):
    """remaining_collateral is the redeemable collateral left after the withdrawal."""
    borrower: str
    asset: str
    to: str
    amount: Decimal
    remaining_collateral: Decimal


@dataclass(frozen=True, slots=True)
class DebtPaidWithCollateral(_Notification):
    borrower: str
    amount: Decimal
    remaining_collateral: Decimal
    remaining_debt: Decimal
    remaining_global_debt: Decimal


@dataclass(frozen=True, slots=True)
class DebtPaidWithCollateralAndWithdrawTheRest(_Notification):
    borrower: str
    amount: Decimal
    remaining_collateral: Decimal
    remaining_debt: Decimal
    remaining_global_debt: Decimal
    amount_withdrawn: Decimal


@dataclass(frozen=True, slots=True)
class DebtPaidWithOHM(_Notification):
    borrower: str
    amount: Decimal
    remaining_debt: Decimal
    remaining_global_debt: Decimal


# ============================================================================
# RISK UNWIND
# ============================================================================

@dataclass(frozen=True, slots=True)
class ForceRepay(_Notification):
    borrower: str
    amount: Decimal
    remaining_collateral: Decimal
    remaining_debt: Decimal
    remaining_global_debt: Decimal
    amount_returned: Decimal


@dataclass(frozen=True, slots=True)
class Seize(_Notification):
    borrower: str
    amount: Decimal
    remaining_collateral: Decimal
    remaining_debt: Decimal
    remaining_global_debt: Decimal
    amount_confiscated: Decimal


# ============================================================================
# LIQUIDITY STRATEGIES
# ============================================================================

@dataclass(frozen=True, slots=True)
class LpCreated(_Notification):
    borrower: str
    strategy: str
    lp_token: str
    liquidity: Decimal
    ohm_borrowed: Decimal
    ohm_leftover: Decimal
    pair_leftover: Decimal


@dataclass(frozen=True, slots=True)
class LpRemoved(_Notification):
    borrower: str
    strategy: str
    lp_token: str
    liquidity: Decimal
    ohm_repaid: Decimal
    ohm_to_borrower: Decimal
    pair_returned: Decimal

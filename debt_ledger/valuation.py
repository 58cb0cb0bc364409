"""
valuation.py - Collateral Valuation Adapter

Collateral is held in the rebasing token's non-rebasing accounting units.
The redeemable amount of those units grows as the token's exchange rate
(its rebase index) rises. This module converts between the two and supplies
exchange rates to the facility.

Rounding always favors the facility:
    units -> redeemable:  floor(units * rate)              (never overstate value)
    redeemable -> units:  ROUND_UP when debiting collateral
                          ROUND_DOWN when crediting collateral

Classes:
- RateSource: Protocol for exchange-rate providers
- TokenIndexRateSource: Reads the rebasing token's index from the ledger
- StaticRateSource: Fixed, manually updated rate
- MonotonicRateSource: Rejects a rate lower than one already observed
"""

from __future__ import annotations
from decimal import Decimal, ROUND_UP, ROUND_FLOOR
from typing import Optional, Protocol, runtime_checkable

from .core import LedgerView, ExternalCallFailed


# Accounting units carry 18 decimal places.
UNIT_DECIMAL_PLACES = 18
UNIT_QUANTUM = Decimal(10) ** -UNIT_DECIMAL_PLACES


class RateDecreased(ExternalCallFailed):
    """The collateral exchange rate moved backwards."""

    def __init__(self, previous: Decimal, current: Decimal):
        self.previous = previous
        self.current = current
        super().__init__(f"exchange rate decreased from {previous} to {current}")


# ============================================================================
# PURE CONVERSIONS
# ============================================================================

def units_to_redeemable(units: Decimal, rate: Decimal) -> Decimal:
    """
    Redeemable token amount for a quantity of accounting units.

    Returns an integral Decimal, rounded down.

    Example:
        units_to_redeemable(Decimal("1000"), Decimal("1.0005")) == Decimal("1000")
    """
    if units <= 0:
        return Decimal("0")
    return (units * rate).to_integral_value(rounding=ROUND_FLOOR)


def redeemable_to_units(amount: Decimal, rate: Decimal, rounding: str = ROUND_UP) -> Decimal:
    """
    Accounting units equivalent to a redeemable token amount.

    Args:
        amount: Redeemable amount (smallest token units)
        rate: Current exchange rate (redeemable per accounting unit)
        rounding: ROUND_UP when the result is debited from a holder,
                  ROUND_DOWN when it is credited

    Raises:
        ValueError: if rate is not positive
    """
    if rate <= 0:
        raise ValueError(f"exchange rate must be positive, got {rate}")
    if amount <= 0:
        return Decimal("0")
    return (amount / rate).quantize(UNIT_QUANTUM, rounding=rounding)


def calculate_withdrawable(units: Decimal, debt: Decimal, rate: Decimal) -> Decimal:
    """
    Largest amount that can leave while the rest still covers debt.

    The units backing debt are rounded up and only the free units are
    valued, so withdrawing the result never trips the post-debit check.

    Example:
        calculate_withdrawable(Decimal("1000"), Decimal("400"), Decimal("1.1")) == Decimal("699")
    """
    free_units = units - redeemable_to_units(debt, rate, ROUND_UP)
    return units_to_redeemable(free_units, rate)


# ============================================================================
# RATE SOURCES
# ============================================================================

@runtime_checkable
class RateSource(Protocol):
    """
    Protocol for collateral exchange-rate providers.

    exchange_rate() returns the redeemable amount of one accounting unit.
    Implementations read the ledger through the view only.
    """

    def exchange_rate(self, view: LedgerView) -> Decimal:
        ...


class TokenIndexRateSource:
    """Exchange rate taken from the rebasing token unit's 'index' state."""

    def __init__(self, token_symbol: str):
        self.token_symbol = token_symbol

    def exchange_rate(self, view: LedgerView) -> Decimal:
        state = view.get_unit_state(self.token_symbol)
        index = state.get('index')
        if index is None:
            raise ExternalCallFailed(f"{self.token_symbol} has no exchange rate")
        return index if isinstance(index, Decimal) else Decimal(str(index))

    def __repr__(self):
        return f"TokenIndexRateSource({self.token_symbol})"


class StaticRateSource:
    """
    Exchange rate that only changes through update_rate().

    Useful for simulations where the rebase schedule is driven externally.
    """

    def __init__(self, rate: Decimal = Decimal("1")):
        if not isinstance(rate, Decimal):
            rate = Decimal(str(rate))
        if rate <= 0:
            raise ValueError(f"exchange rate must be positive, got {rate}")
        self.rate = rate

    def exchange_rate(self, view: LedgerView) -> Decimal:
        """Return the static rate (view is ignored)."""
        return self.rate

    def update_rate(self, rate: Decimal) -> None:
        if not isinstance(rate, Decimal):
            rate = Decimal(str(rate))
        if rate <= 0:
            raise ValueError(f"exchange rate must be positive, got {rate}")
        self.rate = rate

    def __repr__(self):
        return f"StaticRateSource({self.rate})"


class MonotonicRateSource:
    """
    Wrapper enforcing a non-decreasing exchange rate.

    Remembers the highest rate returned so far and raises RateDecreased if
    the wrapped source reports less.
    """

    def __init__(self, inner: RateSource):
        self.inner = inner
        self.high_water: Optional[Decimal] = None

    def exchange_rate(self, view: LedgerView) -> Decimal:
        rate = self.inner.exchange_rate(view)
        if rate <= 0:
            raise ExternalCallFailed(f"exchange rate must be positive, got {rate}")
        if self.high_water is not None and rate < self.high_water:
            raise RateDecreased(self.high_water, rate)
        self.high_water = rate
        return rate

    def __repr__(self):
        return f"MonotonicRateSource({self.inner!r}, high_water={self.high_water})"


def resolve_rate_source(token_symbol: str, rate_source: Optional[RateSource] = None) -> RateSource:
    """Return rate_source, or the token-index source for token_symbol."""
    if rate_source is not None:
        return rate_source
    return TokenIndexRateSource(token_symbol)

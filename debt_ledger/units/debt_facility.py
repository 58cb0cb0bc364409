"""
debt_facility.py - Collateralized Debt Facility Unit

This module implements the borrower registry and the debt ledger of an
IncurDebt-style facility using a pure function architecture with explicit
inputs. Governance allow-lists borrowers, borrowers deposit rebasing
collateral and draw the debt asset under a per-borrower limit and a global
limit, and governance can force-repay or seize a position.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - FacilityTerms: configuration (collateral token, debt token, custody wallet)
   - FacilityState: global limit, total debt, borrower registry, strategy whitelist
   - BorrowerRecord: one borrower's kind, limit, debt, collateral and LP positions

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take records, limits and the exchange rate explicitly
   - No LedgerView, no hidden state

3. ADAPTER FUNCTIONS (load_debt_facility / to_state_dict):
   - The ONLY place that converts between unit state and dataclasses

4. OPERATIONS (compute_*):
   - Take (view, symbol, ...) and return a PendingTransaction holding the
     token moves, the facility state change and one notification
   - Raise a FacilityError subclass when a precondition fails; nothing is
     built, so nothing can be half-applied

Key Formulas:
    redeemable          = floor(collateral_units * rate)
    available_to_borrow = max(0, redeemable - debt)
    collateral payment  = min(debt, redeemable)
    units consumed      = min(collateral_units, ceil(payment / rate))

Invariants (checked by verify_facility_invariants):
    debt <= limit <= global_debt_limit            for every borrower
    total_outstanding_debt == sum(debt) <= global_debt_limit
    redeemable(collateral_units) >= debt           for every borrower
    sum(collateral_units) <= custodied collateral units
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from decimal import Decimal, ROUND_UP
from enum import Enum
from typing import Dict, Any, List, Optional, Tuple, Mapping

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType, SYSTEM_WALLET, UNIT_TYPE_DEBT_FACILITY,
    NotBorrower, AlreadyBorrower, BothParamsCannotBeTrue, AboveGlobalDebtLimit,
    AboveBorrowersDebtLimit, LimitBelowOutstandingDebt, OHMAmountMoreThanAvailableLoan,
    InvalidNumber, AmountAboveBorrowerBalance, BorrowerHasNoOutstandingDebt,
    BorrowerStillHasOutstandingDebt, StrategyUnauthorized, ExternalCallFailed,
    build_transaction, to_amount, _freeze_state,
)
from ..notifications import (
    GlobalLimitChanged, BorrowerAllowed, BorrowerDebtLimitSet, BorrowerRevoked,
    StrategyWhitelisted, StrategyRemoved, BorrowerDeposit, Borrowed, Withdrawal,
    DebtPaidWithCollateral, DebtPaidWithCollateralAndWithdrawTheRest, DebtPaidWithOHM,
    ForceRepay, Seize,
)
from ..valuation import (
    RateSource, resolve_rate_source, units_to_redeemable, redeemable_to_units,
    calculate_withdrawable,
)
from .debt_token import mint_move, burn_move


ZERO = Decimal("0")


# ============================================================================
# ENUMS
# ============================================================================

class BorrowerKind(str, Enum):
    """Which debt-drawing operation a borrower may use."""
    INACTIVE = "inactive"   # Revoked or never allowed
    NON_LP = "non_lp"       # May borrow()
    LP = "lp"               # May create_lp()

    @classmethod
    def from_flags(cls, is_non_lp: bool, is_lp: bool) -> BorrowerKind:
        """
        Map the (is_non_lp, is_lp) flag pair to a kind.

        Raises:
            BothParamsCannotBeTrue: if both flags are set
        """
        if is_non_lp and is_lp:
            raise BothParamsCannotBeTrue()
        if is_non_lp:
            return cls.NON_LP
        if is_lp:
            return cls.LP
        return cls.INACTIVE


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class BorrowerRecord:
    """
    Immutable snapshot of one borrower.

    collateral_units is denominated in the collateral token's non-rebasing
    accounting units, so it survives rebases unchanged.
    """
    kind: BorrowerKind = BorrowerKind.INACTIVE
    limit: Decimal = ZERO
    debt: Decimal = ZERO
    collateral_units: Decimal = ZERO
    lp_positions: Mapping[str, Decimal] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.kind is not BorrowerKind.INACTIVE

    @property
    def is_lp_borrower(self) -> bool:
        return self.kind is BorrowerKind.LP

    @property
    def is_non_lp_borrower(self) -> bool:
        return self.kind is BorrowerKind.NON_LP


@dataclass(frozen=True, slots=True)
class FacilityTerms:
    """Configuration fixed when the facility is created."""
    collateral_token: str
    debt_token: str
    facility_wallet: str


@dataclass(frozen=True, slots=True)
class FacilityState:
    """
    Immutable snapshot of the facility aggregate.

    Each operation produces a NEW instance; sequence increases by one per
    applied operation.
    """
    global_debt_limit: Decimal
    total_outstanding_debt: Decimal
    borrowers: Mapping[str, BorrowerRecord]
    strategies: Tuple[str, ...]
    sequence: int = 0

    def borrower(self, identity: str) -> BorrowerRecord:
        """Record for identity; an inactive empty record if unknown."""
        return self.borrowers.get(identity, BorrowerRecord())

    def with_borrower(self, identity: str, record: BorrowerRecord, **changes) -> FacilityState:
        """Copy with identity's record replaced (and any other fields changed)."""
        borrowers = dict(self.borrowers)
        borrowers[identity] = record
        return replace(self, borrowers=borrowers, **changes)


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def _dec(value: Any) -> Decimal:
    if value is None:
        return ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))


def load_debt_facility(view: LedgerView, symbol: str) -> Tuple[FacilityTerms, FacilityState]:
    """
    Load a debt facility from ledger state as typed frozen dataclasses.

    Example:
        terms, state = load_debt_facility(view, "INCUR_DEBT")
        record = state.borrower("alice")
    """
    raw = view.get_unit_state(symbol)

    terms = FacilityTerms(
        collateral_token=raw['collateral_token'],
        debt_token=raw['debt_token'],
        facility_wallet=raw['facility_wallet'],
    )

    borrowers = {}
    for identity, rec in raw.get('borrowers', {}).items():
        borrowers[identity] = BorrowerRecord(
            kind=BorrowerKind(rec.get('kind', BorrowerKind.INACTIVE.value)),
            limit=_dec(rec.get('limit')),
            debt=_dec(rec.get('debt')),
            collateral_units=_dec(rec.get('collateral_units')),
            lp_positions={k: _dec(v) for k, v in rec.get('lp_positions', {}).items()},
        )

    state = FacilityState(
        global_debt_limit=_dec(raw.get('global_debt_limit')),
        total_outstanding_debt=_dec(raw.get('total_outstanding_debt')),
        borrowers=borrowers,
        strategies=tuple(raw.get('strategies', ())),
        sequence=raw.get('sequence', 0),
    )
    return terms, state


def to_state_dict(terms: FacilityTerms, state: FacilityState) -> Dict[str, Any]:
    """Inverse of load_debt_facility(), used to build the facility state change."""
    return {
        'collateral_token': terms.collateral_token,
        'debt_token': terms.debt_token,
        'facility_wallet': terms.facility_wallet,
        'global_debt_limit': state.global_debt_limit,
        'total_outstanding_debt': state.total_outstanding_debt,
        'borrowers': {
            identity: {
                'kind': rec.kind.value,
                'limit': rec.limit,
                'debt': rec.debt,
                'collateral_units': rec.collateral_units,
                'lp_positions': {k: v for k, v in rec.lp_positions.items() if v > 0},
            }
            for identity, rec in state.borrowers.items()
        },
        'strategies': sorted(state.strategies),
        'sequence': state.sequence,
    }


def create_debt_facility(
    symbol: str,
    name: str,
    collateral_token: str,
    debt_token: str,
    facility_wallet: str,
    global_debt_limit: Decimal = ZERO,
) -> Unit:
    """
    Create a debt facility unit.

    The unit is a pure state holder: nobody holds a balance of it. Collateral
    and LP tokens sit in facility_wallet, which must be registered with the
    ledger.

    Args:
        symbol: Facility identifier (e.g., "INCUR_DEBT")
        name: Human-readable name
        collateral_token: Symbol of the rebasing collateral unit
        debt_token: Symbol of the debt asset unit
        facility_wallet: Wallet custodying collateral
        global_debt_limit: Initial global debt limit

    Raises:
        ValueError: if a symbol or wallet is empty, or the tokens coincide
    """
    if not collateral_token or not debt_token or not facility_wallet:
        raise ValueError("collateral_token, debt_token and facility_wallet are required")
    if collateral_token == debt_token:
        raise ValueError("collateral and debt tokens must differ")
    if facility_wallet == SYSTEM_WALLET:
        raise ValueError("facility_wallet cannot be the system wallet")

    terms = FacilityTerms(collateral_token, debt_token, facility_wallet)
    state = FacilityState(
        global_debt_limit=to_amount(global_debt_limit),
        total_outstanding_debt=ZERO,
        borrowers={},
        strategies=(),
    )
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_DEBT_FACILITY,
        min_balance=ZERO,
        max_balance=ZERO,
        _frozen_state=_freeze_state(to_state_dict(terms, state)),
    )


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_redeemable_collateral(record: BorrowerRecord, rate: Decimal) -> Decimal:
    """Redeemable value of a borrower's collateral at rate."""
    return units_to_redeemable(record.collateral_units, rate)


def calculate_available_to_borrow(record: BorrowerRecord, rate: Decimal) -> Decimal:
    """
    Debt a borrower can still draw against its collateral.

    PURE FUNCTION. Capacity grows with rate even without a deposit, so this
    must always be recomputed from the current rate.
    """
    return max(Decimal("0"), calculate_redeemable_collateral(record, rate) - record.debt)


def calculate_withdrawable_collateral(record: BorrowerRecord, rate: Decimal) -> Decimal:
    """
    Collateral a borrower can withdraw right now.

    Can be below calculate_available_to_borrow at a fractional rate, since
    the units kept back for debt are rounded up.
    """
    return calculate_withdrawable(record.collateral_units, record.debt, rate)


def calculate_borrow(
    state: FacilityState,
    record: BorrowerRecord,
    amount: Decimal,
    rate: Decimal,
) -> Tuple[Decimal, Decimal]:
    """
    Validate drawing amount of new debt and return (new_debt, new_total).

    Checks, in order: borrower limit, collateral capacity, global limit.

    Raises:
        AboveBorrowersDebtLimit: new_debt > limit
        OHMAmountMoreThanAvailableLoan: amount > available_to_borrow
        AboveGlobalDebtLimit: new_total > global_debt_limit
    """
    new_debt = record.debt + amount
    if new_debt > record.limit:
        raise AboveBorrowersDebtLimit(new_debt)
    if amount > calculate_available_to_borrow(record, rate):
        raise OHMAmountMoreThanAvailableLoan(amount)
    new_total = state.total_outstanding_debt + amount
    if new_total > state.global_debt_limit:
        raise AboveGlobalDebtLimit(new_total)
    return new_debt, new_total


def calculate_collateral_payment(
    record: BorrowerRecord,
    rate: Decimal,
    close_fully: bool = False,
) -> Tuple[Decimal, Decimal]:
    """
    Debt repaid from collateral and the accounting units it consumes.

    PURE FUNCTION. Collateral pays debt 1:1 in debt-asset terms. Units are
    rounded up so the facility is never short, and capped at what the
    borrower holds.

    Args:
        record: Borrower snapshot
        rate: Current exchange rate
        close_fully: Treat the whole debt as paid (force repay and seize)

    Returns:
        (payment, units_consumed)
    """
    redeemable = calculate_redeemable_collateral(record, rate)
    payment = record.debt if close_fully else min(record.debt, redeemable)
    units = min(record.collateral_units, redeemable_to_units(payment, rate, ROUND_UP))
    return payment, units


def calculate_invariant_violations(
    state: FacilityState,
    rate: Decimal,
    custodied_units: Optional[Decimal] = None,
) -> List[str]:
    """
    List every facility invariant that does not hold.

    PURE FUNCTION. An empty list means the facility is consistent.
    """
    violations = []
    total = ZERO
    total_units = ZERO
    for identity, rec in sorted(state.borrowers.items()):
        total += rec.debt
        total_units += rec.collateral_units
        if rec.debt > rec.limit:
            violations.append(f"{identity}: debt {rec.debt} > limit {rec.limit}")
        if rec.limit > state.global_debt_limit:
            violations.append(f"{identity}: limit {rec.limit} > global limit {state.global_debt_limit}")
        if rec.debt < 0 or rec.collateral_units < 0:
            violations.append(f"{identity}: negative debt or collateral")
        redeemable = units_to_redeemable(rec.collateral_units, rate)
        if redeemable < rec.debt:
            violations.append(f"{identity}: collateral {redeemable} < debt {rec.debt}")
        if not rec.is_active and rec.debt != 0:
            violations.append(f"{identity}: inactive borrower holds debt {rec.debt}")
    if total != state.total_outstanding_debt:
        violations.append(f"total debt {state.total_outstanding_debt} != sum of debts {total}")
    if state.total_outstanding_debt > state.global_debt_limit:
        violations.append(
            f"total debt {state.total_outstanding_debt} > global limit {state.global_debt_limit}"
        )
    if custodied_units is not None and total_units > custodied_units:
        violations.append(f"collateral owed {total_units} > custodied {custodied_units}")
    return violations


# ============================================================================
# HELPERS
# ============================================================================

def require_borrower(
    state: FacilityState,
    borrower: str,
    kind: Optional[BorrowerKind] = None,
) -> BorrowerRecord:
    """
    Active record for borrower, optionally of a specific kind.

    Raises:
        NotBorrower: if inactive or of another kind
    """
    record = state.borrower(borrower)
    if not record.is_active:
        raise NotBorrower(borrower)
    if kind is not None and record.kind is not kind:
        raise NotBorrower(borrower)
    return record


def require_positive(amount: Any) -> Decimal:
    """
    Integral, strictly positive amount.

    Raises:
        InvalidNumber: for zero or negative amounts
    """
    amount = to_amount(amount)
    if amount == 0:
        raise InvalidNumber(0)
    return amount


def build_facility_transaction(
    view: LedgerView,
    symbol: str,
    terms: FacilityTerms,
    old_state: FacilityState,
    new_state: FacilityState,
    moves: List[Move],
    notification: Any,
    origin: TransactionOrigin,
    units_to_create: Tuple[Unit, ...] = (),
) -> PendingTransaction:
    """Package moves, the facility state change and a notification, bumping sequence."""
    new_state = replace(new_state, sequence=old_state.sequence + 1)
    change = UnitStateChange(
        unit=symbol,
        old_state=to_state_dict(terms, old_state),
        new_state=to_state_dict(terms, new_state),
    )
    return build_transaction(
        view, moves, [change], origin=origin,
        units_to_create=units_to_create or None,
        notifications=[notification],
    )


def _origin(origin_type: OriginType, caller: str, symbol: str, event: str) -> TransactionOrigin:
    return TransactionOrigin(origin_type, caller, symbol, event)


def _rate(view: LedgerView, terms: FacilityTerms, rate_source: Optional[RateSource]) -> Decimal:
    return resolve_rate_source(terms.collateral_token, rate_source).exchange_rate(view)


# ============================================================================
# READS
# ============================================================================

def get_borrower(view: LedgerView, symbol: str, borrower: str) -> BorrowerRecord:
    """Current record for borrower (inactive empty record if unknown)."""
    _, state = load_debt_facility(view, symbol)
    return state.borrower(borrower)


def compute_redeemable_collateral(
    view: LedgerView,
    symbol: str,
    borrower: str,
    rate_source: Optional[RateSource] = None,
) -> Decimal:
    """Redeemable value of a borrower's collateral at the current rate."""
    terms, state = load_debt_facility(view, symbol)
    return calculate_redeemable_collateral(state.borrower(borrower), _rate(view, terms, rate_source))


def compute_available_to_borrow(
    view: LedgerView,
    symbol: str,
    borrower: str,
    rate_source: Optional[RateSource] = None,
) -> Decimal:
    """
    redeemable(collateral) - debt for an active borrower, at the current rate.

    Raises:
        NotBorrower: if borrower is not active
    """
    terms, state = load_debt_facility(view, symbol)
    record = require_borrower(state, borrower)
    return calculate_available_to_borrow(record, _rate(view, terms, rate_source))


def compute_withdrawable_collateral(
    view: LedgerView,
    symbol: str,
    borrower: str,
    rate_source: Optional[RateSource] = None,
) -> Decimal:
    """Largest amount compute_withdraw accepts for an active borrower."""
    terms, state = load_debt_facility(view, symbol)
    record = require_borrower(state, borrower)
    return calculate_withdrawable_collateral(record, _rate(view, terms, rate_source))


def verify_facility_invariants(
    view: LedgerView,
    symbol: str,
    rate_source: Optional[RateSource] = None,
) -> Dict[str, Any]:
    """
    Check every facility invariant against the ledger.

    Returns:
        {'valid': bool, 'violations': List[str]}

    Example:
        result = verify_facility_invariants(ledger, "INCUR_DEBT")
        assert result['valid'], result['violations']
    """
    terms, state = load_debt_facility(view, symbol)
    custodied = view.get_balance(terms.facility_wallet, terms.collateral_token)
    violations = calculate_invariant_violations(state, _rate(view, terms, rate_source), custodied)
    return {'valid': not violations, 'violations': violations}


# ============================================================================
# GOVERNANCE OPERATIONS
# ============================================================================

def compute_set_global_debt_limit(view: LedgerView, symbol: str, limit: Decimal) -> PendingTransaction:
    """
    Set the facility-wide debt ceiling.

    Borrower limits above the new ceiling are lowered to it. Every borrower's
    debt is at most the total, so no limit drops below its debt.

    Raises:
        LimitBelowOutstandingDebt: if limit < total outstanding debt
    """
    limit = to_amount(limit)
    terms, state = load_debt_facility(view, symbol)
    if limit < state.total_outstanding_debt:
        raise LimitBelowOutstandingDebt(limit)
    borrowers = {
        identity: replace(rec, limit=min(rec.limit, limit))
        for identity, rec in state.borrowers.items()
    }
    new_state = replace(state, global_debt_limit=limit, borrowers=borrowers)
    return build_facility_transaction(
        view, symbol, terms, state, new_state, [],
        GlobalLimitChanged(limit),
        _origin(OriginType.GOVERNANCE, "governance", symbol, "SET_GLOBAL_DEBT_LIMIT"),
    )


def compute_allow_borrower(
    view: LedgerView,
    symbol: str,
    borrower: str,
    is_non_lp: bool,
    is_lp: bool,
) -> PendingTransaction:
    """
    Allow-list a borrower as non-LP or LP.

    A previously revoked borrower is re-activated with limit 0; collateral it
    still holds stays credited to it.

    Raises:
        BothParamsCannotBeTrue: if both flags are set
        AlreadyBorrower: if borrower is already active
        ValueError: if neither flag is set
    """
    kind = BorrowerKind.from_flags(is_non_lp, is_lp)
    terms, state = load_debt_facility(view, symbol)
    existing = state.borrower(borrower)
    if existing.is_active:
        raise AlreadyBorrower(borrower)
    if kind is BorrowerKind.INACTIVE:
        raise ValueError("one of is_non_lp or is_lp must be set")
    record = replace(existing, kind=kind, limit=ZERO, debt=ZERO)
    return build_facility_transaction(
        view, symbol, terms, state, state.with_borrower(borrower, record), [],
        BorrowerAllowed(borrower, bool(is_non_lp), bool(is_lp)),
        _origin(OriginType.GOVERNANCE, "governance", symbol, "ALLOW_BORROWER"),
    )


def compute_set_borrower_debt_limit(
    view: LedgerView,
    symbol: str,
    borrower: str,
    limit: Decimal,
) -> PendingTransaction:
    """
    Set a borrower's debt limit.

    Raises:
        NotBorrower: if borrower is not active
        AboveGlobalDebtLimit: if limit > global debt limit
        AboveBorrowersDebtLimit: if the borrower's debt exceeds limit
    """
    limit = to_amount(limit)
    terms, state = load_debt_facility(view, symbol)
    record = require_borrower(state, borrower)
    if limit > state.global_debt_limit:
        raise AboveGlobalDebtLimit(limit)
    if record.debt > limit:
        raise AboveBorrowersDebtLimit(limit)
    new_state = state.with_borrower(borrower, replace(record, limit=limit))
    return build_facility_transaction(
        view, symbol, terms, state, new_state, [],
        BorrowerDebtLimitSet(borrower, limit),
        _origin(OriginType.GOVERNANCE, "governance", symbol, "SET_BORROWER_DEBT_LIMIT"),
    )


def compute_revoke_borrower(
    view: LedgerView,
    symbol: str,
    borrower: str,
    is_non_lp: bool,
    is_lp: bool,
) -> PendingTransaction:
    """
    Deactivate a borrower. The record is retained.

    Raises:
        NotBorrower: if borrower is inactive or the flags do not match its kind
        BothParamsCannotBeTrue: if both flags are set
        BorrowerStillHasOutstandingDebt: if debt != 0
    """
    terms, state = load_debt_facility(view, symbol)
    record = require_borrower(state, borrower)
    kind = BorrowerKind.from_flags(is_non_lp, is_lp)
    if kind is not record.kind:
        raise NotBorrower(borrower)
    if record.debt != 0:
        raise BorrowerStillHasOutstandingDebt(borrower)
    new_state = state.with_borrower(borrower, replace(record, kind=BorrowerKind.INACTIVE))
    return build_facility_transaction(
        view, symbol, terms, state, new_state, [],
        BorrowerRevoked(borrower, bool(is_non_lp), bool(is_lp)),
        _origin(OriginType.GOVERNANCE, "governance", symbol, "REVOKE_BORROWER"),
    )


def compute_whitelist_strategy(view: LedgerView, symbol: str, strategy_id: str) -> PendingTransaction:
    """Add strategy_id to the strategy whitelist (no-op notification if present)."""
    if not strategy_id:
        raise ValueError("strategy_id cannot be empty")
    terms, state = load_debt_facility(view, symbol)
    strategies = tuple(sorted(set(state.strategies) | {strategy_id}))
    return build_facility_transaction(
        view, symbol, terms, state, replace(state, strategies=strategies), [],
        StrategyWhitelisted(strategy_id),
        _origin(OriginType.GOVERNANCE, "governance", symbol, "WHITELIST_STRATEGY"),
    )


def compute_remove_strategy(view: LedgerView, symbol: str, strategy_id: str) -> PendingTransaction:
    """
    Remove strategy_id from the whitelist.

    Raises:
        StrategyUnauthorized: if strategy_id is not whitelisted
    """
    terms, state = load_debt_facility(view, symbol)
    if strategy_id not in state.strategies:
        raise StrategyUnauthorized(strategy_id)
    strategies = tuple(s for s in state.strategies if s != strategy_id)
    return build_facility_transaction(
        view, symbol, terms, state, replace(state, strategies=strategies), [],
        StrategyRemoved(strategy_id),
        _origin(OriginType.GOVERNANCE, "governance", symbol, "REMOVE_STRATEGY"),
    )


# ============================================================================
# BORROWER SELF-SERVICE
# ============================================================================

def compute_deposit(
    view: LedgerView,
    symbol: str,
    borrower: str,
    amount: Decimal,
    rate_source: Optional[RateSource] = None,
) -> PendingTransaction:
    """
    Pull amount of collateral from the borrower into custody.

    The borrower is debited the amount's accounting units rounded up and is
    credited exactly those units. No limit applies: collateral alone never
    creates risk.

    Raises:
        NotBorrower: if borrower is not active
        InvalidNumber: if amount is zero
    """
    terms, state = load_debt_facility(view, symbol)
    record = require_borrower(state, borrower)
    amount = require_positive(amount)
    units = redeemable_to_units(amount, _rate(view, terms, rate_source), ROUND_UP)

    moves = [Move(units, terms.collateral_token, borrower, terms.facility_wallet,
                  f"deposit_{symbol}")]
    new_record = replace(record, collateral_units=record.collateral_units + units)
    return build_facility_transaction(
        view, symbol, terms, state, state.with_borrower(borrower, new_record), moves,
        BorrowerDeposit(borrower, terms.collateral_token, amount),
        _origin(OriginType.USER_ACTION, borrower, symbol, "DEPOSIT"),
    )


def compute_borrow(
    view: LedgerView,
    symbol: str,
    borrower: str,
    amount: Decimal,
    rate_source: Optional[RateSource] = None,
) -> PendingTransaction:
    """
    Draw amount of the debt asset against collateral.

    Raises:
        NotBorrower: if borrower is not an active non-LP borrower
        InvalidNumber: if amount is zero
        AboveBorrowersDebtLimit: if debt + amount > limit
        OHMAmountMoreThanAvailableLoan: if amount > available to borrow
        AboveGlobalDebtLimit: if total debt + amount > global limit
    """
    terms, state = load_debt_facility(view, symbol)
    record = require_borrower(state, borrower, BorrowerKind.NON_LP)
    amount = require_positive(amount)
    new_debt, new_total = calculate_borrow(state, record, amount, _rate(view, terms, rate_source))

    moves = [mint_move(terms.debt_token, borrower, amount, f"borrow_{symbol}")]
    new_state = state.with_borrower(
        borrower, replace(record, debt=new_debt), total_outstanding_debt=new_total
    )
    return build_facility_transaction(
        view, symbol, terms, state, new_state, moves,
        Borrowed(borrower, amount, new_debt, new_total),
        _origin(OriginType.USER_ACTION, borrower, symbol, "BORROW"),
    )


def compute_withdraw(
    view: LedgerView,
    symbol: str,
    borrower: str,
    amount: Decimal,
    to: str,
    rate_source: Optional[RateSource] = None,
) -> PendingTransaction:
    """
    Send amount of collateral not backing debt to wallet `to`.

    Raises:
        NotBorrower: if borrower is not active
        InvalidNumber: if amount is zero
        ExternalCallFailed: if `to` is the facility or system wallet
        AmountAboveBorrowerBalance: if amount exceeds calculate_withdrawable_collateral
    """
    terms, state = load_debt_facility(view, symbol)
    record = require_borrower(state, borrower)
    amount = require_positive(amount)
    if to in (terms.facility_wallet, SYSTEM_WALLET):
        raise ExternalCallFailed(f"cannot withdraw collateral to {to}")
    rate = _rate(view, terms, rate_source)

    if amount > calculate_withdrawable_collateral(record, rate):
        raise AmountAboveBorrowerBalance(amount)
    # units <= free units, so the remainder still covers debt
    units = redeemable_to_units(amount, rate, ROUND_UP)
    remaining_units = record.collateral_units - units

    moves = [Move(units, terms.collateral_token, terms.facility_wallet, to, f"withdraw_{symbol}")]
    new_record = replace(record, collateral_units=remaining_units)
    return build_facility_transaction(
        view, symbol, terms, state, state.with_borrower(borrower, new_record), moves,
        Withdrawal(borrower, terms.collateral_token, to, amount,
                   units_to_redeemable(remaining_units, rate)),
        _origin(OriginType.USER_ACTION, borrower, symbol, "WITHDRAW"),
    )


def _repay_with_collateral(
    view: LedgerView,
    symbol: str,
    borrower: str,
    rate_source: Optional[RateSource],
    withdraw_rest: bool,
) -> PendingTransaction:
    terms, state = load_debt_facility(view, symbol)
    record = require_borrower(state, borrower)
    if record.debt == 0:
        raise BorrowerHasNoOutstandingDebt(borrower)
    rate = _rate(view, terms, rate_source)

    payment, units_used = calculate_collateral_payment(record, rate)
    remaining_units = record.collateral_units - units_used
    remaining_debt = record.debt - payment
    remaining_total = state.total_outstanding_debt - payment

    # Consumed collateral is retired alongside the debt it repays
    moves = []
    if units_used > 0:
        moves.append(Move(units_used, terms.collateral_token, terms.facility_wallet,
                          SYSTEM_WALLET, f"repay_{symbol}"))

    if withdraw_rest:
        withdrawn = units_to_redeemable(remaining_units, rate)
        if remaining_units > 0:
            moves.append(Move(remaining_units, terms.collateral_token, terms.facility_wallet,
                              borrower, f"withdraw_{symbol}"))
        new_record = replace(record, debt=remaining_debt, collateral_units=ZERO)
        notification = DebtPaidWithCollateralAndWithdrawTheRest(
            borrower, payment, ZERO, remaining_debt, remaining_total, withdrawn
        )
        event = "REPAY_WITH_COLLATERAL_AND_WITHDRAW"
    else:
        new_record = replace(record, debt=remaining_debt, collateral_units=remaining_units)
        notification = DebtPaidWithCollateral(
            borrower, payment, units_to_redeemable(remaining_units, rate),
            remaining_debt, remaining_total,
        )
        event = "REPAY_WITH_COLLATERAL"

    new_state = state.with_borrower(borrower, new_record, total_outstanding_debt=remaining_total)
    return build_facility_transaction(
        view, symbol, terms, state, new_state, moves, notification,
        _origin(OriginType.USER_ACTION, borrower, symbol, event),
    )


def compute_repay_debt_with_collateral(
    view: LedgerView,
    symbol: str,
    borrower: str,
    rate_source: Optional[RateSource] = None,
) -> PendingTransaction:
    """
    Repay as much debt as the collateral covers, consuming that collateral.

    Raises:
        NotBorrower: if borrower is not active
        BorrowerHasNoOutstandingDebt: if debt is zero
    """
    return _repay_with_collateral(view, symbol, borrower, rate_source, withdraw_rest=False)


def compute_repay_debt_with_collateral_and_withdraw_the_rest(
    view: LedgerView,
    symbol: str,
    borrower: str,
    rate_source: Optional[RateSource] = None,
) -> PendingTransaction:
    """Repay with collateral, then send all remaining collateral to the borrower."""
    return _repay_with_collateral(view, symbol, borrower, rate_source, withdraw_rest=True)


def compute_repay_debt_with_ohm(
    view: LedgerView,
    symbol: str,
    borrower: str,
    amount: Decimal,
) -> PendingTransaction:
    """
    Repay debt by burning the debt asset from the borrower's wallet.

    Only min(amount, debt) is pulled and burned.

    Raises:
        NotBorrower: if borrower is not active
        InvalidNumber: if amount is zero
        BorrowerHasNoOutstandingDebt: if debt is zero
    """
    terms, state = load_debt_facility(view, symbol)
    record = require_borrower(state, borrower)
    amount = require_positive(amount)
    if record.debt == 0:
        raise BorrowerHasNoOutstandingDebt(borrower)

    repaid = min(amount, record.debt)
    remaining_debt = record.debt - repaid
    remaining_total = state.total_outstanding_debt - repaid
    moves = [burn_move(terms.debt_token, borrower, repaid, f"repay_{symbol}")]
    new_state = state.with_borrower(
        borrower, replace(record, debt=remaining_debt), total_outstanding_debt=remaining_total
    )
    return build_facility_transaction(
        view, symbol, terms, state, new_state, moves,
        DebtPaidWithOHM(borrower, repaid, remaining_debt, remaining_total),
        _origin(OriginType.USER_ACTION, borrower, symbol, "REPAY_WITH_OHM"),
    )


# ============================================================================
# RISK UNWIND
# ============================================================================

def _close_position(
    view: LedgerView,
    symbol: str,
    borrower: str,
    rate_source: Optional[RateSource],
    confiscate: bool,
) -> PendingTransaction:
    terms, state = load_debt_facility(view, symbol)
    record = require_borrower(state, borrower)
    if record.debt == 0:
        raise BorrowerHasNoOutstandingDebt(borrower)
    rate = _rate(view, terms, rate_source)

    payment, units_used = calculate_collateral_payment(record, rate, close_fully=True)
    rest_units = record.collateral_units - units_used
    rest = units_to_redeemable(rest_units, rate)
    remaining_total = state.total_outstanding_debt - payment

    moves = []
    if units_used > 0:
        moves.append(Move(units_used, terms.collateral_token, terms.facility_wallet,
                          SYSTEM_WALLET, f"unwind_{symbol}"))
    if rest_units > 0:
        dest = SYSTEM_WALLET if confiscate else borrower
        moves.append(Move(rest_units, terms.collateral_token, terms.facility_wallet,
                          dest, f"{'seize' if confiscate else 'return'}_{symbol}"))

    if confiscate:
        notification = Seize(borrower, payment, ZERO, ZERO, remaining_total, rest)
        event = "SEIZE"
    else:
        notification = ForceRepay(borrower, payment, ZERO, ZERO, remaining_total, rest)
        event = "FORCE_REPAY"

    new_record = replace(record, debt=ZERO, collateral_units=ZERO)
    new_state = state.with_borrower(borrower, new_record, total_outstanding_debt=remaining_total)
    return build_facility_transaction(
        view, symbol, terms, state, new_state, moves, notification,
        _origin(OriginType.GOVERNANCE, "governance", symbol, event),
    )


def compute_force_repay(
    view: LedgerView,
    symbol: str,
    borrower: str,
    rate_source: Optional[RateSource] = None,
) -> PendingTransaction:
    """
    Close a borrower's debt with its collateral and return the remainder.

    Raises:
        NotBorrower: if borrower is not active
        BorrowerHasNoOutstandingDebt: if debt is zero
    """
    return _close_position(view, symbol, borrower, rate_source, confiscate=False)


def compute_seize(
    view: LedgerView,
    symbol: str,
    borrower: str,
    rate_source: Optional[RateSource] = None,
) -> PendingTransaction:
    """
    Close a borrower's debt with its collateral and confiscate the remainder.

    Raises:
        NotBorrower: if borrower is not active
        BorrowerHasNoOutstandingDebt: if debt is zero
    """
    return _close_position(view, symbol, borrower, rate_source, confiscate=True)

"""
Core types and pure functions for the debt facility ledger.

Everything the facility, its tokens and its strategies share lives here:
1. LedgerView, the read-only protocol every compute_* function receives
2. Frozen records: Move, PendingTransaction, Transaction, Unit
3. LedgerError and the facility error taxonomy rooted at FacilityError
4. Type aliases: Positions, UnitState
5. to_amount, for integral token amounts

Nothing in this module writes to a ledger.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, DefaultContext, ROUND_HALF_EVEN, ROUND_DOWN, getcontext, InvalidOperation
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Amounts are integral counts of a token's smallest unit, and collateral is
# tracked in accounting units with 18 decimal places. prec=50 keeps
# units * index exact for any realistic supply.
#
# PRECONDITION: No other code should modify the global Decimal context.
# DefaultContext is configured too, since every new thread starts from it.
#
for _context in (getcontext(), DefaultContext):
    _context.prec = 50
    _context.rounding = ROUND_HALF_EVEN
_LEDGER_DECIMAL_CONTEXT = getcontext()


# ============================================================================
# CONSTANTS
# ============================================================================

# Mint source and burn sink. Never balance-checked, so it goes negative by
# exactly the outstanding supply of whatever it has minted.
SYSTEM_WALLET = "system"

UNIT_TYPE_REBASING_TOKEN = "REBASING_TOKEN"
UNIT_TYPE_DEBT_TOKEN = "DEBT_TOKEN"
UNIT_TYPE_DEBT_FACILITY = "DEBT_FACILITY"
UNIT_TYPE_LP_TOKEN = "LP_TOKEN"

# A Move smaller than this in absolute value is refused as zero.
QUANTITY_EPSILON = Decimal("1e-24")

# Unit.round() truncates token balances; anything else rounds half-even.
DECIMAL_ROUNDING = {
    UNIT_TYPE_REBASING_TOKEN: ROUND_DOWN,
    UNIT_TYPE_DEBT_TOKEN: ROUND_DOWN,
    UNIT_TYPE_LP_TOKEN: ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# wallet -> quantity of one unit
Positions = Dict[str, Decimal]

# Free-form per-unit state: mint ceilings, rebase index, borrower registry.
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    What a compute_* function may see of the ledger.

    Ledger satisfies this protocol; tests substitute FakeView.
    """

    @property
    def current_time(self) -> datetime:
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Quantity of unit_symbol held by wallet_id, zero when none."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """A copy the caller is free to modify."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Every wallet holding a non-zero quantity of unit_symbol."""
        ...

    def list_wallets(self) -> Set[str]:
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    What Ledger.execute() did with a PendingTransaction.

    ALREADY_APPLIED means the same intent_id went through earlier and nothing
    happened this time. REJECTED means a check failed; Ledger.last_rejection
    holds the reason.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Who asked for a transaction, kept on every Transaction for audit."""
    USER_ACTION = "user_action"           # a borrower acting for itself
    GOVERNANCE = "governance"             # limits, whitelisting, force repay, seize
    STRATEGY = "strategy"                 # create_lp / remove_lp through a strategy
    SYSTEM = "system"                     # rebases, mint ceilings, fixtures


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Root of every error this package raises on purpose."""
    pass


class InsufficientFunds(LedgerError):
    """A wallet would end up below the unit's min_balance."""
    pass


class BalanceConstraintViolation(LedgerError):
    """A wallet would end up outside the unit's [min_balance, max_balance]."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised by a unit's transfer_rule to veto a move."""
    pass


class UnitNotRegistered(LedgerError):
    pass


class WalletNotRegistered(LedgerError):
    pass


class FacilityError(LedgerError):
    """
    Base exception for debt facility rejections.

    Every facility error is fatal to the operation that raised it: nothing
    has been applied to the ledger when it propagates.
    """
    pass


class Unauthorized(FacilityError):
    """Caller lacks the governance capability for a privileged operation."""

    def __init__(self, caller: str):
        self.caller = caller
        super().__init__(f"UNAUTHORIZED: {caller}")


class NotBorrower(FacilityError):
    """Identity is not an active borrower of the required kind."""

    def __init__(self, borrower: str):
        self.borrower = borrower
        super().__init__(f"IncurDebt_NotBorrower({borrower})")


class AlreadyBorrower(FacilityError):
    """Identity is already an active borrower."""

    def __init__(self, borrower: str):
        self.borrower = borrower
        super().__init__(f"IncurDebt_AlreadyBorrower({borrower})")


class BothParamsCannotBeTrue(FacilityError):
    """LP and non-LP flags were both set."""

    def __init__(self):
        super().__init__("IncurDebt_BothParamsCannotBeTrue()")


class AboveGlobalDebtLimit(FacilityError):
    """A limit or the resulting global debt exceeds the global debt limit."""

    def __init__(self, amount: Decimal):
        self.amount = amount
        super().__init__(f"IncurDebt_AboveGlobalDebtLimit({amount})")


class AboveBorrowersDebtLimit(FacilityError):
    """A borrower's debt would exceed (or already exceeds) its limit."""

    def __init__(self, amount: Decimal):
        self.amount = amount
        super().__init__(f"IncurDebt_AboveBorrowersDebtLimit({amount})")


class LimitBelowOutstandingDebt(FacilityError):
    """The new global limit is below the total outstanding debt."""

    def __init__(self, limit: Decimal):
        self.limit = limit
        super().__init__(f"IncurDebt_LimitBelowOutstandingDebt({limit})")


class OHMAmountMoreThanAvailableLoan(FacilityError):
    """The requested borrow exceeds the collateral-backed capacity."""

    def __init__(self, amount: Decimal):
        self.amount = amount
        super().__init__(f"IncurDebt_OHMAmountMoreThanAvailableLoan({amount})")


class InvalidNumber(FacilityError):
    """A zero or otherwise invalid amount was supplied."""

    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"IncurDebt_InvaildNumber({value})")


class AmountAboveBorrowerBalance(FacilityError):
    """A withdrawal exceeds the collateral not backing debt."""

    def __init__(self, amount: Decimal):
        self.amount = amount
        super().__init__(f"IncurDebt_AmountAboveBorrowerBalance({amount})")


class BorrowerHasNoOutstandingDebt(FacilityError):
    """Repay, force repay or seize attempted on a borrower with zero debt."""

    def __init__(self, borrower: str):
        self.borrower = borrower
        super().__init__(f"IncurDebt_BorrowerHasNoOutstandingDebt({borrower})")


class BorrowerStillHasOutstandingDebt(FacilityError):
    """Revocation attempted on a borrower with non-zero debt."""

    def __init__(self, borrower: str):
        self.borrower = borrower
        super().__init__(f"IncurDebt_BorrowerStillHasOutstandingDebt({borrower})")


class StrategyUnauthorized(FacilityError):
    """Strategy is not on the whitelist."""

    def __init__(self, strategy: str):
        self.strategy = strategy
        super().__init__(f"IncurDebt_StrategyUnauthorized({strategy})")


class ReentrantCall(FacilityError):
    """A facility mutator was entered while another one is in flight."""

    def __init__(self, operation: str, in_flight: str):
        self.operation = operation
        self.in_flight = in_flight
        super().__init__(f"reentrant call to {operation} while {in_flight} is in flight")


class ExternalCallFailed(FacilityError):
    """A collaborator (transfer, mint, burn, rate source or strategy) failed."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


# ============================================================================
# AMOUNT HELPERS
# ============================================================================

def to_amount(value: Any) -> Decimal:
    """
    Convert a caller-supplied token amount to an integral, non-negative Decimal.

    Amounts are counts of a token's smallest unit, so fractional values are
    rejected with ValueError and negative values with InvalidNumber.
    """
    if isinstance(value, bool):
        raise ValueError(f"amount must be a number, got {value!r}")
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"amount must be a number, got {value!r}") from None
    if value.is_nan() or value.is_infinite():
        raise ValueError(f"amount must be finite, got {value}")
    if value != value.to_integral_value():
        raise ValueError(f"amount must be integral, got {value}")
    if value < 0:
        raise InvalidNumber(value)
    return value.quantize(Decimal("1"))


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Audit tag carried from a PendingTransaction onto its Transaction.

    source_id is the caller (borrower, governance identity or strategy id);
    unit_symbol and event_type name the facility and operation, e.g.
    ("INCUR_DEBT", "BORROW").
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        tags = [f"{self.origin_type.value}:{self.source_id}"]
        tags += [f"{label}={value}" for label, value in
                 (("unit", self.unit_symbol), ("event", self.event_type)) if value]
        return f"Origin({', '.join(tags)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Replace a unit's whole state, guarded by the state it expects to replace.

    Ledger.execute() rejects the transaction ("stale state") when old_state
    differs from what the unit holds at execution time.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """{key: (old, new)} for every key whose value differs."""
        before = self.old_state if isinstance(self.old_state, dict) else {}
        after = self.new_state if isinstance(self.new_state, dict) else {}
        return {
            key: (before.get(key), after.get(key))
            for key in before.keys() | after.keys()
            if before.get(key) != after.get(key)
        }


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    Debit quantity of unit_symbol from source and credit it to dest.

    Moves out of SYSTEM_WALLET are mints and moves into it are burns.
    contract_id names the operation that produced the move ("borrow",
    "seize", ...) and shows up in Transaction.contract_ids.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        for label in ("source", "dest", "unit_symbol", "contract_id"):
            value = getattr(self, label)
            if not value or not value.strip():
                raise ValueError(f"Move {label} cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if not self.quantity.is_finite():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError(f"Move quantity {self.quantity} is zero")
        if self.source == self.dest:
            raise ValueError(f"Move from {self.source} to itself")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """Plain-notation string equal for Decimal("1"), Decimal("1.00") and Decimal("1E0")."""
    reduced = d.normalize()
    if reduced == reduced.to_integral_value():
        return str(int(reduced))
    return format(reduced, 'f')


def _canonicalize(value: Any) -> str:
    """
    Stable text form of a unit state or any value nested inside one.

    Used both for intent hashing and for the ledger's stale-state check,
    so two states compare equal exactly when their canonical forms do.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, Enum):
        return f"E:{value.value}"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        entries = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in entries) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(map(_canonicalize, value)) + "]"
    if isinstance(value, (set, frozenset)):
        return "<" + ",".join(map(_canonicalize, sorted(value, key=str))) + ">"
    return f"R:{value!r}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = ()
) -> str:
    """
    16-hex-digit digest of what a transaction does, independent of ordering
    and of when it was built.

    Facility operations always bump the facility's sequence, so repeating an
    operation yields a new intent and only a resubmitted PendingTransaction
    is ALREADY_APPLIED.
    """
    digest = hashlib.sha256()

    def feed(*parts: str) -> None:
        digest.update("|".join(parts).encode())
        digest.update(b"\n")

    feed("origin", origin.origin_type.value, origin.source_id,
         origin.unit_symbol or "", origin.event_type or "")
    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        feed("create", unit.symbol, unit.unit_type)
    for key in sorted((_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
                      for m in moves):
        feed("move", *key)
    for sc in sorted(state_changes, key=lambda s: s.unit):
        feed("state", sc.unit, _canonicalize(sc.old_state), _canonicalize(sc.new_state))
    return digest.hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    Everything one operation wants to do, not yet applied.

    compute_* functions return one of these; Ledger.execute() either applies
    all of it (moves, unit creations, state changes, then notifications) or
    none of it. intent_id is derived from the content when not supplied.
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    notifications: Tuple[Any, ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            object.__setattr__(self, 'intent_id', _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            ))

    def is_empty(self) -> bool:
        return not (self.moves or self.state_changes or self.units_to_create)

    def __repr__(self) -> str:
        return (f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, "
                f"{len(self.notifications)} notifications, {self.origin})")


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
    notifications: Optional[List[Any]] = None,
) -> PendingTransaction:
    """
    Assemble a PendingTransaction stamped with the view's current time.

    State snapshots are deep-copied, so the caller may keep mutating the
    dicts it passed in. Without an origin the transaction is tagged SYSTEM.

    Example:
        def compute_burn(view, symbol, holder, amount):
            moves = [Move(amount, symbol, holder, SYSTEM_WALLET, "burn")]
            return build_transaction(view, moves)
    """
    return PendingTransaction(
        moves=tuple(moves),
        state_changes=tuple(
            UnitStateChange(sc.unit, copy.deepcopy(sc.old_state), copy.deepcopy(sc.new_state))
            for sc in state_changes or ()
        ),
        origin=origin or TransactionOrigin(OriginType.SYSTEM, "system"),
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
        notifications=tuple(notifications or ()),
    )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """A no-op; Ledger.execute() reports it APPLIED without logging anything."""
    return PendingTransaction((), (), TransactionOrigin(OriginType.SYSTEM, "noop"), view.current_time)


# Width of the box Transaction.__repr__ draws.
_BOX_WIDTH = 100


def _box_row(text: str) -> str:
    if len(text) > _BOX_WIDTH:
        text = text[:_BOX_WIDTH - 3] + "..."
    return f"│{text:<{_BOX_WIDTH}}│"


def _box_rule(left: str, right: str) -> str:
    return f"{left}{'─' * _BOX_WIDTH}{right}"


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An applied PendingTransaction as recorded in Ledger.transaction_log.

    Adds what only the ledger knows: exec_id ("exec:<ledger>:<sequence>"),
    ledger_name, execution_time and sequence_number. contract_ids collects
    the contract_id of every move.
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    notifications: Tuple[Any, ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not (self.moves or self.state_changes or self.units_to_create):
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(self, 'contract_ids', frozenset(m.contract_id for m in self.moves))

    def _sections(self):
        yield f"Transaction: {self.exec_id}", [
            f"  {label:<15}: {value}" for label, value in (
                ("intent_id", self.intent_id),
                ("timestamp", self.timestamp),
                ("ledger_name", self.ledger_name),
                ("sequence", self.sequence_number),
                ("origin", self.origin),
            )
        ]
        if self.units_to_create:
            yield f"Units Created ({len(self.units_to_create)}):", [
                f"  {unit.symbol} ({unit.name})" for unit in self.units_to_create
            ]
        yield f"Moves ({len(self.moves)}):", [
            f"  [{i}] {m.quantity} {m.unit_symbol}: {m.source} → {m.dest}"
            for i, m in enumerate(self.moves)
        ]
        if self.state_changes:
            rows = []
            for sc in self.state_changes:
                rows.append(f"  [{sc.unit}]")
                rows += [f"     {key}: {old!r} → {new!r}" for key, (old, new) in sc.changed_fields().items()]
            yield f"State Changes ({len(self.state_changes)}):", rows
        if self.notifications:
            yield f"Notifications ({len(self.notifications)}):", [
                f"  {note!r}" for note in self.notifications
            ]

    def __repr__(self) -> str:
        lines = [""]
        for i, (title, rows) in enumerate(self._sections()):
            lines.append(_box_rule("┌", "┐") if i == 0 else _box_rule("├", "┤"))
            lines.append(_box_row(f" {title}"))
            if i == 0:
                lines.append(_box_rule("├", "┤"))
            lines += [_box_row(f" {row}") for row in rows]
        lines.append(_box_rule("└", "┘"))
        return "\n".join(lines)


# Transfer rules raise TransferRuleViolation to veto a move.
TransferRule = Callable[[LedgerView, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Sorted (key, value) pairs, the form Unit stores its state in."""
    return tuple(sorted(state.items())) if state else ()


@dataclass(frozen=True, slots=True)
class Unit:
    """
    A registered asset or record: the debt token, the rebasing collateral,
    an LP share, or the facility itself.

    Balances must stay within [min_balance, max_balance] everywhere except
    SYSTEM_WALLET. With decimal_places set, balances are rounded by round().
    State is stored frozen; Ledger replaces the whole Unit on a state change.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """A fresh dict each call."""
        return dict(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return value.quantize(
            Decimal(1).scaleb(-self.decimal_places),
            rounding=DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN),
        )

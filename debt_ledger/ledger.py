"""
ledger.py - Stateful Double-Entry Ledger

The Ledger holds every balance and every unit state the debt facility
touches: collateral units in borrower and custody wallets, the debt asset
(minted from and burned into SYSTEM_WALLET), LP tokens, and the facility's
own borrower registry. Nothing else mutates state.

A PendingTransaction is applied by execute() as one atomic step:

    validate  ->  move balances  ->  install new unit states  ->  publish

If any check fails, nothing from the transaction is kept, including LP or
other units it asked to create, and last_rejection says why.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
import copy

from .core import (
    Transaction, Unit, PendingTransaction, ExecuteResult,
    Positions, UnitState, SYSTEM_WALLET,
    LedgerError, TransferRuleViolation, UnitNotRegistered, WalletNotRegistered,
    _freeze_state, _canonicalize,
)


ZERO = Decimal("0")

# Callback invoked once per notification of every applied transaction.
Subscriber = Callable[[Any, Transaction], None]


class Ledger:
    """
    Double-entry store implementing LedgerView.

    Pure compute_* functions receive the ledger as a LedgerView and only
    read from it; execute() is the single write path.

    Not thread-safe on its own: DebtFacility serializes its mutators, and
    reads see the last applied transaction.

    Example:
        ledger = Ledger("main", datetime(2025, 1, 1))
        ledger.register_unit(create_debt_token("OHM", "Olympus"))
        ledger.register_wallet("alice")
        ledger.execute(build_transaction(ledger, [mint_move("OHM", "alice", Decimal("100"), "mint")]))
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False,
    ):
        """
        Args:
            name: Ledger identifier, part of every execution id
            initial_time: Logical start time (default: the Unix epoch)
            verbose: Print registrations and transaction results
            test_mode: Allow set_balance() for fixtures
        """
        self.name = name
        self.verbose = verbose
        self.units: Dict[str, Unit] = {}
        self.balances: Dict[str, Dict[str, Decimal]] = {SYSTEM_WALLET: {}}
        self.registered_wallets: Set[str] = {SYSTEM_WALLET}
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self.notification_log: List[Any] = []
        self.subscriber_errors: List[Tuple[Any, Exception]] = []
        self.last_rejection: Optional[str] = None
        self._subscribers: List[Subscriber] = []
        self._current_time = initial_time or datetime(1970, 1, 1)
        self._test_mode = test_mode

    # ========================================================================
    # READS (LedgerView)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self._current_time

    def _require_wallet(self, wallet_id: str) -> None:
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")

    def get_unit(self, symbol: str) -> Unit:
        """
        Raises:
            UnitNotRegistered: if symbol is unknown
        """
        try:
            return self.units[symbol]
        except KeyError:
            raise UnitNotRegistered(f"Unit {symbol} not registered") from None

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Raw balance of unit_symbol held by wallet_id.

        For a rebasing token this is accounting units, not the redeemable
        amount; use rebasing_token.balance_of for the latter.

        Raises:
            WalletNotRegistered, UnitNotRegistered
        """
        self._require_wallet(wallet_id)
        self.get_unit(unit_symbol)
        return self.balances[wallet_id].get(unit_symbol, ZERO)

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Deep copy of a unit's state, safe for the caller to modify."""
        state = self.get_unit(unit_symbol).state
        return copy.deepcopy(state) if state else {}

    def get_positions(self, unit_symbol: str) -> Positions:
        """Non-zero holders of unit_symbol, SYSTEM_WALLET included."""
        positions = {}
        for wallet in sorted(self.registered_wallets):
            quantity = self.balances[wallet].get(unit_symbol, ZERO)
            if quantity != 0:
                positions[wallet] = quantity
        return positions

    def list_wallets(self) -> Set[str]:
        return set(self.registered_wallets)

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    # ========================================================================
    # CONSERVATION
    # ========================================================================

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Sum of unit_symbol over every wallet, SYSTEM_WALLET included.

        Every move debits one wallet and credits another, so this never
        changes, however much is minted or burned.
        """
        self.get_unit(unit_symbol)
        return sum(
            (self.balances[w].get(unit_symbol, ZERO) for w in sorted(self.registered_wallets)),
            ZERO,
        )

    def verify_double_entry(
        self,
        expected_supplies: Optional[Dict[str, Decimal]] = None,
        tolerance: Decimal = Decimal("1e-18"),
    ) -> Dict[str, Any]:
        """
        Compare current total supplies against an earlier snapshot.

        Returns:
            {'valid': bool, 'supplies': {unit: supply}, 'discrepancies': [...]}
            where each discrepancy has unit, expected, actual and difference.

        Example:
            before = ledger.verify_double_entry()['supplies']
            facility.borrow("alice", Decimal("100"))
            assert ledger.verify_double_entry(before)['valid']
        """
        supplies = {symbol: self.total_supply(symbol) for symbol in self.units}
        discrepancies = []
        for symbol, expected in (expected_supplies or {}).items():
            actual = supplies.get(symbol, ZERO)
            difference = abs(actual - expected)
            if symbol not in supplies:
                discrepancies.append({'unit': symbol, 'expected': expected, 'actual': actual,
                                      'difference': difference, 'error': 'unit not registered'})
            elif difference > tolerance:
                discrepancies.append({'unit': symbol, 'expected': expected, 'actual': actual,
                                      'difference': difference})
        return {'valid': not discrepancies, 'supplies': supplies, 'discrepancies': discrepancies}

    # ========================================================================
    # SETUP
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Raises:
            ValueError: if new_time is earlier than the current time
        """
        if new_time < self._current_time:
            raise ValueError(f"Cannot move time backwards: {new_time} < {self._current_time}")
        self._current_time = new_time

    def register_wallet(self, wallet_id: str) -> str:
        """
        Raises:
            ValueError: if the wallet already exists
        """
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = {}
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Raises:
            ValueError: if the symbol is taken
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            rule = f", rule={unit.transfer_rule.__name__}" if unit.transfer_rule else ""
            print(f"• Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]{rule}")

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Overwrite a balance outside double-entry. Fixtures only.

        Raises:
            LedgerError: unless the ledger was created with test_mode=True
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is only available with test_mode=True; "
                "fund wallets with mint moves through execute()"
            )
        self._require_wallet(wallet_id)
        self.get_unit(unit_symbol)
        self.balances[wallet_id][unit_symbol] = Decimal(str(quantity))

    def subscribe(self, callback: Subscriber) -> None:
        """
        Observe published notifications.

        callback(notification, transaction) is called for each notification
        of each APPLIED transaction, after its state is in place. An exception
        from callback is recorded in subscriber_errors and does not stop
        the remaining callbacks or notifications.
        """
        self._subscribers.append(callback)

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Apply a PendingTransaction all-or-nothing.

        Returns:
            APPLIED, ALREADY_APPLIED (intent_id seen before) or REJECTED
            (reason in last_rejection)
        """
        self.last_rejection = None
        if pending.is_empty():
            return ExecuteResult.APPLIED
        if pending.intent_id in self.seen_intent_ids:
            if self.verbose:
                print(f"! ALREADY_APPLIED: intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED

        # Units created by the transaction must be visible to validation
        created = [u.symbol for u in pending.units_to_create if u.symbol not in self.units]
        for unit in pending.units_to_create:
            self.units.setdefault(unit.symbol, unit)

        reason = (self._check_moves(pending)
                  or self._check_balances(pending)
                  or self._check_state_changes(pending))
        if reason:
            for symbol in created:
                del self.units[symbol]
            self.last_rejection = reason
            if self.verbose:
                print(f"✗ REJECTED: {reason}")
            return ExecuteResult.REJECTED

        sequence = len(self.transaction_log)
        tx = Transaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=f"exec:{self.name}:{sequence:08d}",
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
            units_to_create=pending.units_to_create,
            notifications=pending.notifications,
        )
        self._apply(tx)

        if self.verbose:
            self._print_applied(tx)
        for note in tx.notifications:
            self.notification_log.append(note)
            for callback in list(self._subscribers):
                self._notify(callback, note, tx)
        return ExecuteResult.APPLIED

    def _notify(self, callback: Subscriber, note: Any, tx: Transaction) -> None:
        # The transaction is already applied; a failing observer cannot undo it.
        try:
            callback(note, tx)
        except Exception as exc:
            self.subscriber_errors.append((note, exc))
            if self.verbose:
                print(f"  ✗ subscriber {getattr(callback, '__name__', callback)!r} failed on {note!r}: {exc!r}")

    def _check_moves(self, pending: PendingTransaction) -> Optional[str]:
        if pending.timestamp > self._current_time:
            return "future timestamp"
        for move in pending.moves:
            unit = self.units.get(move.unit_symbol)
            if unit is None:
                return f"unit not registered: {move.unit_symbol}"
            for wallet in (move.source, move.dest):
                if wallet not in self.registered_wallets:
                    return f"wallet not registered: {wallet}"
            if unit.transfer_rule:
                try:
                    unit.transfer_rule(self, move)
                except TransferRuleViolation as e:
                    return str(e)
        return None

    def _net_deltas(self, pending: PendingTransaction) -> Dict[Tuple[str, str], Decimal]:
        deltas: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            unit = self.units[move.unit_symbol]
            for wallet, signed in ((move.source, -move.quantity), (move.dest, move.quantity)):
                key = (wallet, move.unit_symbol)
                deltas[key] = unit.round(deltas.get(key, ZERO) + signed)
        return deltas

    def _check_balances(self, pending: PendingTransaction) -> Optional[str]:
        # SYSTEM_WALLET goes negative by the outstanding supply of what it mints
        for (wallet, symbol), delta in self._net_deltas(pending).items():
            if wallet == SYSTEM_WALLET:
                continue
            unit = self.units[symbol]
            proposed = unit.round(self.balances[wallet].get(symbol, ZERO) + delta)
            if proposed < unit.min_balance:
                return f"{wallet} {symbol}: {proposed} < min {unit.min_balance}"
            if proposed > unit.max_balance:
                return f"{wallet} {symbol}: {proposed} > max {unit.max_balance}"
        return None

    def _check_state_changes(self, pending: PendingTransaction) -> Optional[str]:
        created = {u.symbol for u in pending.units_to_create}
        for sc in pending.state_changes:
            if sc.unit not in self.units:
                return f"unit not registered: {sc.unit}"
            if sc.old_state is None or sc.unit in created:
                continue
            if _canonicalize(sc.old_state) != _canonicalize(self.units[sc.unit].state):
                return f"stale state for {sc.unit}"
        return None

    def _apply(self, tx: Transaction) -> None:
        for move in tx.moves:
            unit = self.units[move.unit_symbol]
            for wallet, signed in ((move.source, -move.quantity), (move.dest, move.quantity)):
                held = self.balances[wallet]
                held[move.unit_symbol] = unit.round(held.get(move.unit_symbol, ZERO) + signed)
        # Units are frozen: a state change installs a replacement Unit
        for sc in tx.state_changes:
            new_state = copy.deepcopy(sc.new_state) if isinstance(sc.new_state, dict) else {}
            self.units[sc.unit] = replace(self.units[sc.unit], _frozen_state=_freeze_state(new_state))
        self.transaction_log.append(tx)
        self.seen_intent_ids.add(tx.intent_id)

    def _print_applied(self, tx: Transaction) -> None:
        width = 100
        lines = repr(tx).split('\n')
        status = " ✓ APPLIED"
        lines[-1] = f"├{'─' * width}┤"
        lines.append(f"│{status:<{width}}│")
        lines.append(f"└{'─' * width}┘")
        print("\n".join(lines))

    # ========================================================================
    # WHAT-IF COPIES
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Independent copy for what-if runs and before/after comparisons.

        Subscribers stay with the original so a clone never publishes to them.
        """
        cloned = Ledger(self.name, self._current_time, verbose=self.verbose, test_mode=self._test_mode)
        cloned.units = {
            symbol: replace(unit, _frozen_state=_freeze_state(copy.deepcopy(unit.state)))
            for symbol, unit in self.units.items()
        }
        cloned.balances = {wallet: dict(held) for wallet, held in self.balances.items()}
        cloned.registered_wallets = set(self.registered_wallets)
        cloned.seen_intent_ids = set(self.seen_intent_ids)
        cloned.transaction_log = list(self.transaction_log)
        cloned.notification_log = list(self.notification_log)
        cloned.subscriber_errors = list(self.subscriber_errors)
        cloned.last_rejection = self.last_rejection
        return cloned

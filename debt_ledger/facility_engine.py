"""
facility_engine.py - Debt Facility Engine

DebtFacility is the stateful front end of one debt facility unit. Every
operation follows the same three steps:

1. Compute: a pure compute_* function reads the ledger through LedgerView
   and returns a PendingTransaction (or raises a FacilityError)
2. Execute: Ledger.execute() applies it atomically
3. Report: a REJECTED result raises ExternalCallFailed with the ledger's reason

Nothing is mutated before step 2, so a failure at any step leaves the
ledger exactly as it was.

Mutators are serialized by a re-entrant lock. A call made while another
operation is in flight on the SAME thread (for example a strategy calling
back into the facility from build()) fails with ReentrantCall instead of
running on half-computed state.
"""

from __future__ import annotations
from decimal import Decimal
from functools import wraps
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Protocol, runtime_checkable
import threading

from .core import (
    PendingTransaction, ExecuteResult, Unauthorized, ReentrantCall, ExternalCallFailed,
)
from .ledger import Ledger
from .valuation import RateSource, MonotonicRateSource, resolve_rate_source
from .units import debt_facility as facility
from .units.debt_facility import BorrowerRecord, load_debt_facility
from .strategies.gateway import Strategy, StrategyRegistry, compute_create_lp, compute_remove_lp


@runtime_checkable
class Authority(Protocol):
    """Decides who holds the governance capability."""

    def is_governance(self, caller: str) -> bool:
        ...


class StaticAuthority:
    """Fixed set of governance identities."""

    def __init__(self, governors: Iterable[str]):
        self.governors = frozenset(governors)
        if not self.governors:
            raise ValueError("at least one governor is required")

    def is_governance(self, caller: str) -> bool:
        return caller in self.governors

    def __repr__(self):
        return f"StaticAuthority({sorted(self.governors)})"


def _mutator(method: Callable) -> Callable:
    """Run method under the facility lock, rejecting same-thread re-entry."""
    name = method.__name__

    @wraps(method)
    def wrapper(self: DebtFacility, *args, **kwargs):
        with self._lock:
            if self._in_flight is not None:
                raise ReentrantCall(name, self._in_flight)
            self._in_flight = name
            try:
                return method(self, *args, **kwargs)
            finally:
                self._in_flight = None
    return wrapper


class DebtFacility:
    """
    Governance-curated debt facility bound to a ledger.

    Example:
        facility = DebtFacility(ledger, "INCUR_DEBT", StaticAuthority({"gov"}))
        facility.set_global_debt_limit("gov", Decimal("2000000000000"))
        facility.allow_borrower("gov", "alice", is_non_lp=True, is_lp=False)
        facility.set_borrower_debt_limit("gov", "alice", Decimal("1000000000000"))
        facility.deposit("alice", Decimal("1000000000000"))
        facility.borrow("alice", Decimal("1000000000000"))
    """

    def __init__(
        self,
        ledger: Ledger,
        symbol: str,
        authority: Authority,
        rate_source: Optional[RateSource] = None,
        registry: Optional[StrategyRegistry] = None,
    ):
        """
        Args:
            ledger: Ledger holding the facility unit and its tokens
            symbol: Symbol of a registered debt facility unit
            authority: Governance capability check
            rate_source: Collateral exchange rate (default: the token's index);
                always wrapped so that a falling rate is refused
            registry: Strategy handles (a new empty registry by default)
        """
        terms, _ = load_debt_facility(ledger, symbol)
        self.ledger = ledger
        self.symbol = symbol
        self.terms = terms
        self.authority = authority
        self.rate_source = MonotonicRateSource(resolve_rate_source(terms.collateral_token, rate_source))
        self.registry = registry or StrategyRegistry()
        self.verbose = ledger.verbose
        self._lock = threading.RLock()
        self._in_flight: Optional[str] = None

    def __repr__(self):
        return f"DebtFacility({self.symbol}, collateral={self.terms.collateral_token}, debt={self.terms.debt_token})"

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _require_governance(self, caller: str) -> None:
        if not self.authority.is_governance(caller):
            raise Unauthorized(caller)

    def _execute(self, pending: PendingTransaction) -> PendingTransaction:
        result = self.ledger.execute(pending)
        if result == ExecuteResult.REJECTED:
            raise ExternalCallFailed(self.ledger.last_rejection or "transaction rejected")
        if result == ExecuteResult.ALREADY_APPLIED:
            raise ExternalCallFailed(f"duplicate transaction {pending.intent_id}")
        if self.verbose and pending.notifications:
            print(f"  {self.symbol}: {pending.notifications[0]}")
        return pending

    # ========================================================================
    # READS
    # ========================================================================

    def state(self):
        """Current (terms, state) snapshot."""
        return load_debt_facility(self.ledger, self.symbol)

    def borrower(self, identity: str) -> BorrowerRecord:
        return facility.get_borrower(self.ledger, self.symbol, identity)

    def get_available_to_borrow(self, borrower: str) -> Decimal:
        return facility.compute_available_to_borrow(self.ledger, self.symbol, borrower, self.rate_source)

    def get_withdrawable_collateral(self, borrower: str) -> Decimal:
        return facility.compute_withdrawable_collateral(self.ledger, self.symbol, borrower, self.rate_source)

    def get_redeemable_collateral(self, borrower: str) -> Decimal:
        return facility.compute_redeemable_collateral(self.ledger, self.symbol, borrower, self.rate_source)

    def verify_invariants(self) -> Dict[str, Any]:
        return facility.verify_facility_invariants(self.ledger, self.symbol, self.rate_source)

    # ========================================================================
    # GOVERNANCE
    # ========================================================================

    @_mutator
    def set_global_debt_limit(self, caller: str, limit: Decimal) -> PendingTransaction:
        self._require_governance(caller)
        return self._execute(facility.compute_set_global_debt_limit(self.ledger, self.symbol, limit))

    @_mutator
    def allow_borrower(self, caller: str, borrower: str, is_non_lp: bool, is_lp: bool) -> PendingTransaction:
        self._require_governance(caller)
        return self._execute(
            facility.compute_allow_borrower(self.ledger, self.symbol, borrower, is_non_lp, is_lp)
        )

    @_mutator
    def set_borrower_debt_limit(self, caller: str, borrower: str, limit: Decimal) -> PendingTransaction:
        self._require_governance(caller)
        return self._execute(
            facility.compute_set_borrower_debt_limit(self.ledger, self.symbol, borrower, limit)
        )

    @_mutator
    def revoke_borrower(self, caller: str, borrower: str, is_non_lp: bool, is_lp: bool) -> PendingTransaction:
        self._require_governance(caller)
        return self._execute(
            facility.compute_revoke_borrower(self.ledger, self.symbol, borrower, is_non_lp, is_lp)
        )

    @_mutator
    def whitelist_strategy(self, caller: str, strategy: Strategy) -> PendingTransaction:
        """Whitelist a strategy and register its handle; its wallet must be registered."""
        self._require_governance(caller)
        if not self.ledger.is_registered(strategy.wallet):
            raise ValueError(f"strategy wallet {strategy.wallet} is not registered")
        self.registry.check(strategy)
        pending = self._execute(
            facility.compute_whitelist_strategy(self.ledger, self.symbol, strategy.strategy_id)
        )
        self.registry.register(strategy)
        return pending

    @_mutator
    def remove_strategy(self, caller: str, strategy_id: str) -> PendingTransaction:
        self._require_governance(caller)
        return self._execute(facility.compute_remove_strategy(self.ledger, self.symbol, strategy_id))

    @_mutator
    def force_repay(self, caller: str, borrower: str) -> PendingTransaction:
        self._require_governance(caller)
        return self._execute(
            facility.compute_force_repay(self.ledger, self.symbol, borrower, self.rate_source)
        )

    @_mutator
    def seize(self, caller: str, borrower: str) -> PendingTransaction:
        self._require_governance(caller)
        return self._execute(
            facility.compute_seize(self.ledger, self.symbol, borrower, self.rate_source)
        )

    # ========================================================================
    # BORROWER SELF-SERVICE
    # ========================================================================

    @_mutator
    def deposit(self, caller: str, amount: Decimal) -> PendingTransaction:
        return self._execute(
            facility.compute_deposit(self.ledger, self.symbol, caller, amount, self.rate_source)
        )

    @_mutator
    def borrow(self, caller: str, amount: Decimal) -> PendingTransaction:
        return self._execute(
            facility.compute_borrow(self.ledger, self.symbol, caller, amount, self.rate_source)
        )

    @_mutator
    def withdraw(self, caller: str, amount: Decimal, to: Optional[str] = None) -> PendingTransaction:
        return self._execute(
            facility.compute_withdraw(self.ledger, self.symbol, caller, amount, to or caller,
                                      self.rate_source)
        )

    @_mutator
    def repay_debt_with_collateral(self, caller: str) -> PendingTransaction:
        return self._execute(
            facility.compute_repay_debt_with_collateral(self.ledger, self.symbol, caller, self.rate_source)
        )

    @_mutator
    def repay_debt_with_collateral_and_withdraw_the_rest(self, caller: str) -> PendingTransaction:
        return self._execute(
            facility.compute_repay_debt_with_collateral_and_withdraw_the_rest(
                self.ledger, self.symbol, caller, self.rate_source
            )
        )

    @_mutator
    def repay_debt_with_ohm(self, caller: str, amount: Decimal) -> PendingTransaction:
        return self._execute(facility.compute_repay_debt_with_ohm(self.ledger, self.symbol, caller, amount))

    # ========================================================================
    # STRATEGY GATEWAY
    # ========================================================================

    @_mutator
    def create_lp(
        self,
        caller: str,
        ohm_amount: Decimal,
        pair_desired_amount: Decimal,
        strategy_id: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> PendingTransaction:
        return self._execute(compute_create_lp(
            self.ledger, self.symbol, self.registry, caller, ohm_amount,
            pair_desired_amount, strategy_id, params, self.rate_source,
        ))

    @_mutator
    def remove_lp(
        self,
        caller: str,
        liquidity: Decimal,
        strategy_id: str,
        lp_token: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> PendingTransaction:
        return self._execute(compute_remove_lp(
            self.ledger, self.symbol, self.registry, caller, liquidity,
            strategy_id, lp_token, params,
        ))

"""
Tests for the DebtFacility front end: authority, execution and serialization.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from decimal import Decimal

from debt_ledger import (
    DebtFacility, StaticAuthority, Authority, ReentrantCall, ExternalCallFailed,
    OHMAmountMoreThanAvailableLoan, AboveBorrowersDebtLimit, UnitNotRegistered,
    StaticRateSource, RateDecreased,
)
from debt_ledger.notifications import Borrowed
from tests.facility_helpers import (
    GOV, FACILITY, PAIR, POOL_WALLET, BORROWER_LIMIT, GLOBAL_LIMIT, COLLATERAL_AMOUNT,
    build_facility_ledger, make_facility, setup_non_lp_borrower, ledger_state_equals,
)


class ReentrantStrategy:
    """Calls back into the facility while it is being built."""

    def __init__(self, facility):
        self.strategy_id = "reentrant"
        self.wallet = POOL_WALLET
        self.pair_token = PAIR
        self.facility = facility

    def build(self, view, request):
        self.facility.borrow("alice", Decimal("1"))

    def unwind(self, view, request):
        self.facility.borrow("alice", Decimal("1"))


# ============================================================================
# AUTHORITY
# ============================================================================

class TestStaticAuthority:
    """Tests for StaticAuthority."""

    def test_membership(self):
        authority = StaticAuthority({"gov", "multisig"})
        assert authority.is_governance("multisig")
        assert not authority.is_governance("alice")
        assert isinstance(authority, Authority)

    def test_requires_a_governor(self):
        with pytest.raises(ValueError):
            StaticAuthority(set())


# ============================================================================
# EXECUTION
# ============================================================================

class TestExecution:
    """Tests for construction, execution and reporting."""

    def test_requires_registered_facility(self, ledger):
        with pytest.raises(UnitNotRegistered):
            DebtFacility(ledger, "MISSING", StaticAuthority({GOV}))

    def test_subscribers_see_applied_operations_only(self, funded_facility):
        funded_facility.set_borrower_debt_limit(GOV, "alice", GLOBAL_LIMIT)
        seen = []
        funded_facility.ledger.subscribe(lambda note, tx: seen.append(note))

        funded_facility.borrow("alice", Decimal("100"))
        with pytest.raises(OHMAmountMoreThanAvailableLoan):
            funded_facility.borrow("alice", COLLATERAL_AMOUNT)

        assert seen == [Borrowed("alice", Decimal("100"), Decimal("100"), Decimal("100"))]

    def test_failing_subscriber_does_not_fail_operation(self, funded_facility):
        ledger = funded_facility.ledger
        seen = []

        def broken(note, tx):
            raise RuntimeError("observer down")

        ledger.subscribe(broken)
        ledger.subscribe(lambda note, tx: seen.append(note))

        funded_facility.borrow("alice", Decimal("100"))

        note = Borrowed("alice", Decimal("100"), Decimal("100"), Decimal("100"))
        assert funded_facility.borrower("alice").debt == Decimal("100")
        assert seen == [note]
        assert ledger.notification_log[-1] == note
        assert len(ledger.subscriber_errors) == 1
        failed_note, error = ledger.subscriber_errors[0]
        assert failed_note == note
        assert isinstance(error, RuntimeError)

    def test_verbose_prints_notification(self, capsys):
        ledger = build_facility_ledger()
        facility = make_facility(ledger)
        facility.verbose = True
        facility.set_global_debt_limit(GOV, Decimal("10"))
        assert f"{FACILITY}: GlobalLimitChanged" in capsys.readouterr().out

    def test_falling_rate_refused(self, ledger):
        rate = StaticRateSource(Decimal("1.1"))
        facility = make_facility(ledger, rate_source=rate)
        facility.set_global_debt_limit(GOV, Decimal("2000000000000"))
        setup_non_lp_borrower(facility, "alice")

        rate.update_rate(Decimal("1.05"))
        before = ledger.clone()
        with pytest.raises(RateDecreased):
            facility.borrow("alice", Decimal("1"))
        assert ledger_state_equals(before, ledger)

    def test_repr(self, facility):
        assert "INCUR_DEBT" in repr(facility)


# ============================================================================
# SERIALIZATION
# ============================================================================

class TestSerialization:
    """Mutators are serialized and refuse same-thread re-entry."""

    def test_reentrant_call_rejected(self, lp_facility):
        setup_non_lp_borrower(lp_facility, "alice")
        strategy = ReentrantStrategy(lp_facility)
        lp_facility.whitelist_strategy(GOV, strategy)
        before = lp_facility.ledger.clone()

        with pytest.raises(ReentrantCall) as exc_info:
            lp_facility.create_lp("bob", Decimal("1000"), Decimal("1000"), "reentrant")
        assert exc_info.value.operation == "borrow"
        assert exc_info.value.in_flight == "create_lp"
        assert ledger_state_equals(before, lp_facility.ledger)

        # The facility is usable again afterwards
        lp_facility.borrow("alice", Decimal("1"))
        assert lp_facility.borrower("alice").debt == Decimal("1")

    def test_concurrent_borrows_are_serialized(self, funded_facility):
        """Ten threads race to borrow a tenth of the limit each; one more must fail."""
        tenth = BORROWER_LIMIT / 10
        barrier = threading.Barrier(10)

        def borrow():
            barrier.wait()
            funded_facility.borrow("alice", tenth)

        with ThreadPoolExecutor(max_workers=10) as pool:
            futures = [pool.submit(borrow) for _ in range(10)]
        for future in futures:
            future.result()

        _, state = funded_facility.state()
        assert funded_facility.borrower("alice").debt == BORROWER_LIMIT
        assert state.total_outstanding_debt == BORROWER_LIMIT
        assert state.sequence == len(funded_facility.ledger.transaction_log)
        assert funded_facility.verify_invariants()['valid']

        with pytest.raises(AboveBorrowersDebtLimit):
            funded_facility.borrow("alice", Decimal("1"))

    def test_duplicate_submission_reported(self, funded_facility):
        from debt_ledger.units.debt_facility import compute_borrow
        pending = compute_borrow(funded_facility.ledger, FACILITY, "alice", Decimal("10"))
        funded_facility._execute(pending)
        with pytest.raises(ExternalCallFailed):
            funded_facility._execute(pending)

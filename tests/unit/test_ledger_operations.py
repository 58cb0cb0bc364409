"""
Tests for Ledger: registration, atomic execution, notifications and cloning.
"""

import pytest
from datetime import datetime
from decimal import Decimal

from debt_ledger import (
    Ledger, Move, ExecuteResult, SYSTEM_WALLET, LedgerError, WalletNotRegistered,
    UnitNotRegistered, UnitStateChange, build_transaction,
    create_debt_token, create_rebasing_token,
)
from debt_ledger.strategies import create_lp_token


@pytest.fixture
def ledger():
    ledger = Ledger("ops", datetime(2025, 1, 1), verbose=False, test_mode=True)
    ledger.register_unit(create_debt_token("OHM", "Olympus"))
    ledger.register_unit(create_rebasing_token("sOHM", "Staked OHM"))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    ledger.set_balance("alice", "OHM", Decimal("100"))
    return ledger


def transfer(ledger, amount, unit="OHM", source="alice", dest="bob"):
    return build_transaction(ledger, [Move(Decimal(amount), unit, source, dest, "t")])


# ============================================================================
# REGISTRATION
# ============================================================================

class TestRegistration:
    """Tests for wallet and unit registration."""

    def test_system_wallet_registered(self, ledger):
        assert ledger.is_registered(SYSTEM_WALLET)

    def test_duplicate_wallet_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.register_wallet("alice")

    def test_duplicate_unit_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.register_unit(create_debt_token("OHM", "Again"))

    def test_unknown_lookups(self, ledger):
        with pytest.raises(WalletNotRegistered):
            ledger.get_balance("nobody", "OHM")
        with pytest.raises(UnitNotRegistered):
            ledger.get_balance("alice", "XYZ")

    def test_set_balance_requires_test_mode(self):
        ledger = Ledger("prod", datetime(2025, 1, 1), verbose=False)
        ledger.register_unit(create_debt_token("OHM", "Olympus"))
        ledger.register_wallet("alice")
        with pytest.raises(LedgerError):
            ledger.set_balance("alice", "OHM", Decimal("1"))

    def test_time_only_moves_forward(self, ledger):
        ledger.advance_time(datetime(2025, 2, 1))
        with pytest.raises(ValueError):
            ledger.advance_time(datetime(2025, 1, 15))


# ============================================================================
# EXECUTION
# ============================================================================

class TestExecute:
    """Tests for atomic execution and idempotency."""

    def test_applied(self, ledger):
        assert ledger.execute(transfer(ledger, "40")) == ExecuteResult.APPLIED
        assert ledger.get_balance("alice", "OHM") == Decimal("60")
        assert ledger.get_balance("bob", "OHM") == Decimal("40")
        assert ledger.get_positions("OHM") == {"alice": Decimal("60"), "bob": Decimal("40")}

    def test_already_applied(self, ledger):
        pending = transfer(ledger, "40")
        ledger.execute(pending)
        assert ledger.execute(pending) == ExecuteResult.ALREADY_APPLIED
        assert ledger.get_balance("bob", "OHM") == Decimal("40")

    def test_insufficient_balance_rejects_everything(self, ledger):
        pending = build_transaction(ledger, [
            Move(Decimal("10"), "OHM", "alice", "bob", "t"),
            Move(Decimal("1"), "sOHM", "bob", "alice", "t"),
        ])
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert "bob sOHM" in ledger.last_rejection
        assert ledger.get_balance("alice", "OHM") == Decimal("100")
        assert ledger.transaction_log == []

    def test_unregistered_wallet_rejected(self, ledger):
        assert ledger.execute(transfer(ledger, "1", dest="carol")) == ExecuteResult.REJECTED
        assert "carol" in ledger.last_rejection

    def test_future_timestamp_rejected(self, ledger):
        pending = transfer(ledger, "1")
        past = Ledger("past", datetime(2024, 1, 1), verbose=False, test_mode=True)
        past.register_unit(create_debt_token("OHM", "Olympus"))
        past.register_wallet("alice")
        past.register_wallet("bob")
        past.set_balance("alice", "OHM", Decimal("100"))
        assert past.execute(pending) == ExecuteResult.REJECTED
        assert past.last_rejection == "future timestamp"

    def test_system_wallet_may_go_negative(self, ledger):
        pending = build_transaction(ledger, [Move(Decimal("5"), "OHM", SYSTEM_WALLET, "bob", "mint")])
        assert ledger.execute(pending) == ExecuteResult.APPLIED
        assert ledger.get_balance(SYSTEM_WALLET, "OHM") == Decimal("-5")

    def test_stale_state_rejected(self, ledger):
        state = ledger.get_unit_state("sOHM")
        stale = dict(state, rebase_count=7)
        change = UnitStateChange("sOHM", stale, dict(state, rebase_count=8))
        assert ledger.execute(build_transaction(ledger, [], [change])) == ExecuteResult.REJECTED
        assert ledger.last_rejection == "stale state for sOHM"

    def test_rejected_units_are_rolled_back(self, ledger):
        lp = create_lp_token("LP_X", "OHM", "DAI", "alice")
        pending = build_transaction(
            ledger,
            [Move(Decimal("1000"), "OHM", "alice", "bob", "t"),
             Move(Decimal("1"), "LP_X", SYSTEM_WALLET, "bob", "t")],
            units_to_create=(lp,),
        )
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert "LP_X" not in ledger.units

    def test_units_created_on_apply(self, ledger):
        lp = create_lp_token("LP_X", "OHM", "DAI", "alice")
        pending = build_transaction(
            ledger, [Move(Decimal("1"), "LP_X", SYSTEM_WALLET, "bob", "t")], units_to_create=(lp,),
        )
        assert ledger.execute(pending) == ExecuteResult.APPLIED
        assert ledger.get_balance("bob", "LP_X") == Decimal("1")


# ============================================================================
# NOTIFICATIONS
# ============================================================================

class TestNotifications:
    """Notifications are published only for applied transactions."""

    def test_published_in_order(self, ledger):
        received = []
        ledger.subscribe(lambda note, tx: received.append((note, tx.intent_id)))
        pending = build_transaction(
            ledger, [Move(Decimal("1"), "OHM", "alice", "bob", "t")], notifications=["a", "b"]
        )
        ledger.execute(pending)
        assert received == [("a", pending.intent_id), ("b", pending.intent_id)]
        assert ledger.notification_log == ["a", "b"]

    def test_not_published_on_reject(self, ledger):
        received = []
        ledger.subscribe(lambda note, tx: received.append(note))
        pending = build_transaction(
            ledger, [Move(Decimal("1000"), "OHM", "alice", "bob", "t")], notifications=["a"]
        )
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert received == []
        assert ledger.notification_log == []


# ============================================================================
# CONSERVATION AND CLONING
# ============================================================================

class TestConservationAndClone:
    """Tests for total_supply, verify_double_entry and clone."""

    def test_total_supply_constant_across_mints(self, ledger):
        before = ledger.verify_double_entry()['supplies']
        ledger.execute(build_transaction(ledger, [Move(Decimal("5"), "OHM", SYSTEM_WALLET, "bob", "m")]))
        ledger.execute(transfer(ledger, "30"))
        assert ledger.verify_double_entry(before)['valid']

    def test_discrepancy_reported(self, ledger):
        result = ledger.verify_double_entry({"OHM": Decimal("0")})
        assert not result['valid']
        assert result['discrepancies'][0]['actual'] == Decimal("100")

    def test_clone_is_independent(self, ledger):
        received = []
        ledger.subscribe(lambda note, tx: received.append(note))
        clone = ledger.clone()
        clone.execute(build_transaction(
            clone, [Move(Decimal("1"), "OHM", "alice", "bob", "t")], notifications=["x"]
        ))
        assert clone.get_balance("bob", "OHM") == Decimal("1")
        assert ledger.get_balance("bob", "OHM") == Decimal("0")
        assert received == []

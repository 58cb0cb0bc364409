"""
Conservation Conformance Tests

INVARIANT: Facility operations only move tokens; they never create them.

    total_supply(unit) is constant for every unit (SYSTEM_WALLET included)
    balance(facility_wallet, collateral) = sum of collateral_units(b)
    balance(facility_wallet, LP) = sum of lp_positions(b)[LP] = LP outstanding supply

For borrowers who only borrow and repay in OHM:

    outstanding_supply(OHM) = total_outstanding_debt
"""

from decimal import Decimal
from hypothesis import given, settings
from hypothesis import strategies as st

from debt_ledger import SYSTEM_WALLET, FacilityError, outstanding_supply
from tests.facility_helpers import (
    GOV, COLLATERAL, DEBT, FACILITY_WALLET, STRATEGY_ID, LP_TOKEN, AMOUNTS, OPERATIONS,
    build_facility_ledger, build_populated_facility, apply_operation,
    make_facility, setup_non_lp_borrower,
)


OHM_ONLY_OPERATIONS = st.tuples(
    st.sampled_from(["borrow", "repay_debt_with_ohm"]),
    st.sampled_from(["alice", "carol"]),
    AMOUNTS,
)


def custody_mismatches(facility):
    """Differences between what the facility holds and what it owes borrowers."""
    ledger = facility.ledger
    _, state = facility.state()
    mismatches = []

    owed_units = sum((r.collateral_units for r in state.borrowers.values()), Decimal("0"))
    held_units = ledger.get_balance(FACILITY_WALLET, COLLATERAL)
    if owed_units != held_units:
        mismatches.append(f"collateral owed {owed_units} != held {held_units}")

    if LP_TOKEN in ledger.units:
        owed_lp = sum((r.lp_positions.get(LP_TOKEN, Decimal("0")) for r in state.borrowers.values()),
                      Decimal("0"))
        held_lp = ledger.get_balance(FACILITY_WALLET, LP_TOKEN)
        if owed_lp != held_lp or held_lp != outstanding_supply(ledger, LP_TOKEN):
            mismatches.append(f"LP owed {owed_lp}, held {held_lp}")
    return mismatches


# ============================================================================
# PROPERTY TESTS
# ============================================================================

class TestConservationProperties:
    """Property-based tests for supply and custody conservation."""

    @given(operations=st.lists(OPERATIONS, min_size=1, max_size=15))
    @settings(max_examples=50, deadline=None)
    def test_total_supply_constant(self, operations):
        """
        PROPERTY: total_supply of every unit is unchanged by any sequence.
        """
        facility = build_populated_facility()
        ledger = facility.ledger
        supplies = ledger.verify_double_entry()['supplies']
        for operation in operations:
            try:
                apply_operation(facility, operation)
            except FacilityError:
                pass
        result = ledger.verify_double_entry(supplies)
        assert result['valid'], result['discrepancies']
        if LP_TOKEN in ledger.units:
            assert ledger.total_supply(LP_TOKEN) == 0

    @given(operations=st.lists(OPERATIONS, min_size=1, max_size=15))
    @settings(max_examples=50, deadline=None)
    def test_custody_matches_records(self, operations):
        """
        PROPERTY: the facility wallet holds exactly what borrower records say.
        """
        facility = build_populated_facility()
        for operation in operations:
            try:
                apply_operation(facility, operation)
            except FacilityError:
                pass
            assert custody_mismatches(facility) == [], operation

    @given(operations=st.lists(OHM_ONLY_OPERATIONS, min_size=1, max_size=20))
    @settings(max_examples=50, deadline=None)
    def test_outstanding_ohm_equals_debt(self, operations):
        """
        PROPERTY: when debt is only borrowed and repaid in OHM, every OHM in
        circulation is backed by exactly one unit of debt.
        """
        facility = build_populated_facility()
        for operation in operations:
            try:
                apply_operation(facility, operation)
            except FacilityError:
                pass
            _, state = facility.state()
            assert outstanding_supply(facility.ledger, DEBT) == state.total_outstanding_debt


# ============================================================================
# EXAMPLE TESTS
# ============================================================================

class TestConservationExamples:
    """Where OHM and debt part ways."""

    def test_collateral_repayment_retires_collateral_not_ohm(self):
        ledger = build_facility_ledger(index=Decimal("1.25"))
        facility = make_facility(ledger)
        facility.set_global_debt_limit(GOV, Decimal("2000000000000"))
        setup_non_lp_borrower(facility, "alice")
        facility.borrow("alice", Decimal("400000000000"))

        facility.repay_debt_with_collateral("alice")

        _, state = facility.state()
        assert state.total_outstanding_debt == 0
        assert outstanding_supply(ledger, DEBT) == Decimal("400000000000")
        # 4e11 OHM of value at 1.25 per unit
        assert ledger.get_balance(SYSTEM_WALLET, COLLATERAL) == Decimal("320000000000")
        assert custody_mismatches(facility) == []

    def test_lp_custody_through_create_and_remove(self):
        facility = build_populated_facility()
        facility.create_lp("bob", Decimal("1000000"), Decimal("4000000"), STRATEGY_ID)
        assert facility.ledger.get_balance(FACILITY_WALLET, LP_TOKEN) == Decimal("2000000")
        assert custody_mismatches(facility) == []

        facility.remove_lp("bob", Decimal("500000"), STRATEGY_ID, LP_TOKEN)
        assert facility.borrower("bob").lp_positions == {LP_TOKEN: Decimal("1500000")}
        assert custody_mismatches(facility) == []

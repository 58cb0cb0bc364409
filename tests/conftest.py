"""
conftest.py - Shared pytest fixtures for debt facility tests

Provides common fixtures used across unit, functional and conformance tests:
- A ledger with the collateral, debt and pair tokens and a facility unit
- DebtFacility front ends (bare, with a funded non-LP borrower, with an LP borrower)

Constants and setup helpers live in tests/facility_helpers.py.
"""

import pytest
from decimal import Decimal

from debt_ledger import ConstantProductStrategy

from tests.facility_helpers import (
    GOV, COLLATERAL, PAIR, POOL_WALLET, STRATEGY_ID,
    GLOBAL_LIMIT, BORROWER_LIMIT, COLLATERAL_AMOUNT,
    build_facility_ledger, make_facility, setup_non_lp_borrower,
)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Fresh facility ledger at index 1."""
    return build_facility_ledger()


@pytest.fixture
def facility(ledger):
    """DebtFacility with the global limit set and no borrowers."""
    facility = make_facility(ledger)
    facility.set_global_debt_limit(GOV, GLOBAL_LIMIT)
    return facility


@pytest.fixture
def funded_facility(facility):
    """alice: non-LP borrower, limit 1e12, 1e12 collateral deposited, no debt."""
    setup_non_lp_borrower(facility, "alice")
    return facility


@pytest.fixture
def strategy(ledger):
    """Constant-product OHM/DAI strategy with its pool wallet registered."""
    ledger.register_wallet(POOL_WALLET)
    return ConstantProductStrategy(STRATEGY_ID, POOL_WALLET, PAIR)


@pytest.fixture
def lp_facility(facility, strategy):
    """bob: LP borrower, limit 1e12, 1e12 collateral deposited, 1e12 DAI; strategy whitelisted."""
    facility.whitelist_strategy(GOV, strategy)
    facility.allow_borrower(GOV, "bob", is_non_lp=False, is_lp=True)
    facility.set_borrower_debt_limit(GOV, "bob", BORROWER_LIMIT)
    facility.ledger.set_balance("bob", COLLATERAL, COLLATERAL_AMOUNT)
    facility.deposit("bob", COLLATERAL_AMOUNT)
    facility.ledger.set_balance("bob", PAIR, Decimal("1000000000000"))
    return facility

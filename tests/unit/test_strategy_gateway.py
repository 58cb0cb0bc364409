"""
Tests for the strategy gateway and the constant-product reference strategy.

Tests cover:
- Liquidity quotes (pure)
- create_lp: minting into the pool, LP custody, leftovers, check order
- remove_lp: unwinding, debt repayment, excess OHM
- StrategyRegistry
"""

import pytest
from decimal import Decimal

from debt_ledger import (
    SYSTEM_WALLET, NotBorrower, InvalidNumber, AboveBorrowersDebtLimit,
    AmountAboveBorrowerBalance, StrategyUnauthorized, ExternalCallFailed,
    Strategy, StrategyRegistry, StrategyFailed, ConstantProductStrategy, outstanding_supply,
)
from debt_ledger.notifications import LpCreated, LpRemoved
from debt_ledger.strategies import StrategyResult
from tests.facility_helpers import (
    GOV, DEBT, PAIR, FACILITY_WALLET, POOL_WALLET, STRATEGY_ID, BORROWER_LIMIT,
    setup_non_lp_borrower, ledger_state_equals,
)


LP = f"LP_{STRATEGY_ID}"
MILLION = Decimal("1000000")


class OverreportingStrategy:
    """Reports more OHM leftover than it was given."""

    def __init__(self, strategy_id, wallet, pair_token):
        self.strategy_id = strategy_id
        self.wallet = wallet
        self.pair_token = pair_token

    def build(self, view, request):
        return StrategyResult(moves=(), lp_token="LP_BAD", liquidity=Decimal("1"),
                              ohm_leftover=request.ohm_amount + 1)

    def unwind(self, view, request):
        raise StrategyFailed("not supported")


# ============================================================================
# QUOTES
# ============================================================================

class TestQuoteLiquidity:
    """Tests for ConstantProductStrategy.quote_liquidity."""

    def setup_method(self):
        self.strategy = ConstantProductStrategy(STRATEGY_ID, POOL_WALLET, PAIR)

    def test_first_deposit_uses_geometric_mean(self):
        assert self.strategy.quote_liquidity(Decimal("4"), Decimal("9"), 0, 0, 0) == (
            Decimal("4"), Decimal("9"), Decimal("6")
        )

    def test_first_deposit_floors_liquidity(self):
        _, _, liquidity = self.strategy.quote_liquidity(Decimal("2"), Decimal("3"), 0, 0, 0)
        assert liquidity == Decimal("2")

    def test_excess_pair_is_trimmed_to_ratio(self):
        quote = self.strategy.quote_liquidity(
            Decimal("100"), Decimal("300"), Decimal("1000"), Decimal("2000"), Decimal("1000")
        )
        assert quote == (Decimal("100"), Decimal("200"), Decimal("100"))

    def test_excess_ohm_is_trimmed_to_ratio(self):
        quote = self.strategy.quote_liquidity(
            Decimal("300"), Decimal("200"), Decimal("1000"), Decimal("2000"), Decimal("1000")
        )
        assert quote == (Decimal("100"), Decimal("200"), Decimal("100"))

    def test_satisfies_strategy_protocol(self):
        assert isinstance(self.strategy, Strategy)

    def test_requires_identity(self):
        with pytest.raises(ValueError):
            ConstantProductStrategy("", POOL_WALLET, PAIR)


# ============================================================================
# CREATE LP
# ============================================================================

class TestCreateLp:
    """Tests for create_lp."""

    def test_first_deposit(self, lp_facility):
        lp_facility.create_lp("bob", MILLION, MILLION, STRATEGY_ID)
        ledger = lp_facility.ledger

        record = lp_facility.borrower("bob")
        assert record.debt == MILLION
        assert record.lp_positions == {LP: MILLION}
        assert ledger.get_balance(FACILITY_WALLET, LP) == MILLION
        assert ledger.get_balance(POOL_WALLET, DEBT) == MILLION
        assert ledger.get_balance(POOL_WALLET, PAIR) == MILLION
        assert ledger.get_balance("bob", DEBT) == 0
        assert ledger.get_balance("bob", PAIR) == Decimal("1000000000000") - MILLION
        assert ledger.notification_log[-1] == LpCreated(
            "bob", STRATEGY_ID, LP, MILLION, MILLION, Decimal("0"), Decimal("0")
        )

    def test_origin_is_strategy(self, lp_facility):
        lp_facility.create_lp("bob", MILLION, MILLION, STRATEGY_ID)
        tx = lp_facility.ledger.transaction_log[-1]
        assert tx.origin.event_type == "CREATE_LP"
        assert tx.units_to_create[0].symbol == LP

    def test_pair_leftover_returned(self, lp_facility):
        lp_facility.create_lp("bob", MILLION, MILLION, STRATEGY_ID)
        lp_facility.create_lp("bob", MILLION, 2 * MILLION, STRATEGY_ID)

        assert lp_facility.borrower("bob").lp_positions == {LP: 2 * MILLION}
        assert lp_facility.ledger.get_balance("bob", PAIR) == Decimal("1000000000000") - 2 * MILLION
        assert lp_facility.ledger.notification_log[-1].pair_leftover == MILLION

    def test_ohm_leftover_burned_and_not_owed(self, lp_facility):
        lp_facility.create_lp("bob", MILLION, MILLION, STRATEGY_ID)
        lp_facility.create_lp("bob", 2 * MILLION, MILLION, STRATEGY_ID)

        _, state = lp_facility.state()
        assert lp_facility.borrower("bob").debt == 2 * MILLION
        assert state.total_outstanding_debt == 2 * MILLION
        assert outstanding_supply(lp_facility.ledger, DEBT) == 2 * MILLION
        assert lp_facility.ledger.notification_log[-1] == LpCreated(
            "bob", STRATEGY_ID, LP, MILLION, MILLION, MILLION, Decimal("0")
        )

    def test_non_lp_borrower_rejected(self, lp_facility):
        setup_non_lp_borrower(lp_facility, "alice")
        with pytest.raises(NotBorrower):
            lp_facility.create_lp("alice", MILLION, MILLION, STRATEGY_ID)

    def test_unknown_strategy_rejected(self, lp_facility):
        with pytest.raises(StrategyUnauthorized):
            lp_facility.create_lp("bob", MILLION, MILLION, "unknown")

    def test_removed_strategy_rejected(self, lp_facility):
        lp_facility.remove_strategy(GOV, STRATEGY_ID)
        with pytest.raises(StrategyUnauthorized) as exc_info:
            lp_facility.create_lp("bob", MILLION, MILLION, STRATEGY_ID)
        assert exc_info.value.strategy == STRATEGY_ID

    def test_zero_amount_rejected(self, lp_facility):
        with pytest.raises(InvalidNumber):
            lp_facility.create_lp("bob", Decimal("0"), MILLION, STRATEGY_ID)

    def test_limit_applies(self, lp_facility):
        with pytest.raises(AboveBorrowersDebtLimit):
            lp_facility.create_lp("bob", BORROWER_LIMIT + 1, MILLION, STRATEGY_ID)

    def test_missing_pair_fails_in_strategy(self, lp_facility):
        with pytest.raises(StrategyFailed):
            lp_facility.create_lp("bob", MILLION, Decimal("0"), STRATEGY_ID)

    def test_min_pair_enforced(self, lp_facility):
        lp_facility.create_lp("bob", MILLION, MILLION, STRATEGY_ID)
        with pytest.raises(StrategyFailed):
            lp_facility.create_lp("bob", MILLION, 2 * MILLION, STRATEGY_ID,
                                  params={'min_pair': Decimal("1500000")})
        assert lp_facility.borrower("bob").debt == MILLION

    def test_insufficient_pair_rolls_back_lp_token(self, lp_facility):
        before = lp_facility.ledger.clone()
        with pytest.raises(ExternalCallFailed):
            lp_facility.create_lp("bob", MILLION, Decimal("2000000000000"), STRATEGY_ID)
        assert LP not in lp_facility.ledger.units
        assert ledger_state_equals(before, lp_facility.ledger)

    def test_impossible_leftover_rejected(self, lp_facility):
        bad = OverreportingStrategy("bad", POOL_WALLET, PAIR)
        lp_facility.whitelist_strategy(GOV, bad)
        with pytest.raises(StrategyFailed):
            lp_facility.create_lp("bob", MILLION, MILLION, "bad")
        assert lp_facility.borrower("bob").debt == 0


# ============================================================================
# REMOVE LP
# ============================================================================

class TestRemoveLp:
    """Tests for remove_lp."""

    def test_partial_unwind_repays_debt(self, lp_facility):
        lp_facility.create_lp("bob", MILLION, MILLION, STRATEGY_ID)
        half = MILLION / 2
        lp_facility.remove_lp("bob", half, STRATEGY_ID, LP)

        record = lp_facility.borrower("bob")
        assert record.debt == half
        assert record.lp_positions == {LP: half}
        ledger = lp_facility.ledger
        assert ledger.get_balance(FACILITY_WALLET, LP) == half
        assert ledger.get_balance(POOL_WALLET, DEBT) == half
        assert ledger.get_balance("bob", PAIR) == Decimal("1000000000000") - half
        assert ledger.notification_log[-1] == LpRemoved(
            "bob", STRATEGY_ID, LP, half, half, Decimal("0"), half
        )

    def test_excess_ohm_goes_to_borrower(self, lp_facility):
        lp_facility.create_lp("bob", MILLION, MILLION, STRATEGY_ID)
        lp_facility.ledger.set_balance("bob", DEBT, Decimal("600000"))
        lp_facility.repay_debt_with_ohm("bob", Decimal("600000"))
        lp_facility.remove_lp("bob", MILLION, STRATEGY_ID, LP)

        record = lp_facility.borrower("bob")
        assert record.debt == 0
        assert record.lp_positions == {}
        assert lp_facility.ledger.get_balance("bob", DEBT) == Decimal("600000")
        assert lp_facility.ledger.get_balance(SYSTEM_WALLET, LP) == 0
        assert lp_facility.ledger.notification_log[-1].ohm_to_borrower == Decimal("600000")

    def test_more_than_position_rejected(self, lp_facility):
        lp_facility.create_lp("bob", MILLION, MILLION, STRATEGY_ID)
        with pytest.raises(AmountAboveBorrowerBalance):
            lp_facility.remove_lp("bob", MILLION + 1, STRATEGY_ID, LP)

    def test_unknown_lp_token_rejected(self, lp_facility):
        lp_facility.create_lp("bob", MILLION, MILLION, STRATEGY_ID)
        with pytest.raises(AmountAboveBorrowerBalance):
            lp_facility.remove_lp("bob", Decimal("1"), STRATEGY_ID, "LP_other")

    def test_min_ohm_enforced(self, lp_facility):
        lp_facility.create_lp("bob", MILLION, MILLION, STRATEGY_ID)
        with pytest.raises(StrategyFailed):
            lp_facility.remove_lp("bob", MILLION, STRATEGY_ID, LP, params={'min_ohm': 2 * MILLION})
        assert lp_facility.borrower("bob").debt == MILLION


# ============================================================================
# REGISTRY
# ============================================================================

class TestStrategyRegistry:
    """Tests for StrategyRegistry."""

    def test_register_and_get(self):
        registry = StrategyRegistry()
        strategy = ConstantProductStrategy("b", POOL_WALLET, PAIR)
        registry.register(strategy)
        registry.register(strategy)
        assert registry.get("b") is strategy
        assert "b" in registry
        assert len(registry) == 1

    def test_conflicting_handle_rejected(self):
        registry = StrategyRegistry()
        registry.register(ConstantProductStrategy("b", POOL_WALLET, PAIR))
        with pytest.raises(ValueError):
            registry.register(ConstantProductStrategy("b", "other_pool", PAIR))

    def test_missing_handle(self):
        with pytest.raises(StrategyUnauthorized):
            StrategyRegistry().get("missing")

    def test_iterates_in_order(self):
        registry = StrategyRegistry()
        for sid in ("c", "a", "b"):
            registry.register(ConstantProductStrategy(sid, POOL_WALLET, PAIR))
        assert list(registry) == ["a", "b", "c"]

    def test_conflicting_whitelist_changes_nothing(self, lp_facility):
        before = lp_facility.ledger.clone()
        with pytest.raises(ValueError):
            lp_facility.whitelist_strategy(GOV, ConstantProductStrategy(STRATEGY_ID, POOL_WALLET, PAIR))
        assert ledger_state_equals(before, lp_facility.ledger)

"""
debt_ledger - Collateralized Debt Facility on a Double-Entry Ledger

Governance allow-lists borrowers, borrowers deposit rebasing collateral and
draw the debt asset under a per-borrower and a global limit, and governance
can force-repay or seize a position. LP borrowers draw debt through
whitelisted liquidity strategies.

Usage:
    from debt_ledger import (
        Ledger, DebtFacility, StaticAuthority,
        create_rebasing_token, create_debt_token, create_debt_facility,
    )

    ledger = Ledger("main")
    ledger.register_unit(create_rebasing_token("sOHM", "Staked OHM"))
    ledger.register_unit(create_debt_token("OHM", "Olympus"))
    ledger.register_wallet("facility")
    ledger.register_unit(create_debt_facility(
        "INCUR_DEBT", "Incur Debt", "sOHM", "OHM", "facility",
    ))
    ledger.register_wallet("alice")

    facility = DebtFacility(ledger, "INCUR_DEBT", StaticAuthority({"gov"}))
    facility.set_global_debt_limit("gov", Decimal("2000000000000"))
    facility.allow_borrower("gov", "alice", is_non_lp=True, is_lp=False)
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    empty_pending_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    SYSTEM_WALLET,
    UNIT_TYPE_REBASING_TOKEN,
    UNIT_TYPE_DEBT_TOKEN,
    UNIT_TYPE_DEBT_FACILITY,
    UNIT_TYPE_LP_TOKEN,
    to_amount,
    # Ledger errors
    LedgerError,
    InsufficientFunds,
    BalanceConstraintViolation,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    # Facility errors
    FacilityError,
    Unauthorized,
    NotBorrower,
    AlreadyBorrower,
    BothParamsCannotBeTrue,
    AboveGlobalDebtLimit,
    AboveBorrowersDebtLimit,
    LimitBelowOutstandingDebt,
    OHMAmountMoreThanAvailableLoan,
    InvalidNumber,
    AmountAboveBorrowerBalance,
    BorrowerHasNoOutstandingDebt,
    BorrowerStillHasOutstandingDebt,
    StrategyUnauthorized,
    ReentrantCall,
    ExternalCallFailed,
)

# Ledger
from .ledger import Ledger

# Valuation
from .valuation import (
    UNIT_DECIMAL_PLACES,
    RateSource,
    TokenIndexRateSource,
    StaticRateSource,
    MonotonicRateSource,
    RateDecreased,
    units_to_redeemable,
    redeemable_to_units,
)

# Notifications
from . import notifications

# Units
from .units import (
    create_rebasing_token,
    balance_of,
    compute_rebase,
    compute_rebase_by_growth,
    compute_token_transfer,
    create_debt_token,
    outstanding_supply,
    compute_set_mint_ceiling,
    compute_mint,
    compute_burn,
    BorrowerKind,
    BorrowerRecord,
    create_debt_facility,
    load_debt_facility,
    verify_facility_invariants,
)

# Strategies
from .strategies import (
    Strategy,
    StrategyRegistry,
    StrategyFailed,
    ConstantProductStrategy,
)

# Engine
from .facility_engine import DebtFacility, Authority, StaticAuthority

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'empty_pending_transaction', 'Unit', 'UnitStateChange', 'ExecuteResult',
    'SYSTEM_WALLET', 'UNIT_TYPE_REBASING_TOKEN', 'UNIT_TYPE_DEBT_TOKEN',
    'UNIT_TYPE_DEBT_FACILITY', 'UNIT_TYPE_LP_TOKEN', 'to_amount',
    'LedgerError', 'InsufficientFunds', 'BalanceConstraintViolation', 'TransferRuleViolation',
    'UnitNotRegistered', 'WalletNotRegistered',
    'FacilityError', 'Unauthorized', 'NotBorrower', 'AlreadyBorrower', 'BothParamsCannotBeTrue',
    'AboveGlobalDebtLimit', 'AboveBorrowersDebtLimit', 'LimitBelowOutstandingDebt',
    'OHMAmountMoreThanAvailableLoan', 'InvalidNumber', 'AmountAboveBorrowerBalance',
    'BorrowerHasNoOutstandingDebt', 'BorrowerStillHasOutstandingDebt', 'StrategyUnauthorized',
    'ReentrantCall', 'ExternalCallFailed',
    # Ledger
    'Ledger',
    # Valuation
    'UNIT_DECIMAL_PLACES', 'RateSource', 'TokenIndexRateSource', 'StaticRateSource',
    'MonotonicRateSource', 'RateDecreased', 'units_to_redeemable', 'redeemable_to_units',
    # Notifications
    'notifications',
    # Units
    'create_rebasing_token', 'balance_of', 'compute_rebase', 'compute_rebase_by_growth',
    'compute_token_transfer', 'create_debt_token', 'outstanding_supply',
    'compute_set_mint_ceiling', 'compute_mint', 'compute_burn',
    'BorrowerKind', 'BorrowerRecord', 'create_debt_facility', 'load_debt_facility',
    'verify_facility_invariants',
    # Strategies
    'Strategy', 'StrategyRegistry', 'StrategyFailed', 'ConstantProductStrategy',
    # Engine
    'DebtFacility', 'Authority', 'StaticAuthority',
]

__version__ = '1.0.0'

"""
Units module - Factory functions and operations for the facility's units.

- Rebasing collateral token (accounting units with a rebase index)
- Debt asset with a mint ceiling
- Debt facility (borrower registry and debt ledger)

All unit factories and related functions are re-exported here for convenience.
"""

# Rebasing collateral
from .rebasing_token import (
    create_rebasing_token,
    get_index,
    balance_of,
    compute_rebase,
    compute_rebase_by_growth,
    compute_token_transfer,
)

# Debt asset
from .debt_token import (
    create_debt_token,
    outstanding_supply,
    mint_ceiling_rule,
    compute_set_mint_ceiling,
    compute_mint,
    compute_burn,
)

# Debt facility
from .debt_facility import (
    BorrowerKind,
    BorrowerRecord,
    FacilityTerms,
    FacilityState,
    create_debt_facility,
    load_debt_facility,
    to_state_dict,
    calculate_available_to_borrow,
    calculate_withdrawable_collateral,
    calculate_collateral_payment,
    calculate_invariant_violations,
    get_borrower,
    compute_available_to_borrow,
    compute_withdrawable_collateral,
    compute_redeemable_collateral,
    verify_facility_invariants,
    compute_set_global_debt_limit,
    compute_allow_borrower,
    compute_set_borrower_debt_limit,
    compute_revoke_borrower,
    compute_whitelist_strategy,
    compute_remove_strategy,
    compute_deposit,
    compute_borrow,
    compute_withdraw,
    compute_repay_debt_with_collateral,
    compute_repay_debt_with_collateral_and_withdraw_the_rest,
    compute_repay_debt_with_ohm,
    compute_force_repay,
    compute_seize,
)

__all__ = [
    # Rebasing collateral
    'create_rebasing_token',
    'get_index',
    'balance_of',
    'compute_rebase',
    'compute_rebase_by_growth',
    'compute_token_transfer',
    # Debt asset
    'create_debt_token',
    'outstanding_supply',
    'mint_ceiling_rule',
    'compute_set_mint_ceiling',
    'compute_mint',
    'compute_burn',
    # Debt facility
    'BorrowerKind',
    'BorrowerRecord',
    'FacilityTerms',
    'FacilityState',
    'create_debt_facility',
    'load_debt_facility',
    'to_state_dict',
    'calculate_available_to_borrow',
    'calculate_withdrawable_collateral',
    'calculate_collateral_payment',
    'calculate_invariant_violations',
    'get_borrower',
    'compute_available_to_borrow',
    'compute_withdrawable_collateral',
    'compute_redeemable_collateral',
    'verify_facility_invariants',
    'compute_set_global_debt_limit',
    'compute_allow_borrower',
    'compute_set_borrower_debt_limit',
    'compute_revoke_borrower',
    'compute_whitelist_strategy',
    'compute_remove_strategy',
    'compute_deposit',
    'compute_borrow',
    'compute_withdraw',
    'compute_repay_debt_with_collateral',
    'compute_repay_debt_with_collateral_and_withdraw_the_rest',
    'compute_repay_debt_with_ohm',
    'compute_force_repay',
    'compute_seize',
]

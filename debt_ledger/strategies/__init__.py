"""
strategies - Liquidity strategies reachable through the facility's gateway.

LP borrowers draw debt only through a whitelisted strategy, which pairs the
minted debt asset with the borrower's pair asset and returns LP tokens into
facility custody.

Available strategies:
- constant_product: x*y=k pool used as the reference strategy
"""

from .gateway import (
    Strategy,
    StrategyRegistry,
    StrategyFailed,
    LiquidityRequest,
    StrategyResult,
    UnwindRequest,
    UnwindResult,
    compute_create_lp,
    compute_remove_lp,
)
from .constant_product import ConstantProductStrategy, create_lp_token

__all__ = [
    'Strategy',
    'StrategyRegistry',
    'StrategyFailed',
    'LiquidityRequest',
    'StrategyResult',
    'UnwindRequest',
    'UnwindResult',
    'compute_create_lp',
    'compute_remove_lp',
    'ConstantProductStrategy',
    'create_lp_token',
]

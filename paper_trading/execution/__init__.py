"""Trade execution simulation.

Resolves virtual swaps with simulated latency, failures, slippage and gas.
"""

from paper_trading.execution.simulator import (
    DEFAULT_FAILURE_TYPES,
    TradeExecutionSimulator,
)

__all__ = [
    'TradeExecutionSimulator',
    'DEFAULT_FAILURE_TYPES',
]

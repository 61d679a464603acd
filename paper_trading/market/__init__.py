"""Synthetic market: prices, regime detection, spread and liquidity."""

from paper_trading.market.state import MarketState

__all__ = [
    'MarketState',
]

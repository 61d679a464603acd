"""Virtual portfolio ledger."""

from paper_trading.portfolio.ledger import PortfolioLedger, ValuePoint

__all__ = [
    'PortfolioLedger',
    'ValuePoint',
]

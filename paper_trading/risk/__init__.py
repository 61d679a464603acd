"""Risk and performance analytics for the paper trading engine.

This module provides:
- Performance counters (success/win rate, profit factor, streaks)
- Opt-in risk metrics (Sharpe, drawdown, VaR, beta, concentration)
- P&L and risk attribution
- Informational risk-limit alerts
- Session reports
"""

from paper_trading.risk.analytics import RiskAnalytics
from paper_trading.risk.reporting import (
    MarketImpactEstimate,
    PortfolioMetrics,
    TradingReport,
    calculate_max_drawdown,
    calculate_optimal_order_size,
    calculate_portfolio_metrics,
    calculate_trade_returns,
    classify_trading_risk,
    generate_trading_report,
    simulate_market_impact,
)

__all__ = [
    'RiskAnalytics',
    'MarketImpactEstimate',
    'PortfolioMetrics',
    'TradingReport',
    'calculate_max_drawdown',
    'calculate_optimal_order_size',
    'calculate_portfolio_metrics',
    'calculate_trade_returns',
    'classify_trading_risk',
    'generate_trading_report',
    'simulate_market_impact',
]

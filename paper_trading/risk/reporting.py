"""
Trading report helpers.

Produces session summaries from a portfolio snapshot:
- Per-trade returns and trade-sequence drawdown
- Headline portfolio metrics
- Sizing and market impact rules of thumb
- Risk classification and a text/markdown report
"""

from dataclasses import dataclass, field
from typing import List, Sequence

import numpy as np

from paper_trading.core.models import Portfolio, Trade, TradeStatus


@dataclass
class PortfolioMetrics:
    """Headline numbers for a session. Rates are percentages."""
    total_value_usd: float
    profit_loss_ratio: float
    sharpe_ratio: float
    max_drawdown: float  # fraction
    win_rate: float
    avg_trade_size: float


@dataclass
class MarketImpactEstimate:
    price_impact: float
    adjusted_price: float


@dataclass
class TradingReport:
    """Summary, recommendations and a coarse risk assessment."""
    summary: str
    recommendations: List[str] = field(default_factory=list)
    risk_assessment: str = "medium"  # low / medium / high
    risk_profile: str = "speculative"

    def to_markdown(self) -> str:
        lines = ["# Paper Trading Report", ""]
        lines.append("## Summary")
        lines.append("")
        lines.append("```")
        lines.append(self.summary)
        lines.append("```")
        lines.append("")
        lines.append(f"**Risk Assessment:** {self.risk_assessment}")
        lines.append(f"**Risk Profile:** {self.risk_profile}")
        lines.append("")
        lines.append("## Recommendations")
        lines.append("")
        if self.recommendations:
            for recommendation in self.recommendations:
                lines.append(f"- {recommendation}")
        else:
            lines.append("- None")
        return "\n".join(lines)


def calculate_trade_returns(trades: Sequence[Trade]) -> List[float]:
    """USD return of each completed trade: realized P&L over input value."""
    return [t.trade_return for t in trades if t.status == TradeStatus.COMPLETED]


def calculate_max_drawdown(trades: Sequence[Trade]) -> float:
    """Peak-to-trough drawdown (fraction) of cumulative realized P&L."""
    completed = [t for t in trades if t.status == TradeStatus.COMPLETED]
    if not completed:
        return 0.0

    cumulative = np.cumsum([float(t.realized_pnl) for t in completed])
    peak = np.maximum.accumulate(np.maximum(cumulative, 0.0))
    with np.errstate(divide="ignore", invalid="ignore"):
        drawdowns = np.where(peak > 0, (peak - cumulative) / peak, 0.0)
    return float(drawdowns.max())


def calculate_portfolio_metrics(portfolio: Portfolio) -> PortfolioMetrics:
    returns = np.array(calculate_trade_returns(portfolio.trades), dtype=float)
    if len(returns) and returns.std() > 0:
        sharpe = float(returns.mean() / returns.std())
    else:
        sharpe = 0.0

    performance = portfolio.performance
    return PortfolioMetrics(
        total_value_usd=float(portfolio.total_value),
        profit_loss_ratio=float(performance.profit_factor),
        sharpe_ratio=round(sharpe, 4),
        max_drawdown=round(calculate_max_drawdown(portfolio.trades), 4),
        win_rate=performance.win_rate * 100,
        avg_trade_size=float(performance.average_trade_size),
    )


def simulate_market_impact(amount_usd: float, volatility: float = 0.02) -> MarketImpactEstimate:
    """Square-root impact model plus a volatility adjustment."""
    base_impact = np.sqrt(max(amount_usd, 0.0) / 100000) * 0.001
    price_impact = round(float(base_impact + volatility * 0.5), 6)
    return MarketImpactEstimate(price_impact=price_impact, adjusted_price=1 - price_impact)


def calculate_optimal_order_size(portfolio_value: float, risk_tolerance: float = 0.02) -> float:
    """Order size between $100 and 10% of the portfolio."""
    optimal = portfolio_value * risk_tolerance
    return max(100.0, min(optimal, portfolio_value * 0.1))


def classify_trading_risk(win_rate: float, max_drawdown: float, profit_factor: float) -> str:
    """
    Classify a trading profile.

    Args:
        win_rate: Win rate in percent
        max_drawdown: Max drawdown as a fraction
        profit_factor: Gross profit over gross loss

    Returns:
        One of conservative, moderate, aggressive, speculative
    """
    if win_rate >= 60 and max_drawdown <= 0.1 and profit_factor >= 1.5:
        return "conservative"
    if win_rate >= 50 and max_drawdown <= 0.2 and profit_factor >= 1.2:
        return "moderate"
    if win_rate >= 40 and max_drawdown <= 0.3 and profit_factor >= 1.0:
        return "aggressive"
    return "speculative"


def generate_trading_report(portfolio: Portfolio) -> TradingReport:
    metrics = calculate_portfolio_metrics(portfolio)
    performance = portfolio.performance

    risk_assessment = "medium"
    if metrics.max_drawdown > 0.2:
        risk_assessment = "high"
    elif metrics.max_drawdown < 0.1 and metrics.sharpe_ratio > 1:
        risk_assessment = "low"

    recommendations = []
    if metrics.win_rate < 50:
        recommendations.append("Consider improving trade selection criteria")
    if metrics.sharpe_ratio < 0.5:
        recommendations.append("Focus on risk-adjusted returns")
    if metrics.max_drawdown > 0.15:
        recommendations.append("Implement better risk management")
    if performance.total_trades < 10:
        recommendations.append("Increase sample size for better statistics")

    summary = "\n".join([
        "Portfolio Performance Summary:",
        f"- Total Value: ${metrics.total_value_usd:,.2f}",
        f"- Win Rate: {metrics.win_rate:.1f}%",
        f"- Profit Factor: {metrics.profit_loss_ratio:.2f}",
        f"- Sharpe Ratio: {metrics.sharpe_ratio}",
        f"- Max Drawdown: {metrics.max_drawdown * 100:.1f}%",
        f"- Total Trades: {performance.total_trades}",
        f"- Success Rate: {performance.success_rate * 100:.1f}%",
    ])

    return TradingReport(
        summary=summary,
        recommendations=recommendations,
        risk_assessment=risk_assessment,
        risk_profile=classify_trading_risk(
            metrics.win_rate, metrics.max_drawdown, metrics.profit_loss_ratio
        ),
    )

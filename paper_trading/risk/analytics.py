"""Risk and performance analytics.

Everything here is derived from trade history, balances and the portfolio
value series. Nothing in this module mutates the ledger. Risk alerts are
informational: they are reported to subscribers and never block trades.
"""
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import structlog

from paper_trading.core.config import EngineSettings, SimulationConfig
from paper_trading.core.models import (AttributionBreakdown, ExposureMetrics,
                                       PerformanceMetrics, Portfolio, RiskAlert,
                                       RiskAlertType, RiskLevel, RiskMetrics,
                                       Trade, TradeStatus)
from paper_trading.utils.precision import ZERO, quantize_amount

logger = structlog.get_logger(__name__)

INFINITY = Decimal("Infinity")


class RiskAnalytics:
    """
    Computes performance counters, risk metrics, exposure and attribution.

    Risk metrics are opt-in: each one requires ``advanced_analytics.enabled``
    and its own flag, otherwise it stays at zero.
    """

    def __init__(self, config: SimulationConfig, settings: Optional[EngineSettings] = None):
        self.analytics = config.advanced_analytics
        self.limits = config.risk_management
        self.settings = settings or EngineSettings()

    # =========================================================================
    # Performance
    # =========================================================================

    def compute_performance(
        self,
        trades: Sequence[Trade],
        successful: int,
        failed: int,
        cancelled: int,
    ) -> PerformanceMetrics:
        """Aggregate counters plus win/loss statistics over completed trades."""
        total = successful + failed + cancelled
        completed = sorted(
            (t for t in trades if t.status == TradeStatus.COMPLETED),
            key=lambda t: t.executed_at or t.created_at,
        )

        pnls = [t.realized_pnl for t in completed]
        wins = [p for p in pnls if p > 0]
        losses = [-p for p in pnls if p < 0]
        total_profit = sum(wins, ZERO)
        total_loss = sum(losses, ZERO)

        if total_loss > 0:
            profit_factor = quantize_amount(total_profit / total_loss)
        elif total_profit > 0:
            profit_factor = INFINITY
        else:
            profit_factor = ZERO

        sizes = [t.value_in_usd for t in completed]
        if sizes:
            average_size = quantize_amount(sum(sizes, ZERO) / len(sizes))
            median_size = quantize_amount(self._median(sizes))
        else:
            average_size = median_size = ZERO

        current_streak, max_wins, max_losses = self._streaks(pnls)

        return PerformanceMetrics(
            total_trades=total,
            successful_trades=successful,
            failed_trades=failed,
            cancelled_trades=cancelled,
            success_rate=successful / total if total else 0.0,
            win_rate=len(wins) / len(completed) if completed else 0.0,
            total_profit=total_profit,
            total_loss=total_loss,
            net_profit=total_profit - total_loss,
            profit_factor=profit_factor,
            average_trade_size=average_size,
            median_trade_size=median_size,
            largest_win=max(wins, default=ZERO),
            largest_loss=max(losses, default=ZERO),
            current_streak=current_streak,
            max_consecutive_wins=max_wins,
            max_consecutive_losses=max_losses,
        )

    @staticmethod
    def _median(values: List[Decimal]) -> Decimal:
        ordered = sorted(values)
        mid = len(ordered) // 2
        if len(ordered) % 2:
            return ordered[mid]
        return (ordered[mid - 1] + ordered[mid]) / 2

    @staticmethod
    def _streaks(pnls: Iterable[Decimal]) -> Tuple[int, int, int]:
        """Current streak (+wins / -losses) and longest win and loss runs."""
        current = max_wins = max_losses = 0
        for pnl in pnls:
            if pnl > 0:
                current = current + 1 if current > 0 else 1
                max_wins = max(max_wins, current)
            elif pnl < 0:
                current = current - 1 if current < 0 else -1
                max_losses = max(max_losses, -current)
            else:
                current = 0
        return current, max_wins, max_losses

    # =========================================================================
    # Risk metrics
    # =========================================================================

    @staticmethod
    def trade_returns(trades: Sequence[Trade]) -> np.ndarray:
        return np.array(
            [t.trade_return for t in trades if t.status == TradeStatus.COMPLETED],
            dtype=float,
        )

    def compute_risk_metrics(
        self,
        trades: Sequence[Trade],
        max_drawdown: float,
        current_drawdown: float,
        value_history: Sequence,
        exposure: ExposureMetrics,
    ) -> RiskMetrics:
        metrics = RiskMetrics()
        if not self.analytics.enabled:
            return metrics

        returns = self.trade_returns(trades)
        metrics.concentration_risk = exposure.herfindahl_index
        if len(returns) >= 2:
            metrics.volatility = float(np.std(returns))

        if self.analytics.wants("calculate_sharpe_ratio"):
            metrics.sharpe_ratio = self.sharpe_ratio(returns)

        if self.analytics.wants("calculate_max_drawdown"):
            metrics.max_drawdown = max_drawdown
            metrics.current_drawdown = current_drawdown

        if self.analytics.wants("calculate_var"):
            metrics.value_at_risk_95 = self.value_at_risk(returns)

        if self.analytics.wants("calculate_beta"):
            metrics.beta, metrics.correlation = self.market_beta(value_history)

        return metrics

    @staticmethod
    def sharpe_ratio(returns: np.ndarray) -> float:
        """Mean over population std of per-trade returns (not annualized)."""
        if len(returns) < 2:
            return 0.0
        std = float(np.std(returns))
        if std == 0:
            return 0.0
        return float(np.mean(returns)) / std

    @staticmethod
    def value_at_risk(returns: np.ndarray, confidence: float = 0.95) -> float:
        """Historical VaR as a positive loss fraction."""
        if len(returns) == 0:
            return 0.0
        cutoff = float(np.percentile(returns, (1 - confidence) * 100))
        return max(0.0, -cutoff)

    @staticmethod
    def market_beta(value_history: Sequence) -> Tuple[float, float]:
        """Beta and correlation of portfolio value returns vs the market index."""
        if len(value_history) < 3:
            return 0.0, 0.0

        df = pd.DataFrame(
            [(float(p.total_value), float(p.market_index)) for p in value_history],
            columns=["portfolio", "market"],
        )
        returns = df.pct_change(fill_method=None).replace([np.inf, -np.inf], np.nan).dropna()
        if len(returns) < 2:
            return 0.0, 0.0

        market_var = returns["market"].var()
        if not market_var or np.isnan(market_var):
            return 0.0, 0.0

        beta = returns["portfolio"].cov(returns["market"]) / market_var
        correlation = returns["portfolio"].corr(returns["market"])
        beta = 0.0 if np.isnan(beta) else float(beta)
        correlation = 0.0 if np.isnan(correlation) else float(correlation)
        return beta, correlation

    # =========================================================================
    # Exposure and attribution
    # =========================================================================

    @staticmethod
    def compute_exposure(
        balances: Mapping[str, Decimal], prices: Mapping[str, Decimal]
    ) -> ExposureMetrics:
        values = {
            asset: float(amount * prices.get(asset, ZERO))
            for asset, amount in balances.items()
        }
        total = sum(values.values())
        if total <= 0:
            return ExposureMetrics()

        weights = {asset: value / total for asset, value in values.items() if value > 0}
        largest = max(weights, key=weights.get)
        return ExposureMetrics(
            weights=weights,
            largest_position=largest,
            largest_position_pct=weights[largest] * 100,
            herfindahl_index=float(sum(w * w for w in weights.values())),
        )

    def compute_attribution(
        self,
        trades: Sequence[Trade],
        exposure: ExposureMetrics,
        volatility: Callable[[str], float],
    ) -> AttributionBreakdown:
        attribution = AttributionBreakdown()
        if self.analytics.wants("performance_attribution"):
            completed = [t for t in trades if t.status == TradeStatus.COMPLETED]
            if completed:
                df = pd.DataFrame({
                    "pair": [t.pair for t in completed],
                    "hour": [(t.executed_at or t.created_at).strftime("%H:00") for t in completed],
                    "pnl": [t.realized_pnl for t in completed],
                })
                attribution.pnl_by_pair = self._sum_by(df, "pair")
                attribution.pnl_by_hour = self._sum_by(df, "hour")

        if self.analytics.wants("risk_attribution_analysis") and exposure.weights:
            raw = {
                asset: weight * volatility(asset)
                for asset, weight in exposure.weights.items()
            }
            total = sum(raw.values())
            if total > 0:
                attribution.risk_by_asset = {a: r / total for a, r in raw.items()}
        return attribution

    @staticmethod
    def _sum_by(df: pd.DataFrame, key: str) -> Dict[str, Decimal]:
        grouped = df.groupby(key)["pnl"].agg(lambda s: sum(s, ZERO))
        return {str(k): v for k, v in grouped.items()}

    # =========================================================================
    # Risk limits
    # =========================================================================

    def _severity(self, value: float, limit: float) -> RiskLevel:
        if limit > 0 and value >= limit * self.settings.critical_limit_multiple:
            return RiskLevel.CRITICAL
        return RiskLevel.WARNING

    def _alert(self, alert_type: RiskAlertType, value: float, limit: float,
               message: str, now: datetime) -> RiskAlert:
        alert = RiskAlert(
            type=alert_type,
            severity=self._severity(value, limit),
            value=value,
            limit=limit,
            message=message,
            timestamp=now,
        )
        logger.warning("risk.limit_breached", alert_type=alert_type.value,
                       severity=alert.severity.value, value=round(value, 6), limit=limit)
        return alert

    def check_risk_limits(
        self,
        portfolio: Portfolio,
        max_drawdown: float,
        correlation: float,
        now: datetime,
    ) -> List[RiskAlert]:
        """Compare the portfolio against every configured limit."""
        if not self.limits.enabled:
            return []

        alerts: List[RiskAlert] = []

        daily_loss = float(-portfolio.pnl.daily)
        if daily_loss > self.limits.max_daily_loss:
            alerts.append(self._alert(
                RiskAlertType.DAILY_LOSS, daily_loss, self.limits.max_daily_loss,
                f"Daily loss ${daily_loss:.2f} exceeds limit ${self.limits.max_daily_loss:.2f}",
                now,
            ))

        if max_drawdown > self.limits.max_drawdown:
            alerts.append(self._alert(
                RiskAlertType.DRAWDOWN, max_drawdown, self.limits.max_drawdown,
                f"Drawdown {max_drawdown:.2f}% exceeds limit {self.limits.max_drawdown:.2f}%",
                now,
            ))

        concentration = portfolio.exposure.herfindahl_index * 100
        if concentration > self.limits.concentration_limit:
            alerts.append(self._alert(
                RiskAlertType.CONCENTRATION, concentration, self.limits.concentration_limit,
                f"Concentration {concentration:.1f} exceeds limit "
                f"{self.limits.concentration_limit:.1f}",
                now,
            ))

        if abs(correlation) > self.limits.correlation_limit:
            alerts.append(self._alert(
                RiskAlertType.CORRELATION, abs(correlation), self.limits.correlation_limit,
                f"Market correlation {correlation:.2f} exceeds limit "
                f"{self.limits.correlation_limit:.2f}",
                now,
            ))

        return alerts

    def position_size_alert(self, trade_value: Decimal, portfolio_value: Decimal,
                            now: datetime) -> Optional[RiskAlert]:
        """Alert when a single trade is larger than ``max_position_size``%."""
        if not self.limits.enabled or portfolio_value <= 0:
            return None
        size_pct = float(trade_value / portfolio_value * 100)
        if size_pct <= self.limits.max_position_size:
            return None
        return self._alert(
            RiskAlertType.POSITION_SIZE, size_pct, self.limits.max_position_size,
            f"Trade is {size_pct:.1f}% of portfolio, limit "
            f"{self.limits.max_position_size:.1f}%",
            now,
        )

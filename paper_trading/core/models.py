"""Data models for the paper trading engine.

This module defines the structures shared across the simulator:
- Market: regime classification and per-trade market snapshots
- Trades: the virtual swap record and its lifecycle
- Portfolio: balances, P&L, performance counters, risk metrics, attribution
- Alerts: informational risk-limit violations

All monetary values use Decimal for precision.
All timestamps are timezone-aware UTC datetime objects supplied by the
engine's clock.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from paper_trading.core.errors import TradeStateError


# =============================================================================
# Enums
# =============================================================================

class MarketRegime(str, Enum):
    """Coarse classification of current market behaviour."""
    BULL = "bull"
    BEAR = "bear"
    SIDEWAYS = "sideways"
    VOLATILE = "volatile"


class TradeType(str, Enum):
    """Trade type. The simulator only executes swaps."""
    BUY = "buy"
    SELL = "sell"
    SWAP = "swap"


class TradeStatus(str, Enum):
    """Trade lifecycle. Every status other than PENDING is terminal."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FailureKind(str, Enum):
    """Why a trade did not complete."""
    INSUFFICIENT_BALANCE = "InsufficientBalance"
    SLIPPAGE_EXCEEDED = "SlippageExceeded"
    SIMULATED_FAILURE = "SimulatedFailure"
    CANCELLED = "Cancelled"


class RiskLevel(str, Enum):
    """Risk alert severity levels."""
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class RiskAlertType(str, Enum):
    """Which configured limit an alert refers to."""
    DAILY_LOSS = "daily_loss"
    DRAWDOWN = "drawdown"
    CONCENTRATION = "concentration"
    CORRELATION = "correlation"
    POSITION_SIZE = "position_size"


# =============================================================================
# Market Models
# =============================================================================

class RegimeState(BaseModel):
    """Current market regime with a bounded confidence score."""

    regime: MarketRegime = MarketRegime.SIDEWAYS
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    started_at: datetime
    duration_seconds: float = Field(default=0.0, ge=0.0)


class MarketSnapshot(BaseModel):
    """Market conditions captured when a trade is submitted.

    Attributes:
        regime: Market regime at submission
        regime_confidence: Confidence of the regime classification (0-1)
        spread: Estimated bid-ask spread for the pair, in percent
        liquidity_score: Pair liquidity estimate (0-1)
        volatility: Per-tick volatility of the output asset
        risk_score: Composite trade risk (0-1)
        confidence_score: Execution confidence derived from risk and liquidity (0-1)
        price_in: Price of the input asset
        price_out: Price of the output asset
        order_book_depth: Estimated depth of the pair in USD
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    regime: MarketRegime
    regime_confidence: float = Field(..., ge=0.0, le=1.0)
    spread: Decimal = Field(default=Decimal("0"), ge=0)
    liquidity_score: float = Field(..., ge=0.0, le=1.0)
    volatility: float = Field(default=0.0, ge=0.0)
    risk_score: float = Field(..., ge=0.0, le=1.0)
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    price_in: Decimal
    price_out: Decimal
    order_book_depth: Decimal = Field(default=Decimal("0"), ge=0)


# =============================================================================
# Trade Models
# =============================================================================

class Trade(BaseModel):
    """A virtual swap and its full execution record.

    A trade is created ``pending`` and resolved exactly once through
    ``complete()``, ``fail()`` or ``cancel()``. Resolving a terminal trade
    raises ``TradeStateError``.
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    # Identification
    id: str = Field(default_factory=lambda: f"paper_{uuid4().hex}")
    type: TradeType = TradeType.SWAP
    tx_hash: str = ""

    # Order
    asset_in: str
    asset_out: str
    amount_in: Decimal = Field(..., gt=0)
    min_amount_out: Decimal = Field(default=Decimal("0"), ge=0)
    max_slippage: Decimal = Field(default=Decimal("0.5"), ge=0)

    # Execution result
    amount_out: Decimal = Decimal("0")
    expected_amount_out: Decimal = Decimal("0")
    slippage: Decimal = Decimal("0")
    market_impact: Decimal = Decimal("0")

    # Gas
    gas_estimate: int = 0
    gas_used: int = 0
    gas_price_gwei: Decimal = Decimal("0")
    gas_cost_usd: Decimal = Decimal("0")

    # Status
    status: TradeStatus = TradeStatus.PENDING
    failure_reason: Optional[str] = None
    failure_kind: Optional[FailureKind] = None

    # Timestamps
    created_at: datetime
    executed_at: Optional[datetime] = None
    latency_ms: float = 0.0

    # Market conditions at submission
    snapshot: MarketSnapshot

    # Valuation, fixed at commit time
    value_in_usd: Decimal = Decimal("0")
    value_out_usd: Decimal = Decimal("0")
    realized_pnl: Decimal = Decimal("0")

    # Ledger generation the trade was submitted under (bumped by reset)
    generation: int = 0

    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def pair(self) -> str:
        return f"{self.asset_in}/{self.asset_out}"

    @property
    def is_terminal(self) -> bool:
        return self.status != TradeStatus.PENDING

    @property
    def is_profitable(self) -> bool:
        return self.status == TradeStatus.COMPLETED and self.realized_pnl > 0

    @property
    def trade_return(self) -> float:
        """Per-trade return: realized P&L over input value."""
        if self.status != TradeStatus.COMPLETED or self.value_in_usd <= 0:
            return 0.0
        return float(self.realized_pnl / self.value_in_usd)

    def _ensure_pending(self) -> None:
        if self.is_terminal:
            raise TradeStateError(
                f"Trade {self.id} is already {self.status.value} and cannot change"
            )

    def complete(
        self,
        amount_out: Decimal,
        slippage: Decimal,
        market_impact: Decimal,
        gas_used: int,
        gas_cost_usd: Decimal,
        value_in_usd: Decimal,
        value_out_usd: Decimal,
        executed_at: datetime,
    ) -> None:
        """Mark the trade as successfully executed."""
        self._ensure_pending()
        self.amount_out = amount_out
        self.slippage = slippage
        self.market_impact = market_impact
        self.gas_used = gas_used
        self.gas_cost_usd = gas_cost_usd
        self.value_in_usd = value_in_usd
        self.value_out_usd = value_out_usd
        self.realized_pnl = value_out_usd - value_in_usd - gas_cost_usd
        self.executed_at = executed_at
        self.status = TradeStatus.COMPLETED

    def fail(self, kind: FailureKind, reason: str, executed_at: datetime,
             slippage: Optional[Decimal] = None) -> None:
        """Mark the trade as failed. Balances are never touched on this path."""
        self._ensure_pending()
        self.failure_kind = kind
        self.failure_reason = reason
        if slippage is not None:
            self.slippage = slippage
        self.executed_at = executed_at
        self.status = TradeStatus.FAILED

    def cancel(self, executed_at: datetime, reason: str = "Cancelled") -> None:
        """Mark the trade as cancelled before execution."""
        self._ensure_pending()
        self.failure_kind = FailureKind.CANCELLED
        self.failure_reason = reason
        self.executed_at = executed_at
        self.status = TradeStatus.CANCELLED


# =============================================================================
# Portfolio Models
# =============================================================================

class PnLBreakdown(BaseModel):
    """Profit and loss in USD."""
    model_config = ConfigDict(json_encoders={Decimal: str})

    realized: Decimal = Decimal("0")
    unrealized: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    daily: Decimal = Decimal("0")
    weekly: Decimal = Decimal("0")
    monthly: Decimal = Decimal("0")


class PerformanceMetrics(BaseModel):
    """Aggregate trade counters and performance statistics.

    Invariant: ``total_trades == successful + failed + cancelled``.
    Rates are ratios in [0, 1].
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    total_trades: int = Field(default=0, ge=0)
    successful_trades: int = Field(default=0, ge=0)
    failed_trades: int = Field(default=0, ge=0)
    cancelled_trades: int = Field(default=0, ge=0)
    success_rate: float = 0.0
    win_rate: float = 0.0
    total_profit: Decimal = Decimal("0")
    total_loss: Decimal = Decimal("0")
    net_profit: Decimal = Decimal("0")
    profit_factor: Decimal = Field(default=Decimal("0"), allow_inf_nan=True)  # Infinity when there are no losses
    average_trade_size: Decimal = Decimal("0")
    median_trade_size: Decimal = Decimal("0")
    largest_win: Decimal = Decimal("0")
    largest_loss: Decimal = Decimal("0")
    current_streak: int = 0  # positive: consecutive wins, negative: losses
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0


class RiskMetrics(BaseModel):
    """Risk statistics. Fields stay at zero unless enabled in analytics config."""

    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0  # percent
    current_drawdown: float = 0.0  # percent
    value_at_risk_95: float = 0.0  # positive loss fraction
    beta: float = 0.0
    correlation: float = 0.0
    concentration_risk: float = 0.0  # Herfindahl index, 0-1
    volatility: float = 0.0  # std of per-trade returns


class ExposureMetrics(BaseModel):
    """Position weights by current value."""

    weights: Dict[str, float] = Field(default_factory=dict)
    largest_position: Optional[str] = None
    largest_position_pct: float = 0.0
    herfindahl_index: float = 0.0


class AttributionBreakdown(BaseModel):
    """Where P&L and risk come from."""
    model_config = ConfigDict(json_encoders={Decimal: str})

    pnl_by_pair: Dict[str, Decimal] = Field(default_factory=dict)
    pnl_by_hour: Dict[str, Decimal] = Field(default_factory=dict)
    risk_by_asset: Dict[str, float] = Field(default_factory=dict)


class Portfolio(BaseModel):
    """Snapshot of the virtual portfolio.

    ``total_value`` is always derived from ``balances`` x current prices.
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    balances: Dict[str, Decimal] = Field(default_factory=dict)
    total_value: Decimal = Decimal("0")
    initial_value: Decimal = Decimal("0")
    pnl: PnLBreakdown = Field(default_factory=PnLBreakdown)
    trades: List[Trade] = Field(default_factory=list)
    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    risk_metrics: RiskMetrics = Field(default_factory=RiskMetrics)
    exposure: ExposureMetrics = Field(default_factory=ExposureMetrics)
    attribution: AttributionBreakdown = Field(default_factory=AttributionBreakdown)
    timestamp: Optional[datetime] = None

    @property
    def completed_trades(self) -> List[Trade]:
        return [t for t in self.trades if t.status == TradeStatus.COMPLETED]

    def balance(self, asset: str) -> Decimal:
        return self.balances.get(asset, Decimal("0"))


# =============================================================================
# Alerts
# =============================================================================

class RiskAlert(BaseModel):
    """A single configured-limit violation. Informational only."""

    type: RiskAlertType
    severity: RiskLevel
    value: float
    limit: float
    message: str = ""
    timestamp: datetime

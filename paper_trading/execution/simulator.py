"""
Trade Execution Simulator.

Turns a swap request into a terminal ``Trade``:

    create (snapshot, TRADE_CREATED)
      -> latency wait (non-blocking, on the engine clock)
      -> simulated failure draw
      -> [ledger lock] balance check -> slippage -> min-out check -> commit
      -> TRADE_COMPLETED / TRADE_FAILED

Every failure path leaves balances untouched. Counters are updated exactly
once per trade id, and ``TRADE_CREATED`` is always published before the
trade's terminal event.
"""

import math
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Set, Tuple

import structlog

from paper_trading.core.config import EngineSettings, SimulationConfig
from paper_trading.core.models import (FailureKind, MarketRegime, MarketSnapshot,
                                       Trade, TradeStatus, TradeType)
from paper_trading.events.bus import EventBus, EventType
from paper_trading.market.state import MarketState
from paper_trading.portfolio.ledger import PortfolioLedger
from paper_trading.risk.analytics import RiskAnalytics
from paper_trading.utils.clock import Clock
from paper_trading.utils.precision import (ZERO, Numeric, clamp_non_negative,
                                           quantize_amount, to_decimal)
from paper_trading.utils.random_source import RandomSource

logger = structlog.get_logger(__name__)


DEFAULT_FAILURE_TYPES = [
    "Network congestion",
    "Gas price too low",
    "Slippage exceeded",
    "Pool liquidity insufficient",
    "Transaction reverted",
    "MEV frontrun",
]

REGIME_RISK = {
    MarketRegime.BULL: 0.02,
    MarketRegime.SIDEWAYS: 0.05,
    MarketRegime.BEAR: 0.10,
    MarketRegime.VOLATILE: 0.15,
}

# Volatility (percent per tick) treated as maximal in the risk score
VOLATILITY_RISK_CEILING = 0.05

GWEI = Decimal("0.000000001")


class TradeExecutionSimulator:
    """
    Resolves swap requests against the synthetic market and the ledger.

    Attributes:
        config: Immutable simulation configuration
        market: Market state providing prices, spread and liquidity
        ledger: Portfolio ledger, mutated only on the commit path
        analytics: Used for position-size alerts at submission
        events: Event bus receiving the trade lifecycle
    """

    def __init__(
        self,
        config: SimulationConfig,
        market: MarketState,
        ledger: PortfolioLedger,
        events: EventBus,
        clock: Clock,
        rng: RandomSource,
        analytics: Optional[RiskAnalytics] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.config = config
        self.market = market
        self.ledger = ledger
        self.events = events
        self.clock = clock
        self.rng = rng
        self.settings = settings or EngineSettings()
        self.analytics = analytics or RiskAnalytics(config, self.settings)

        self._pending: Dict[str, Trade] = {}
        self._cancel_requested: Set[str] = set()
        self._sequence = 0

    # =========================================================================
    # Public API
    # =========================================================================

    @property
    def pending_trades(self) -> List[Trade]:
        return list(self._pending.values())

    def cancel(self, trade_id: str) -> bool:
        """
        Request cancellation of a pending trade.

        The trade resolves as CANCELLED when its latency wait ends. Returns
        False if the id is unknown or the trade has already resolved.
        """
        if trade_id not in self._pending:
            return False
        self._cancel_requested.add(trade_id)
        logger.info("simulator.cancel_requested", trade_id=trade_id)
        return True

    async def execute(
        self,
        asset_in: str,
        asset_out: str,
        amount_in: Numeric,
        min_amount_out: Numeric = ZERO,
        max_slippage: Numeric = Decimal("0.5"),
    ) -> Trade:
        """
        Execute a virtual swap.

        Args:
            asset_in: Asset being sold
            asset_out: Asset being bought
            amount_in: Amount of ``asset_in`` to sell (> 0)
            min_amount_out: Smallest acceptable amount of ``asset_out``
            max_slippage: Caller's slippage tolerance in percent

        Returns:
            The resolved Trade (completed, failed or cancelled)

        Raises:
            ValueError: If the request itself is malformed
        """
        amount_in = to_decimal(amount_in)
        min_amount_out = to_decimal(min_amount_out)
        max_slippage = to_decimal(max_slippage)
        self._validate_request(asset_in, asset_out, amount_in, min_amount_out, max_slippage)
        amount_in = quantize_amount(amount_in)
        if amount_in <= 0:
            raise ValueError("amount_in rounds to zero at 6 decimal places")

        trade = self._create_trade(asset_in, asset_out, amount_in, min_amount_out, max_slippage)
        self.ledger.record(trade)
        self._pending[trade.id] = trade
        self._publish(EventType.TRADE_CREATED, trade)
        logger.info(
            "simulator.trade_created",
            trade_id=trade.id,
            pair=trade.pair,
            amount_in=str(trade.amount_in),
            risk_score=round(trade.snapshot.risk_score, 4),
            regime=trade.snapshot.regime.value,
        )

        self._check_position_size(trade)

        try:
            await self._simulate_latency(trade)
            await self._resolve(trade)
        finally:
            self._pending.pop(trade.id, None)
            self._cancel_requested.discard(trade.id)

        if trade.generation == self.ledger.generation:
            self.ledger.record_outcome(trade)

        if trade.status == TradeStatus.COMPLETED:
            self._publish(EventType.TRADE_COMPLETED, trade)
            logger.info(
                "simulator.trade_completed",
                trade_id=trade.id,
                pair=trade.pair,
                amount_in=str(trade.amount_in),
                amount_out=str(trade.amount_out),
                slippage=str(trade.slippage),
                gas_used=trade.gas_used,
                realized_pnl=str(trade.realized_pnl),
            )
        else:
            self._publish(EventType.TRADE_FAILED, trade)
            logger.info(
                "simulator.trade_failed",
                trade_id=trade.id,
                pair=trade.pair,
                status=trade.status.value,
                failure_kind=trade.failure_kind.value if trade.failure_kind else None,
                reason=trade.failure_reason,
            )
        return trade

    # =========================================================================
    # Creation
    # =========================================================================

    @staticmethod
    def _validate_request(asset_in: str, asset_out: str, amount_in: Decimal,
                          min_amount_out: Decimal, max_slippage: Decimal) -> None:
        if not asset_in or not asset_out:
            raise ValueError("Both assets must be specified")
        if asset_in == asset_out:
            raise ValueError(f"Cannot swap {asset_in} for itself")
        if not amount_in.is_finite() or amount_in <= 0:
            raise ValueError(f"amount_in must be positive, got {amount_in}")
        if not min_amount_out.is_finite() or min_amount_out < 0:
            raise ValueError(f"min_amount_out must be non-negative, got {min_amount_out}")
        if not max_slippage.is_finite() or max_slippage < 0:
            raise ValueError(f"max_slippage must be non-negative, got {max_slippage}")

    def _next_trade_id(self) -> str:
        self._sequence += 1
        return f"paper_{self._sequence:06d}_{self.rng.hex_token(12)}"

    def _create_trade(self, asset_in: str, asset_out: str, amount_in: Decimal,
                      min_amount_out: Decimal, max_slippage: Decimal) -> Trade:
        return Trade(
            id=self._next_trade_id(),
            type=TradeType.SWAP,
            tx_hash="0x" + self.rng.hex_token(64),
            asset_in=asset_in,
            asset_out=asset_out,
            amount_in=amount_in,
            min_amount_out=min_amount_out,
            max_slippage=max_slippage,
            gas_estimate=self._estimate_gas(),
            gas_price_gwei=self.settings.gas_price_gwei,
            created_at=self.clock.now(),
            snapshot=self._take_snapshot(asset_in, asset_out, amount_in),
            generation=self.ledger.generation,
        )

    def _take_snapshot(self, asset_in: str, asset_out: str, amount_in: Decimal) -> MarketSnapshot:
        regime = self.market.regime
        price_in = self.market.execution_price(asset_in)
        price_out = self.market.execution_price(asset_out)
        liquidity = self.market.liquidity_score(asset_in, asset_out)
        spread = self.market.spread(asset_in, asset_out)
        volatility = self.market.volatility(asset_out)
        depth = self.market.order_book_depth(asset_in, asset_out, liquidity)

        risk_score = self._risk_score(amount_in * price_in, volatility, liquidity, regime.regime)
        confidence = (1 - risk_score) * (0.5 + 0.5 * liquidity) * (0.5 + 0.5 * regime.confidence)

        return MarketSnapshot(
            regime=regime.regime,
            regime_confidence=regime.confidence,
            spread=spread,
            liquidity_score=liquidity,
            volatility=volatility,
            risk_score=risk_score,
            confidence_score=min(max(confidence, 0.0), 1.0),
            price_in=price_in,
            price_out=price_out,
            order_book_depth=depth,
        )

    def _risk_score(self, trade_value: Decimal, volatility: float,
                    liquidity: float, regime: MarketRegime) -> float:
        """
        Composite risk in [0, 1]:
            0.40 x size relative to portfolio
          + 0.25 x volatility relative to the ceiling
          + 0.20 x illiquidity
          + regime term
        """
        portfolio_value = self.ledger.revalue()
        if portfolio_value > 0:
            size_ratio = min(1.0, float(trade_value / portfolio_value))
        else:
            size_ratio = 1.0

        score = (
            0.4 * size_ratio
            + 0.25 * min(1.0, volatility / VOLATILITY_RISK_CEILING)
            + 0.2 * (1 - liquidity)
            + REGIME_RISK[regime]
        )
        return min(max(score, 0.0), 1.0)

    def _estimate_gas(self) -> int:
        base = self.settings.base_gas
        return int(round(base * (1 + self.rng.symmetric(self.settings.gas_estimate_variation / 2))))

    def _simulate_gas_used(self, estimate: int) -> int:
        return int(round(estimate * (1 + self.rng.symmetric(self.settings.gas_usage_variation / 2))))

    def _check_position_size(self, trade: Trade) -> None:
        trade_value = trade.amount_in * trade.snapshot.price_in
        alert = self.analytics.position_size_alert(
            trade_value, self.ledger.revalue(), self.clock.now()
        )
        if alert is not None:
            self.events.publish(EventType.RISK_ALERT, alert, timestamp=self.clock.now())

    # =========================================================================
    # Resolution
    # =========================================================================

    def _latency_ms(self) -> float:
        cfg = self.config.latency_simulation
        spread = cfg.max_latency - cfg.min_latency
        latency = cfg.min_latency + self.rng.random() * spread
        latency += cfg.network_variability * (self.rng.random() - 0.5) * spread
        return min(max(latency, cfg.min_latency), cfg.max_latency)

    async def _simulate_latency(self, trade: Trade) -> None:
        if not self.config.latency_simulation.enabled:
            return
        latency = self._latency_ms()
        trade.latency_ms = latency
        await self.clock.sleep(latency / 1000)

    def _effective_failure_rate(self, liquidity: float, now: datetime) -> float:
        cfg = self.config.failure_simulation
        rate = cfg.failure_rate

        if cfg.time_based_failures:
            if self.settings.peak_hours_start <= now.hour < self.settings.peak_hours_end:
                rate *= self.settings.peak_failure_multiplier

        threshold = self.config.slippage_simulation.liquidity_threshold
        if cfg.liquidity_based_failures and threshold > 0 and liquidity < threshold:
            rate *= 1 + (threshold - liquidity) / threshold

        return min(rate, 100.0)

    def _stale(self, trade: Trade) -> bool:
        return trade.generation != self.ledger.generation

    async def _resolve(self, trade: Trade) -> None:
        now = self.clock.now()

        if trade.id in self._cancel_requested:
            trade.cancel(now)
            return
        if self._stale(trade):
            trade.cancel(now, reason="Portfolio reset")
            return

        if self.config.failure_simulation.enabled:
            rate = self._effective_failure_rate(trade.snapshot.liquidity_score, now)
            if self.rng.random() * 100 < rate:
                reason = self.rng.choice(
                    self.config.failure_simulation.failure_types or DEFAULT_FAILURE_TYPES
                )
                trade.fail(FailureKind.SIMULATED_FAILURE, reason, now)
                return

        async with self.ledger.lock:
            if self._stale(trade):
                trade.cancel(self.clock.now(), reason="Portfolio reset")
                return

            balance = self.ledger.balance(trade.asset_in)
            if balance < trade.amount_in:
                trade.fail(
                    FailureKind.INSUFFICIENT_BALANCE,
                    f"Insufficient {trade.asset_in} balance: have {balance}, need {trade.amount_in}",
                    self.clock.now(),
                )
                return

            self._fill(trade)

    def _slippage(self, trade: Trade, trade_value: Decimal) -> Tuple[Decimal, Decimal]:
        """Realized slippage and market impact, both in percent."""
        cfg = self.config.slippage_simulation
        if not cfg.enabled:
            return ZERO, ZERO

        upper = min(cfg.max_slippage, float(trade.max_slippage))
        if upper > cfg.min_slippage:
            base = cfg.min_slippage + self.rng.random() * (upper - cfg.min_slippage)
        else:
            base = upper

        volatility_term = self.market.volatility(trade.asset_out) * cfg.volatility_factor

        liquidity = trade.snapshot.liquidity_score
        depth = float(trade.snapshot.order_book_depth)
        impact = 0.0
        if depth > 0 and cfg.market_impact_factor > 0:
            impact = cfg.market_impact_factor * math.sqrt(float(trade_value) / depth) * 100
            if 0 < liquidity < cfg.liquidity_threshold:
                impact *= cfg.liquidity_threshold / liquidity

        market_impact = to_decimal(round(impact, 8))
        slippage = to_decimal(round(base + volatility_term, 8)) + market_impact
        return slippage, market_impact

    def _fill(self, trade: Trade) -> None:
        """Price the fill and commit it. Caller holds the ledger lock."""
        price_in = self.market.execution_price(trade.asset_in)
        price_out = self.market.execution_price(trade.asset_out)
        trade_value = trade.amount_in * price_in

        expected_out = quantize_amount(trade_value / price_out)
        trade.expected_amount_out = expected_out

        slippage, market_impact = self._slippage(trade, trade_value)
        amount_out = clamp_non_negative(
            quantize_amount(expected_out * (1 - slippage / 100))
        )
        trade.market_impact = market_impact

        if amount_out < trade.min_amount_out:
            trade.fail(
                FailureKind.SLIPPAGE_EXCEEDED,
                f"Output {amount_out} {trade.asset_out} below minimum {trade.min_amount_out}",
                self.clock.now(),
                slippage=slippage,
            )
            return

        gas_used = self._simulate_gas_used(trade.gas_estimate)
        eth_price = self.market.price("ETH") or self.settings.fallback_eth_price
        gas_cost = quantize_amount(gas_used * self.settings.gas_price_gwei * GWEI * eth_price)

        self.ledger.commit_swap(trade.asset_in, trade.amount_in, trade.asset_out, amount_out)
        trade.complete(
            amount_out=amount_out,
            slippage=slippage,
            market_impact=market_impact,
            gas_used=gas_used,
            gas_cost_usd=gas_cost,
            value_in_usd=quantize_amount(trade_value),
            value_out_usd=quantize_amount(amount_out * price_out),
            executed_at=self.clock.now(),
        )

    def _publish(self, event_type: EventType, trade: Trade) -> None:
        self.events.publish(event_type, trade.model_copy(deep=True), timestamp=self.clock.now())

    def reset(self) -> None:
        """Forget cancellation requests; in-flight trades resolve as stale."""
        self._cancel_requested.clear()

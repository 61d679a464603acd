"""Paper trading engine - orchestrates market, execution, ledger and analytics."""
import asyncio
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Union

import structlog

from paper_trading.core.config import EngineSettings, SimulationConfig
from paper_trading.core.errors import EngineStoppedError
from paper_trading.core.models import (PerformanceMetrics, Portfolio, RegimeState,
                                       RiskAlert, RiskMetrics, Trade)
from paper_trading.core.scheduler import Scheduler
from paper_trading.events.bus import EventBus, EventType, Handler
from paper_trading.execution.simulator import TradeExecutionSimulator
from paper_trading.market.state import MarketState
from paper_trading.portfolio.ledger import PortfolioLedger
from paper_trading.risk.analytics import RiskAnalytics
from paper_trading.utils.clock import Clock, SystemClock
from paper_trading.utils.precision import Numeric
from paper_trading.utils.random_source import RandomSource

logger = structlog.get_logger(__name__)


class PaperTradingEngine:
    """
    Risk-free trade execution simulator.

    Responsibilities:
    - Owns the synthetic market and advances it on a schedule
    - Executes virtual swaps with latency, failures and slippage
    - Keeps the virtual portfolio and its analytics consistent
    - Publishes lifecycle events to subscribers

    Usage:
        engine = PaperTradingEngine(create_default_config())
        await engine.start()
        trade = await engine.execute_trade("USDC", "ETH", Decimal("2000"), Decimal("0.99"))
        portfolio = engine.get_portfolio()
        await engine.stop()
    """

    def __init__(
        self,
        config: Union[SimulationConfig, Mapping[str, Any]],
        settings: Optional[EngineSettings] = None,
        clock: Optional[Clock] = None,
        rng: Optional[RandomSource] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.config = SimulationConfig.coerce(config)
        self.settings = settings or EngineSettings()
        self.clock = clock or SystemClock()
        self.rng = rng or RandomSource(self.settings.seed)
        self.events = event_bus or EventBus()

        self.market = MarketState(
            self.config.market_data_simulation, self.clock, self.rng, self.settings
        )
        self.ledger = PortfolioLedger(
            self.config.initial_balance, self.market, self.clock, self.settings
        )
        self.analytics = RiskAnalytics(self.config, self.settings)
        self.simulator = TradeExecutionSimulator(
            self.config,
            self.market,
            self.ledger,
            self.events,
            self.clock,
            self.rng,
            analytics=self.analytics,
            settings=self.settings,
        )
        self.scheduler = Scheduler(self.clock)

        # Control
        self._running = False
        self._stopped = False
        self._main_task: Optional[asyncio.Task] = None

        logger.info(
            "engine.initialized",
            assets=sorted(self.config.initial_balance),
            total_value=str(self.ledger.total_value),
            seed=self.rng.seed,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, background: bool = True):
        """
        Start the engine.

        Args:
            background: Run the scheduler loop as a task. Pass False to drive
                jobs manually through ``run_due_jobs()``.
        """
        if self._running:
            return
        logger.info("engine.starting")

        self._running = True
        self._stopped = False
        self._register_jobs()

        if background:
            self._main_task = asyncio.create_task(self._main_loop())

        self.events.publish(EventType.STARTED, {"jobs": [j.name for j in self.scheduler.jobs]},
                            timestamp=self.clock.now())
        logger.info(
            "engine.started",
            total_value=str(self.ledger.total_value),
            jobs=[j.name for j in self.scheduler.jobs],
            background=background,
        )

    async def stop(self):
        """Stop ticking and reject new trades. In-flight trades still resolve."""
        if self._stopped:
            return
        logger.info("engine.stopping")
        self._running = False
        self._stopped = True

        if self._main_task:
            self._main_task.cancel()
            try:
                await self._main_task
            except asyncio.CancelledError:
                pass
            self._main_task = None

        self.scheduler.clear()
        self.events.publish(
            EventType.STOPPED,
            {"pending_trades": len(self.simulator.pending_trades)},
            timestamp=self.clock.now(),
        )
        logger.info("engine.stopped", pending_trades=len(self.simulator.pending_trades))

    def is_active(self) -> bool:
        return self._running

    def _register_jobs(self) -> None:
        self.scheduler.clear()
        market_cfg = self.config.market_data_simulation
        if market_cfg.enabled:
            self.scheduler.add_job("price_update", self._price_update,
                                   self.settings.price_update_interval_seconds)
        if market_cfg.market_regime_detection:
            self.scheduler.add_job("regime_update", self._regime_update,
                                   self.settings.regime_update_interval_seconds)
        if self.config.risk_management.enabled:
            self.scheduler.add_job("risk_check", self._risk_check,
                                   self.settings.risk_check_interval_seconds)
        self.scheduler.add_job("daily_reset", self._daily_reset, daily=True)

    async def _main_loop(self):
        """Scheduler loop."""
        while self._running:
            try:
                await self.run_due_jobs()
                await self.clock.sleep(self.settings.scheduler_resolution_seconds)
            except Exception as e:
                logger.error("engine.loop_error", error=str(e))
                await self.clock.sleep(5)

    async def run_due_jobs(self) -> List[str]:
        """Run every scheduled job that is due at ``clock.now()``."""
        return await self.scheduler.run_due()

    # =========================================================================
    # Scheduled jobs
    # =========================================================================

    def _price_update(self) -> None:
        prices = self.market.tick()
        self.ledger.on_price_update()
        self.events.publish(EventType.PRICE_UPDATE, prices, timestamp=self.clock.now())

    def _regime_update(self) -> None:
        self.market.update_regime()

    def _risk_check(self) -> None:
        self.check_risk_limits()

    def _daily_reset(self) -> None:
        closed_pnl = self.ledger.daily_reset()
        self.events.publish(
            EventType.DAILY_RESET,
            {"date": self.clock.now().date().isoformat(), "daily_pnl": closed_pnl},
            timestamp=self.clock.now(),
        )

    # =========================================================================
    # Trading
    # =========================================================================

    async def execute_trade(
        self,
        asset_in: str,
        asset_out: str,
        amount_in: Numeric,
        min_amount_out: Numeric = Decimal("0"),
        max_slippage: Numeric = Decimal("0.5"),
    ) -> Trade:
        """
        Submit a virtual swap and wait for its terminal state.

        Raises:
            EngineStoppedError: If the engine has been stopped
            ValueError: If the request is malformed
        """
        if self._stopped:
            raise EngineStoppedError("Paper trading engine is stopped")
        return await self.simulator.execute(
            asset_in, asset_out, amount_in, min_amount_out, max_slippage
        )

    def cancel_trade(self, trade_id: str) -> bool:
        return self.simulator.cancel(trade_id)

    def get_trade(self, trade_id: str) -> Optional[Trade]:
        trade = self.ledger.get_trade(trade_id)
        return trade.model_copy(deep=True) if trade else None

    def get_pending_trades(self) -> List[Trade]:
        return [t.model_copy(deep=True) for t in self.simulator.pending_trades]

    # =========================================================================
    # Portfolio
    # =========================================================================

    def get_portfolio(self) -> Portfolio:
        """Revalued snapshot with performance, risk, exposure and attribution."""
        portfolio = self.ledger.snapshot()
        prices = self.market.all_prices()

        portfolio.performance = self.get_performance(portfolio.trades)
        portfolio.exposure = self.analytics.compute_exposure(portfolio.balances, prices)
        portfolio.risk_metrics = self.analytics.compute_risk_metrics(
            portfolio.trades,
            self.ledger.max_drawdown,
            self.ledger.current_drawdown,
            list(self.ledger.value_history),
            portfolio.exposure,
        )
        portfolio.attribution = self.analytics.compute_attribution(
            portfolio.trades, portfolio.exposure, self.market.volatility
        )
        return portfolio

    def get_balance(self, asset: str) -> Decimal:
        return self.ledger.balance(asset)

    def add_balance(self, asset: str, amount: Numeric) -> Decimal:
        return self.ledger.add_balance(asset, amount)

    def reset(self) -> Portfolio:
        """Restore configured balances and clear history and analytics."""
        generation = self.ledger.reset()
        self.simulator.reset()
        portfolio = self.get_portfolio()
        self.events.publish(EventType.PORTFOLIO_RESET, portfolio, timestamp=self.clock.now())
        logger.info("engine.portfolio_reset", generation=generation,
                    total_value=str(portfolio.total_value))
        return portfolio

    def get_performance(self, trades: Optional[List[Trade]] = None) -> PerformanceMetrics:
        return self.analytics.compute_performance(
            self.ledger.trades if trades is None else trades,
            self.ledger.successful_trades,
            self.ledger.failed_trades,
            self.ledger.cancelled_trades,
        )

    def get_risk_metrics(self) -> RiskMetrics:
        return self.get_portfolio().risk_metrics

    def check_risk_limits(self) -> List[RiskAlert]:
        """Evaluate configured limits and publish one RISK_ALERT per violation."""
        if not self.config.risk_management.enabled:
            return []
        portfolio = self.get_portfolio()
        _, correlation = self.analytics.market_beta(list(self.ledger.value_history))
        alerts = self.analytics.check_risk_limits(
            portfolio, self.ledger.max_drawdown, correlation, self.clock.now()
        )
        for alert in alerts:
            self.events.publish(EventType.RISK_ALERT, alert, timestamp=self.clock.now())
        return alerts

    # =========================================================================
    # Market
    # =========================================================================

    def get_market_price(self, asset: str) -> Decimal:
        return self.market.price(asset)

    def set_market_price(self, asset: str, price: Numeric) -> Decimal:
        """Pin a price and notify subscribers."""
        new_price = self.market.set_price(asset, price)
        self.ledger.on_price_update()
        self.events.publish(EventType.PRICE_UPDATE, {asset: new_price},
                            timestamp=self.clock.now())
        return new_price

    def get_all_prices(self) -> Dict[str, Decimal]:
        return self.market.all_prices()

    def get_market_regime(self) -> RegimeState:
        return self.market.regime

    # =========================================================================
    # Events
    # =========================================================================

    def subscribe(self, event_type: EventType, handler: Handler):
        return self.events.subscribe(event_type, handler)

    def unsubscribe(self, event_type: EventType, handler: Handler) -> bool:
        return self.events.unsubscribe(event_type, handler)

    def get_status(self) -> Dict:
        """Get engine status."""
        return {
            'running': self._running,
            'stopped': self._stopped,
            'generation': self.ledger.generation,
            'total_value': str(self.ledger.revalue()),
            'pending_trades': len(self.simulator.pending_trades),
            'total_trades': self.ledger.total_trades,
            'regime': self.market.regime.regime.value,
            'jobs': {j.name: j.run_count for j in self.scheduler.jobs},
        }

"""Integration tests for the paper trading engine.

These tests drive the full stack through the public engine API:
- Trade execution against the ledger and market state
- Scheduled jobs on the virtual clock
- Event flow to subscribers
- Portfolio analytics and risk checks
"""
import asyncio
import pytest
from datetime import datetime, timezone
from decimal import Decimal

from paper_trading.core.config import EngineSettings
from paper_trading.core.engine import PaperTradingEngine
from paper_trading.core.errors import ConfigurationError, EngineStoppedError
from paper_trading.core.models import FailureKind, TradeStatus
from paper_trading.events.bus import EventType
from paper_trading.presets import create_realistic_config
from paper_trading.risk.reporting import generate_trading_report
from paper_trading.utils.clock import VirtualClock
from paper_trading.utils.random_source import RandomSource

SESSION_START = datetime(2024, 1, 3, 9, 0, tzinfo=timezone.utc)

FIXED_LATENCY = {"enabled": True, "min_latency": 1000, "max_latency": 1000,
                 "network_variability": 0}


def collect(engine, *event_types):
    received = []
    for event_type in event_types:
        engine.subscribe(event_type, received.append)
    return received


# =============================================================================
# Construction Tests
# =============================================================================

class TestConstruction:
    """Test engine construction."""

    def test_accepts_camel_case_mapping(self, clock):
        engine = PaperTradingEngine(
            {"initialBalance": {"ETH": "1"}, "failureSimulation": {"failureRate": 0}},
            clock=clock, rng=RandomSource(1),
        )
        assert engine.get_balance("ETH") == Decimal("1")
        assert engine.is_active() is False

    def test_invalid_config_fails_fast(self, clock):
        with pytest.raises(ConfigurationError):
            PaperTradingEngine(
                {"initialBalance": {"ETH": "1"}, "failureSimulation": {"failureRate": 150}},
                clock=clock,
            )

    def test_invalid_market_price(self, engine):
        with pytest.raises(ValueError):
            engine.set_market_price("ETH", "-1")


# =============================================================================
# Scenario Tests
# =============================================================================

class TestScenarios:
    """End-to-end trade scenarios."""

    @pytest.mark.asyncio
    async def test_exact_swap(self, started_engine):
        engine = started_engine
        trade = await engine.execute_trade("USDC", "ETH", Decimal("2000"), Decimal("0.99"))

        assert trade.status == TradeStatus.COMPLETED
        assert trade.amount_out == Decimal("1")
        assert engine.get_balance("ETH") == Decimal("11")
        assert engine.get_balance("USDC") == Decimal("8000")

    @pytest.mark.asyncio
    async def test_certain_failure(self, make_engine, make_config):
        engine = make_engine(make_config(failure_simulation={"enabled": True, "failure_rate": 100}))
        await engine.start(background=False)

        for expected_failed in range(1, 4):
            trade = await engine.execute_trade("USDC", "ETH", "100")
            assert trade.status == TradeStatus.FAILED
            assert trade.failure_kind == FailureKind.SIMULATED_FAILURE
            assert engine.ledger.failed_trades == expected_failed

        assert engine.get_balance("USDC") == Decimal("10000")
        assert engine.get_balance("ETH") == Decimal("10")
        await engine.stop()

    @pytest.mark.asyncio
    async def test_forced_slippage_exceeds_minimum(self, make_engine, make_config):
        engine = make_engine(make_config(slippage_simulation={
            "enabled": True, "min_slippage": 5, "max_slippage": 5,
            "volatility_factor": 0, "market_impact_factor": 0,
        }))
        engine.set_market_price("ETH", "2000")
        engine.set_market_price("USDC", "1")
        before = engine.get_performance()

        trade = await engine.execute_trade("USDC", "ETH", "2000", min_amount_out="0.96",
                                           max_slippage="10")

        after = engine.get_performance()
        assert trade.status == TradeStatus.FAILED
        assert trade.failure_kind == FailureKind.SLIPPAGE_EXCEEDED
        assert trade.slippage == Decimal("5")
        assert engine.get_balance("USDC") == Decimal("10000")
        assert engine.get_balance("ETH") == Decimal("10")
        assert after.total_trades - before.total_trades == 1
        assert after.failed_trades - before.failed_trades == 1

    @pytest.mark.asyncio
    async def test_forced_slippage_fills_at_discount(self, make_engine, make_config):
        engine = make_engine(make_config(slippage_simulation={
            "enabled": True, "min_slippage": 5, "max_slippage": 5,
            "volatility_factor": 0, "market_impact_factor": 0,
        }))
        engine.set_market_price("ETH", "2000")
        trade = await engine.execute_trade("USDC", "ETH", "2000", max_slippage="10")
        assert trade.amount_out == Decimal("0.95")


# =============================================================================
# Invariant Tests
# =============================================================================

class TestInvariants:
    """Properties that hold over many trades."""

    @pytest.mark.asyncio
    async def test_no_failures_when_failure_simulation_disabled(self, make_engine, make_config):
        engine = make_engine(make_config(
            slippage_simulation={"enabled": True},
            latency_simulation={"enabled": True, "min_latency": 10, "max_latency": 50},
            failure_simulation={"enabled": False, "failure_rate": 50},
        ))
        await engine.start(background=False)

        for _ in range(100):
            batch = []
            for i in range(100):
                if i % 2:
                    batch.append(engine.execute_trade("ETH", "USDC", "0.0005"))
                else:
                    batch.append(engine.execute_trade("USDC", "ETH", "1"))
            await asyncio.gather(*batch)

        performance = engine.get_performance()
        assert performance.total_trades == 10000
        assert performance.failed_trades == 0
        assert performance.success_rate == 1.0
        await engine.stop()

    @pytest.mark.asyncio
    async def test_counters_and_balances(self, make_engine, make_config):
        engine = make_engine(make_config(
            slippage_simulation={"enabled": True},
            failure_simulation={"enabled": True, "failure_rate": 20},
        ))
        orders = RandomSource(7)

        for _ in range(200):
            if orders.random() < 0.5:
                await engine.execute_trade("USDC", "ETH", round(orders.uniform(10, 3000), 2))
            else:
                await engine.execute_trade("ETH", "USDC", round(orders.uniform(0.01, 2), 4))

            performance = engine.get_performance()
            assert performance.total_trades == (performance.successful_trades
                                                + performance.failed_trades
                                                + performance.cancelled_trades)
            assert all(amount >= 0 for amount in engine.ledger.balances().values())

        performance = engine.get_performance()
        assert performance.success_rate == pytest.approx(
            performance.successful_trades / performance.total_trades
        )

    @pytest.mark.asyncio
    async def test_completed_trade_moves_both_legs(self, make_engine, make_config):
        engine = make_engine(make_config(slippage_simulation={"enabled": True}))
        for _ in range(20):
            usdc, eth = engine.get_balance("USDC"), engine.get_balance("ETH")
            trade = await engine.execute_trade("USDC", "ETH", "150")
            assert trade.status == TradeStatus.COMPLETED
            assert engine.get_balance("USDC") == usdc - trade.amount_in
            assert engine.get_balance("ETH") == eth + trade.amount_out

    @pytest.mark.asyncio
    async def test_max_drawdown_monotonic(self, make_engine, make_config):
        engine = make_engine(make_config(
            slippage_simulation={"enabled": True, "min_slippage": 0.5, "max_slippage": 2.0},
        ))
        history = []
        for i in range(30):
            pair = ("USDC", "ETH", "500") if i % 2 == 0 else ("ETH", "USDC", "0.2")
            await engine.execute_trade(*pair, max_slippage="2")
            history.append(engine.ledger.max_drawdown)
        assert history == sorted(history)
        assert history[-1] > 0

        engine.reset()
        assert engine.ledger.max_drawdown == 0.0


# =============================================================================
# Lifecycle Tests
# =============================================================================

class TestLifecycle:
    """Test start/stop behaviour."""

    @pytest.mark.asyncio
    async def test_background_loop(self, engine):
        await engine.start()
        assert engine.is_active()
        for _ in range(3):
            await asyncio.sleep(0)
        await engine.stop()
        assert not engine.is_active()

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, started_engine):
        jobs = [j.name for j in started_engine.scheduler.jobs]
        await started_engine.start(background=False)
        assert [j.name for j in started_engine.scheduler.jobs] == jobs

    @pytest.mark.asyncio
    async def test_stop_rejects_new_trades(self, started_engine):
        await started_engine.stop()
        with pytest.raises(EngineStoppedError):
            await started_engine.execute_trade("USDC", "ETH", "100")
        assert started_engine.scheduler.jobs == []

    @pytest.mark.asyncio
    async def test_in_flight_trade_resolves_after_stop(self, make_engine, make_config):
        engine = make_engine(make_config(latency_simulation=FIXED_LATENCY))
        stopped = collect(engine, EventType.STOPPED)
        await engine.start(background=False)

        task = asyncio.create_task(engine.execute_trade("USDC", "ETH", "2000"))
        await asyncio.sleep(0)
        await engine.stop()
        trade = await task
        await engine.events.flush()

        assert trade.status == TradeStatus.COMPLETED
        assert stopped[0].payload == {"pending_trades": 1}

    @pytest.mark.asyncio
    async def test_cancel_trade(self, make_engine, make_config):
        engine = make_engine(make_config(latency_simulation=FIXED_LATENCY))
        task = asyncio.create_task(engine.execute_trade("USDC", "ETH", "2000"))
        await asyncio.sleep(0)

        [pending] = engine.get_pending_trades()
        assert engine.cancel_trade(pending.id) is True
        trade = await task

        assert trade.status == TradeStatus.CANCELLED
        assert engine.get_performance().cancelled_trades == 1
        assert engine.get_balance("USDC") == Decimal("10000")

    @pytest.mark.asyncio
    async def test_status(self, started_engine):
        await started_engine.execute_trade("USDC", "ETH", "100")
        status = started_engine.get_status()
        assert status["running"] is True
        assert status["total_trades"] == 1
        assert status["jobs"] == {"daily_reset": 0}


# =============================================================================
# Scheduled Job Tests
# =============================================================================

class TestScheduledJobs:
    """Jobs driven through ``run_due_jobs`` on the virtual clock."""

    @pytest.mark.asyncio
    async def test_only_enabled_jobs_registered(self, started_engine):
        assert [j.name for j in started_engine.scheduler.jobs] == ["daily_reset"]

    @pytest.mark.asyncio
    async def test_price_updates(self, make_engine, make_config):
        engine = make_engine(make_config(
            market_data_simulation={"enabled": True, "price_volatility": 1.0}
        ))
        updates = collect(engine, EventType.PRICE_UPDATE)
        await engine.start(background=False)
        eth_before = engine.get_market_price("ETH")

        engine.clock.advance(60)
        ran = await engine.run_due_jobs()
        await engine.events.flush()

        assert ran.count("price_update") == 12
        assert len(updates) == 12
        assert engine.get_market_price("ETH") != eth_before
        assert engine.get_market_price("USDC") == Decimal("1")
        assert engine.market.tick_count == 12
        assert len(engine.ledger.value_history) >= 12
        await engine.stop()

    @pytest.mark.asyncio
    async def test_regime_update(self, make_engine, make_config):
        engine = make_engine(make_config(market_data_simulation={
            "enabled": True, "price_volatility": 1.0, "market_regime_detection": True,
        }))
        await engine.start(background=False)
        engine.clock.advance(120)
        ran = await engine.run_due_jobs()
        assert ran.count("regime_update") == 2
        regime = engine.get_market_regime()
        assert 0.0 <= regime.confidence <= 1.0
        await engine.stop()

    @pytest.mark.asyncio
    async def test_daily_reset(self, started_engine):
        engine = started_engine
        resets = collect(engine, EventType.DAILY_RESET)
        trade = await engine.execute_trade("USDC", "ETH", "100")

        engine.clock.advance(15 * 3600)
        ran = await engine.run_due_jobs()
        await engine.events.flush()

        assert ran == ["daily_reset"]
        assert resets[0].payload["date"] == "2024-01-04"
        assert resets[0].payload["daily_pnl"] == trade.realized_pnl
        assert engine.get_portfolio().pnl.daily == Decimal("0")

    @pytest.mark.asyncio
    async def test_risk_check_job_publishes_alerts(self, make_engine, make_config):
        engine = make_engine(make_config(risk_management={
            "enabled": True, "concentration_limit": 30,
        }))
        engine.set_market_price("ETH", "2000")
        alerts = collect(engine, EventType.RISK_ALERT)
        await engine.start(background=False)

        engine.clock.advance(30)
        assert await engine.run_due_jobs() == ["risk_check"]
        await engine.events.flush()

        assert [a.payload.type.value for a in alerts] == ["concentration"]
        # Alerts are informational: trading continues
        trade = await engine.execute_trade("USDC", "ETH", "100")
        assert trade.status == TradeStatus.COMPLETED
        await engine.stop()


# =============================================================================
# Portfolio and Event Tests
# =============================================================================

class TestPortfolio:
    """Test snapshots, top-ups and reset."""

    @pytest.mark.asyncio
    async def test_snapshot_is_isolated(self, engine):
        trade = await engine.execute_trade("USDC", "ETH", "100")
        portfolio = engine.get_portfolio()
        portfolio.balances["USDC"] = Decimal("0")
        portfolio.trades[0].amount_in = Decimal("1")

        assert engine.get_balance("USDC") == Decimal("9900")
        assert engine.get_trade(trade.id).amount_in == Decimal("100")

    @pytest.mark.asyncio
    async def test_total_value_follows_prices(self, engine):
        engine.set_market_price("ETH", "3000")
        assert engine.get_portfolio().total_value == Decimal("40000")

    @pytest.mark.asyncio
    async def test_only_winning_trades(self, clock, quiet_config):
        # Exact fills round 1000 / 7 up to 142.857143 ETH: a tiny gain
        engine = PaperTradingEngine(quiet_config, clock=clock, rng=RandomSource(42),
                                    settings=EngineSettings(seed=42, gas_price_gwei=0))
        engine.set_market_price("ETH", "7")
        engine.set_market_price("USDC", "1")
        trade = await engine.execute_trade("USDC", "ETH", "1000")
        assert trade.realized_pnl > 0

        portfolio = engine.get_portfolio()
        assert portfolio.performance.profit_factor == Decimal("Infinity")
        assert engine.get_performance().win_rate == 1.0

        report = generate_trading_report(portfolio)
        assert "Profit Factor: inf" in report.summary

    def test_price_move_alone_raises_no_drawdown_alert(self, make_engine, make_config):
        engine = make_engine(make_config(risk_management={
            "enabled": True, "max_drawdown": 20, "concentration_limit": 100,
        }))
        engine.set_market_price("ETH", "2000")
        engine.set_market_price("ETH", "1000")

        assert engine.ledger.max_drawdown == 0.0
        assert engine.get_portfolio().risk_metrics.max_drawdown == 0.0
        assert "drawdown" not in [a.type.value for a in engine.check_risk_limits()]

    def test_add_balance(self, engine):
        engine.add_balance("SOL", "10")
        assert engine.get_balance("SOL") == Decimal("10")

    @pytest.mark.asyncio
    async def test_reset(self, engine):
        resets = collect(engine, EventType.PORTFOLIO_RESET)
        await engine.execute_trade("USDC", "ETH", "2000")

        portfolio = engine.reset()
        await engine.events.flush()

        assert portfolio.balances == {"ETH": Decimal("10"), "USDC": Decimal("10000")}
        assert portfolio.trades == []
        assert portfolio.performance.total_trades == 0
        assert engine.ledger.generation == 1
        assert resets[0].payload.total_value == Decimal("30000")

    @pytest.mark.asyncio
    async def test_trade_events_in_order(self, engine):
        received = collect(engine, EventType.TRADE_CREATED, EventType.TRADE_COMPLETED,
                           EventType.TRADE_FAILED)
        first = await engine.execute_trade("USDC", "ETH", "100")
        second = await engine.execute_trade("USDC", "ETH", "50000")
        await engine.events.flush()

        assert [(e.type, e.payload.id) for e in received] == [
            (EventType.TRADE_CREATED, first.id),
            (EventType.TRADE_COMPLETED, first.id),
            (EventType.TRADE_CREATED, second.id),
            (EventType.TRADE_FAILED, second.id),
        ]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, engine):
        received = []
        engine.subscribe(EventType.TRADE_COMPLETED, received.append)
        assert engine.unsubscribe(EventType.TRADE_COMPLETED, received.append) is True
        await engine.execute_trade("USDC", "ETH", "100")
        await engine.events.flush()
        assert received == []


class TestRealisticSession:
    """A full session on the realistic preset."""

    @pytest.mark.asyncio
    async def test_session_analytics(self):
        engine = PaperTradingEngine(create_realistic_config(), clock=VirtualClock(SESSION_START),
                                    rng=RandomSource(3))
        await engine.start(background=False)

        for i in range(60):
            if i % 2 == 0:
                await engine.execute_trade("USDC", "ETH", "500", max_slippage="2")
            else:
                await engine.execute_trade("ETH", "USDC", "0.25", max_slippage="2")
            await engine.run_due_jobs()

        portfolio = engine.get_portfolio()
        performance = portfolio.performance
        assert performance.total_trades == 60
        assert performance.total_trades == (performance.successful_trades
                                            + performance.failed_trades
                                            + performance.cancelled_trades)
        assert 0.0 <= performance.success_rate <= 1.0
        assert sum(portfolio.exposure.weights.values()) == pytest.approx(1.0)
        assert portfolio.risk_metrics.value_at_risk_95 >= 0
        assert portfolio.risk_metrics.max_drawdown >= 0
        if portfolio.attribution.risk_by_asset:
            assert sum(portfolio.attribution.risk_by_asset.values()) == pytest.approx(1.0)
        assert portfolio.total_value == sum(
            amount * engine.get_market_price(asset)
            for asset, amount in portfolio.balances.items()
        )
        await engine.stop()

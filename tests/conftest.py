"""Pytest fixtures and utilities for the paper trading engine test suite."""
import copy
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict

import pytest
import pytest_asyncio

from paper_trading.core.config import EngineSettings, SimulationConfig
from paper_trading.core.engine import PaperTradingEngine
from paper_trading.events.bus import EventBus
from paper_trading.market.state import MarketState
from paper_trading.portfolio.ledger import PortfolioLedger
from paper_trading.risk.analytics import RiskAnalytics
from paper_trading.execution.simulator import TradeExecutionSimulator
from paper_trading.utils.clock import VirtualClock
from paper_trading.utils.random_source import RandomSource


# Outside the 13:00-17:00 UTC peak window
SESSION_START = datetime(2024, 1, 3, 9, 0, tzinfo=timezone.utc)


def deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``overrides`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# Every stochastic feature disabled: trades fill exactly at the pinned prices.
QUIET_CONFIG: Dict[str, Any] = {
    "initial_balance": {"ETH": "10", "USDC": "10000"},
    "slippage_simulation": {"enabled": False},
    "latency_simulation": {"enabled": False},
    "failure_simulation": {"enabled": False, "failure_rate": 0},
    "market_data_simulation": {"enabled": False, "spread_simulation": False},
    "risk_management": {"enabled": False},
    "advanced_analytics": {"enabled": False},
}


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def quiet_config_dict():
    """Raw config mapping with all stochastic features disabled."""
    return copy.deepcopy(QUIET_CONFIG)


@pytest.fixture
def quiet_config(quiet_config_dict):
    return SimulationConfig(**quiet_config_dict)


@pytest.fixture
def make_config():
    """Factory building a validated config from QUIET_CONFIG plus overrides."""
    def _make(**overrides) -> SimulationConfig:
        return SimulationConfig(**deep_merge(QUIET_CONFIG, overrides))
    return _make


@pytest.fixture
def settings():
    return EngineSettings(seed=42)


# =============================================================================
# Component Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return VirtualClock(SESSION_START)


@pytest.fixture
def rng():
    return RandomSource(42)


@pytest.fixture
def market(quiet_config, clock, rng, settings):
    return MarketState(quiet_config.market_data_simulation, clock, rng, settings)


@pytest.fixture
def ledger(quiet_config, market, clock, settings):
    return PortfolioLedger(quiet_config.initial_balance, market, clock, settings)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def make_simulator(clock, rng, settings, event_bus):
    """Factory wiring a simulator and its collaborators for a given config."""
    def _make(config: SimulationConfig) -> TradeExecutionSimulator:
        market = MarketState(config.market_data_simulation, clock, rng, settings)
        ledger = PortfolioLedger(config.initial_balance, market, clock, settings)
        return TradeExecutionSimulator(
            config, market, ledger, event_bus, clock, rng,
            analytics=RiskAnalytics(config, settings), settings=settings,
        )
    return _make


@pytest.fixture
def make_engine(clock, settings):
    """Factory building an engine on the shared virtual clock."""
    def _make(config, seed: int = 42) -> PaperTradingEngine:
        return PaperTradingEngine(config, settings=settings, clock=clock,
                                  rng=RandomSource(seed))
    return _make


@pytest.fixture
def engine(make_engine, quiet_config):
    """Engine with all stochastic features off and ETH pinned at 2000."""
    engine = make_engine(quiet_config)
    engine.set_market_price("ETH", Decimal("2000"))
    engine.set_market_price("USDC", Decimal("1"))
    return engine


@pytest_asyncio.fixture
async def started_engine(engine):
    """Started engine driven manually through ``run_due_jobs``."""
    await engine.start(background=False)
    yield engine
    await engine.stop()
    await engine.events.flush()

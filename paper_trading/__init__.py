"""
Paper trading engine.

A risk-free trade execution simulator: virtual swaps against a synthetic
market with simulated latency, failures and slippage, a consistent virtual
portfolio and risk/performance analytics.
"""

from paper_trading.core.config import EngineSettings, SimulationConfig
from paper_trading.core.engine import PaperTradingEngine
from paper_trading.core.errors import (ConfigurationError, EngineStoppedError,
                                       PaperTradingError, TradeStateError)
from paper_trading.core.models import (FailureKind, MarketRegime, Portfolio,
                                       RiskAlert, Trade, TradeStatus)
from paper_trading.events.bus import Event, EventBus, EventType
from paper_trading.presets import (create_default_config, create_realistic_config,
                                   create_stress_test_config)
from paper_trading.utils.clock import SystemClock, VirtualClock
from paper_trading.utils.random_source import RandomSource

__version__ = "2.0.0"

__all__ = [
    # Engine
    "PaperTradingEngine",
    "SimulationConfig",
    "EngineSettings",
    # Models
    "Trade",
    "TradeStatus",
    "FailureKind",
    "MarketRegime",
    "Portfolio",
    "RiskAlert",
    # Events
    "Event",
    "EventBus",
    "EventType",
    # Errors
    "PaperTradingError",
    "ConfigurationError",
    "EngineStoppedError",
    "TradeStateError",
    # Presets
    "create_default_config",
    "create_realistic_config",
    "create_stress_test_config",
    # Time and randomness
    "SystemClock",
    "VirtualClock",
    "RandomSource",
]

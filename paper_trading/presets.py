"""Ready-made simulation configurations."""
from typing import Any, Dict

from paper_trading.core.config import SimulationConfig

BASE_FAILURE_TYPES = [
    "Network congestion",
    "Gas price too low",
    "Slippage exceeded",
    "Pool liquidity insufficient",
]

REALISTIC_FAILURE_TYPES = BASE_FAILURE_TYPES + [
    "Transaction reverted",
    "MEV frontrun",
    "RPC timeout",
    "Node synchronization issue",
]

STRESS_FAILURE_TYPES = REALISTIC_FAILURE_TYPES + [
    "Chain congestion",
    "Mempool full",
    "Validator offline",
    "Bridge failure",
]


def _analytics(enabled: bool) -> Dict[str, Any]:
    return {
        "enabled": enabled,
        "calculate_sharpe_ratio": enabled,
        "calculate_max_drawdown": enabled,
        "calculate_var": enabled,
        "calculate_beta": enabled,
        "risk_attribution_analysis": enabled,
        "performance_attribution": enabled,
    }


def create_default_config() -> SimulationConfig:
    """Mild conditions: low slippage, 2% failures, analytics off."""
    return SimulationConfig(
        initial_balance={"USDC": "10000", "ETH": "5", "WBTC": "0.1", "SOL": "100"},
        slippage_simulation={
            "enabled": True,
            "min_slippage": 0.01,
            "max_slippage": 0.5,
            "volatility_factor": 0.1,
            "market_impact_factor": 0.05,
            "liquidity_threshold": 0.8,
        },
        latency_simulation={
            "enabled": True,
            "min_latency": 100,
            "max_latency": 2000,
            "network_variability": 0.3,
        },
        failure_simulation={
            "enabled": True,
            "failure_rate": 2,
            "failure_types": BASE_FAILURE_TYPES,
            "time_based_failures": False,
            "liquidity_based_failures": False,
        },
        market_data_simulation={
            "enabled": True,
            "price_volatility": 0.02,
            "spread_simulation": True,
            "spread_range": {"min": 0.01, "max": 0.1},
            "correlation_enabled": False,
            "market_regime_detection": False,
            "order_book_depth_simulation": False,
            "real_time_data_feed": False,
        },
        risk_management={
            "enabled": False,
            "max_position_size": 10,
            "max_daily_loss": 1000,
            "max_drawdown": 20,
            "concentration_limit": 30,
            "correlation_limit": 0.8,
        },
        advanced_analytics=_analytics(False),
    )


def create_realistic_config() -> SimulationConfig:
    """Mainnet-like conditions with risk limits and full analytics."""
    return SimulationConfig(
        initial_balance={
            "USDC": "50000", "ETH": "20", "WBTC": "0.5", "SOL": "500", "BNB": "100",
        },
        slippage_simulation={
            "enabled": True,
            "min_slippage": 0.05,
            "max_slippage": 2.0,
            "volatility_factor": 0.3,
            "market_impact_factor": 0.15,
            "liquidity_threshold": 0.6,
        },
        latency_simulation={
            "enabled": True,
            "min_latency": 200,
            "max_latency": 5000,
            "network_variability": 0.5,
        },
        failure_simulation={
            "enabled": True,
            "failure_rate": 5,
            "failure_types": REALISTIC_FAILURE_TYPES,
            "time_based_failures": True,
            "liquidity_based_failures": True,
        },
        market_data_simulation={
            "enabled": True,
            "price_volatility": 0.05,
            "spread_simulation": True,
            "spread_range": {"min": 0.05, "max": 0.3},
            "correlation_enabled": True,
            "market_regime_detection": True,
            "order_book_depth_simulation": True,
            "real_time_data_feed": False,
        },
        risk_management={
            "enabled": True,
            "max_position_size": 15,
            "max_daily_loss": 2500,
            "max_drawdown": 15,
            "concentration_limit": 25,
            "correlation_limit": 0.7,
        },
        advanced_analytics=_analytics(True),
    )


def create_stress_test_config() -> SimulationConfig:
    """Hostile conditions: heavy slippage, long latency, 15% failures."""
    return SimulationConfig(
        initial_balance={
            "USDC": "100000", "ETH": "50", "WBTC": "1", "SOL": "1000", "BNB": "200",
        },
        slippage_simulation={
            "enabled": True,
            "min_slippage": 0.1,
            "max_slippage": 5.0,
            "volatility_factor": 0.5,
            "market_impact_factor": 0.3,
            "liquidity_threshold": 0.3,
        },
        latency_simulation={
            "enabled": True,
            "min_latency": 500,
            "max_latency": 10000,
            "network_variability": 1.0,
        },
        failure_simulation={
            "enabled": True,
            "failure_rate": 15,
            "failure_types": STRESS_FAILURE_TYPES,
            "time_based_failures": True,
            "liquidity_based_failures": True,
        },
        market_data_simulation={
            "enabled": True,
            "price_volatility": 0.1,
            "spread_simulation": True,
            "spread_range": {"min": 0.1, "max": 1.0},
            "correlation_enabled": True,
            "market_regime_detection": True,
            "order_book_depth_simulation": True,
            "real_time_data_feed": True,
        },
        risk_management={
            "enabled": True,
            "max_position_size": 20,
            "max_daily_loss": 5000,
            "max_drawdown": 30,
            "concentration_limit": 40,
            "correlation_limit": 0.9,
        },
        advanced_analytics=_analytics(True),
    )


PRESETS = {
    "default": create_default_config,
    "realistic": create_realistic_config,
    "stress": create_stress_test_config,
}


def create_config(name: str) -> SimulationConfig:
    try:
        factory = PRESETS[name]
    except KeyError:
        raise ValueError(f"Unknown preset {name!r}, expected one of {sorted(PRESETS)}") from None
    return factory()

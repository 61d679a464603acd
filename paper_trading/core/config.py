"""Configuration for the paper trading engine.

Two layers:

- ``SimulationConfig``: the immutable description of market behaviour
  (slippage, latency, failures, market data, risk limits, analytics). It is
  supplied at construction, validated once and never mutated.
- ``EngineSettings`` / ``LoggingConfig``: operational tuning read from the
  environment (``PAPER_*`` variables or a ``.env`` file).

Field names are snake_case; the camelCase keys used by JSON configs
(``initialBalance``, ``slippageSimulation.minSlippage`` ...) are accepted as
aliases.
"""

from decimal import Decimal
from typing import Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import (BaseModel, ConfigDict, Field, ValidationError,
                      field_validator, model_validator)
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from paper_trading.core.errors import ConfigurationError

MAX_LATENCY_MS = 60000


class _ConfigGroup(BaseModel):
    """Base for all option groups: frozen, camelCase aliases, no extras."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="forbid",
    )


# =============================================================================
# Simulation option groups
# =============================================================================


class SlippageSimulationConfig(_ConfigGroup):
    """Slippage model. Percent values: 0.5 means 0.5%."""

    enabled: bool = True
    min_slippage: float = 0.01
    max_slippage: float = 0.5
    volatility_factor: float = 0.1
    market_impact_factor: float = 0.05
    liquidity_threshold: float = 0.8

    @field_validator("min_slippage")
    @classmethod
    def validate_min_slippage(cls, v):
        if v < 0 or v > 10:
            raise ValueError("Min slippage must be between 0% and 10%")
        return v

    @field_validator("max_slippage")
    @classmethod
    def validate_max_slippage(cls, v):
        if v < 0 or v > 100:
            raise ValueError("Max slippage must be between 0% and 100%")
        return v

    @field_validator("volatility_factor", "market_impact_factor")
    @classmethod
    def validate_factor(cls, v):
        if v < 0:
            raise ValueError("Slippage factors must be non-negative")
        return v

    @field_validator("liquidity_threshold")
    @classmethod
    def validate_liquidity_threshold(cls, v):
        if v < 0 or v > 1:
            raise ValueError("Liquidity threshold must be between 0 and 1")
        return v

    @model_validator(mode="after")
    def validate_range(self):
        if self.max_slippage < self.min_slippage:
            raise ValueError("Max slippage must be greater than min slippage")
        return self


class LatencySimulationConfig(_ConfigGroup):
    """Execution delay model. Latencies in milliseconds."""

    enabled: bool = True
    min_latency: float = 100
    max_latency: float = 2000
    network_variability: float = 0.3

    @field_validator("min_latency", "max_latency")
    @classmethod
    def validate_latency(cls, v):
        if v < 0 or v > MAX_LATENCY_MS:
            raise ValueError(f"Latency must be between 0ms and {MAX_LATENCY_MS}ms")
        return v

    @field_validator("network_variability")
    @classmethod
    def validate_variability(cls, v):
        if v < 0 or v > 1:
            raise ValueError("Network variability must be between 0 and 1")
        return v

    @model_validator(mode="after")
    def validate_range(self):
        if self.max_latency < self.min_latency:
            raise ValueError("Max latency must be greater than min latency")
        return self


class FailureSimulationConfig(_ConfigGroup):
    """Random execution failures. ``failure_rate`` is a percentage."""

    enabled: bool = True
    failure_rate: float = 2
    failure_types: List[str] = Field(default_factory=list)
    time_based_failures: bool = False
    liquidity_based_failures: bool = False

    @field_validator("failure_rate")
    @classmethod
    def validate_failure_rate(cls, v):
        if v < 0 or v > 100:
            raise ValueError("Failure rate must be between 0% and 100%")
        return v

    @field_validator("failure_types")
    @classmethod
    def validate_failure_types(cls, v):
        if any(not str(t).strip() for t in v):
            raise ValueError("Failure types must be non-empty strings")
        return v


class SpreadRange(_ConfigGroup):
    """Bid-ask spread bounds in percent."""

    min: float = 0.01
    max: float = 0.1

    @model_validator(mode="after")
    def validate_range(self):
        if self.min < 0:
            raise ValueError("Spread range minimum must be non-negative")
        if self.max < self.min:
            raise ValueError("Spread range maximum must be >= minimum")
        return self


class MarketDataSimulationConfig(_ConfigGroup):
    """Synthetic market. ``price_volatility`` is the max % move per tick."""

    enabled: bool = True
    price_volatility: float = 0.02
    spread_simulation: bool = True
    spread_range: SpreadRange = Field(default_factory=SpreadRange)
    correlation_enabled: bool = False
    market_regime_detection: bool = False
    order_book_depth_simulation: bool = False
    # Accepted for compatibility with existing configs; live feeds are not simulated.
    real_time_data_feed: bool = False

    @field_validator("price_volatility")
    @classmethod
    def validate_volatility(cls, v):
        if v < 0 or v > 100:
            raise ValueError("Price volatility must be between 0% and 100%")
        return v


class RiskManagementConfig(_ConfigGroup):
    """Informational risk limits. Breaches raise alerts, never block trades."""

    enabled: bool = False
    max_position_size: float = 10  # % of portfolio per trade
    max_daily_loss: float = 1000  # USD
    max_drawdown: float = 20  # %
    concentration_limit: float = 30  # HHI x 100
    correlation_limit: float = 0.8

    @field_validator("max_position_size", "max_drawdown", "concentration_limit")
    @classmethod
    def validate_percentages(cls, v):
        if v <= 0 or v > 100:
            raise ValueError("Percentage limits must be between 0 and 100")
        return v

    @field_validator("max_daily_loss")
    @classmethod
    def validate_daily_loss(cls, v):
        if v < 0:
            raise ValueError("Max daily loss must be non-negative")
        return v

    @field_validator("correlation_limit")
    @classmethod
    def validate_correlation(cls, v):
        if v < 0 or v > 1:
            raise ValueError("Correlation limit must be between 0 and 1")
        return v


class AdvancedAnalyticsConfig(_ConfigGroup):
    """Opt-in risk statistics. Each flag also requires ``enabled``."""

    enabled: bool = False
    calculate_sharpe_ratio: bool = False
    calculate_max_drawdown: bool = False
    calculate_var: bool = Field(default=False, alias="calculateVaR")
    calculate_beta: bool = False
    risk_attribution_analysis: bool = False
    performance_attribution: bool = False

    def wants(self, flag: str) -> bool:
        """True if analytics are enabled and ``flag`` is switched on."""
        return self.enabled and bool(getattr(self, flag))


# =============================================================================
# Top-level simulation configuration
# =============================================================================


class SimulationConfig(_ConfigGroup):
    """
    Complete, immutable simulation configuration.

    Construction validates every group; any invalid value raises
    ``ConfigurationError`` listing all problems found.

    Usage:
        config = SimulationConfig.from_dict({
            "initialBalance": {"ETH": "10", "USDC": "10000"},
            "slippageSimulation": {"enabled": False},
        })
    """

    initial_balance: Dict[str, Decimal]
    slippage_simulation: SlippageSimulationConfig = Field(
        default_factory=SlippageSimulationConfig
    )
    latency_simulation: LatencySimulationConfig = Field(
        default_factory=LatencySimulationConfig
    )
    failure_simulation: FailureSimulationConfig = Field(
        default_factory=FailureSimulationConfig
    )
    market_data_simulation: MarketDataSimulationConfig = Field(
        default_factory=MarketDataSimulationConfig
    )
    risk_management: RiskManagementConfig = Field(default_factory=RiskManagementConfig)
    advanced_analytics: AdvancedAnalyticsConfig = Field(
        default_factory=AdvancedAnalyticsConfig
    )

    def __init__(self, **data: Any):
        try:
            super().__init__(**data)
        except ValidationError as e:
            issues = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
            raise ConfigurationError(
                "Invalid simulation configuration: " + "; ".join(issues), issues
            ) from e

    @field_validator("initial_balance")
    @classmethod
    def validate_initial_balance(cls, v: Dict[str, Decimal]) -> Dict[str, Decimal]:
        if not v:
            raise ValueError("Initial balance must contain at least one token")
        for asset, amount in v.items():
            if not asset or not asset.strip():
                raise ValueError("Asset symbols must be non-empty")
            if not amount.is_finite() or amount < 0:
                raise ValueError(f"Initial balance for {asset} must be a non-negative number")
        return v

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SimulationConfig":
        """Build a config from a (possibly camelCase) mapping."""
        if not isinstance(data, Mapping):
            raise ConfigurationError("Configuration must be a mapping")
        return cls(**dict(data))

    @classmethod
    def coerce(cls, config: Union["SimulationConfig", Mapping[str, Any]]) -> "SimulationConfig":
        if isinstance(config, SimulationConfig):
            return config
        return cls.from_dict(config)


# =============================================================================
# Operational settings (environment driven)
# =============================================================================


class EngineSettings(BaseSettings):
    """Scheduler cadence, gas model and other engine tuning."""

    model_config = SettingsConfigDict(
        env_prefix="PAPER_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    # Scheduler cadence (seconds)
    price_update_interval_seconds: float = Field(default=5.0, gt=0)
    regime_update_interval_seconds: float = Field(default=60.0, gt=0)
    risk_check_interval_seconds: float = Field(default=30.0, gt=0)
    scheduler_resolution_seconds: float = Field(default=1.0, gt=0)

    # Bounded histories
    return_window: int = Field(default=100, ge=2)
    value_history_limit: int = Field(default=1000, ge=2)

    # Gas model
    base_gas: int = Field(default=150000, gt=0)
    gas_estimate_variation: float = Field(default=0.2, ge=0, le=1)  # total width: +/-10%
    gas_usage_variation: float = Field(default=0.1, ge=0, le=1)  # total width: +/-5%
    gas_price_gwei: Decimal = Field(default=Decimal("20"), ge=0)
    fallback_eth_price: Decimal = Field(default=Decimal("2000"), gt=0)

    # Failure model
    peak_hours_start: int = Field(default=13, ge=0, le=23)
    peak_hours_end: int = Field(default=17, ge=0, le=24)
    peak_failure_multiplier: float = Field(default=1.5, ge=1)

    # Alert severity: critical at or above this multiple of the limit
    critical_limit_multiple: float = Field(default=1.5, ge=1)

    # Reproducible runs
    seed: Optional[int] = None


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PAPER_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_file: Optional[str] = None
    json_logs: bool = True


logging_config = LoggingConfig()


__all__ = [
    "SlippageSimulationConfig",
    "LatencySimulationConfig",
    "FailureSimulationConfig",
    "SpreadRange",
    "MarketDataSimulationConfig",
    "RiskManagementConfig",
    "AdvancedAnalyticsConfig",
    "SimulationConfig",
    "EngineSettings",
    "LoggingConfig",
    "logging_config",
]

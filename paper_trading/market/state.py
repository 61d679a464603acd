"""
Synthetic market for the paper trading engine.

Owns per-asset prices, the market regime classification and the
regime-anchored spread/liquidity/depth estimates that drive slippage and risk
numbers. Prices move only through ``tick()`` (or the ``set_price`` test hook).
"""

from collections import deque
from decimal import Decimal
from typing import Deque, Dict, List, Optional

import numpy as np
import structlog

from paper_trading.core.config import EngineSettings, MarketDataSimulationConfig
from paper_trading.core.models import MarketRegime, RegimeState
from paper_trading.utils.clock import Clock
from paper_trading.utils.precision import ZERO, Numeric, quantize_price, to_decimal
from paper_trading.utils.random_source import RandomSource

logger = structlog.get_logger(__name__)


class MarketState:
    """
    Synthetic price feed with regime detection.

    Random walk per tick (non-stable assets only):
        change% = U(-v, +v)                       (independent)
        change% = v * (0.6 * C + 0.4 * I)         (correlation_enabled)
    where v is ``price_volatility`` and C, I are U(-1, 1) common and
    idiosyncratic factors. Prices are floored at ``PRICE_FLOOR``.

    Regime (``update_regime``), over the recent market-index returns:
    - VOLATILE if realized sigma > 1.5x the sigma implied by ``price_volatility``
    - BULL / BEAR if the mean return is beyond +/-0.25 sigma per tick
    - SIDEWAYS otherwise
    """

    DEFAULT_PRICES = {
        "ETH": Decimal("2000"),
        "USDC": Decimal("1"),
        "USDT": Decimal("1"),
        "WBTC": Decimal("35000"),
        "SOL": Decimal("100"),
        "BNB": Decimal("300"),
    }

    STABLE_ASSETS = frozenset({"USDC", "USDT", "DAI"})
    MAJOR_ASSETS = frozenset({"ETH", "WETH", "WBTC", "BTC", "USDC", "USDT", "DAI"})

    BASE_VOLATILITY = {
        "ETH": 0.02,
        "WBTC": 0.015,
        "SOL": 0.03,
        "BNB": 0.025,
        "USDC": 0.001,
        "USDT": 0.001,
        "DAI": 0.001,
    }
    DEFAULT_VOLATILITY = 0.02

    PRICE_FLOOR = Decimal("0.01")

    # Regime anchors
    SPREAD_MULTIPLIER = {
        MarketRegime.BULL: 0.9,
        MarketRegime.SIDEWAYS: 1.0,
        MarketRegime.BEAR: 1.5,
        MarketRegime.VOLATILE: 2.0,
    }
    LIQUIDITY_FACTOR = {
        MarketRegime.BULL: 1.05,
        MarketRegime.SIDEWAYS: 1.0,
        MarketRegime.BEAR: 0.8,
        MarketRegime.VOLATILE: 0.7,
    }
    VOLATILE_SIGMA_MULTIPLE = 1.5
    TREND_SIGMA_MULTIPLE = 0.25
    MIN_REGIME_SAMPLES = 5

    # Order book depth in USD by pair class
    BASE_DEPTH_USD = {
        2: Decimal("5000000"),  # both assets major
        1: Decimal("1000000"),
        0: Decimal("250000"),
    }
    DEFAULT_DEPTH_USD = Decimal("1000000")

    def __init__(
        self,
        config: MarketDataSimulationConfig,
        clock: Clock,
        rng: RandomSource,
        settings: Optional[EngineSettings] = None,
        initial_prices: Optional[Dict[str, Numeric]] = None,
    ):
        self.config = config
        self.clock = clock
        self.rng = rng
        self.settings = settings or EngineSettings()

        prices = initial_prices if initial_prices is not None else self.DEFAULT_PRICES
        self._prices: Dict[str, Decimal] = {
            asset: quantize_price(price) for asset, price in prices.items()
        }

        window = self.settings.return_window
        self._index_returns: Deque[float] = deque(maxlen=window)
        self._asset_returns: Dict[str, Deque[float]] = {}
        self._index_level = 1.0

        self._regime = RegimeState(started_at=clock.now())
        self.tick_count = 0

    # -------------------------------------------------------------------------
    # Prices
    # -------------------------------------------------------------------------

    def price(self, asset: str) -> Decimal:
        """Current price, or 0 for an unpriced asset."""
        return self._prices.get(asset, ZERO)

    def execution_price(self, asset: str) -> Decimal:
        """Price used to convert trade amounts; unpriced assets trade at par."""
        return self._prices.get(asset) or Decimal("1")

    def set_price(self, asset: str, value: Numeric) -> Decimal:
        """Pin a price (tests and external overrides)."""
        price = to_decimal(value)
        if not price.is_finite() or price <= 0:
            raise ValueError(f"Price for {asset} must be positive, got {value!r}")
        self._prices[asset] = quantize_price(price)
        return self._prices[asset]

    def all_prices(self) -> Dict[str, Decimal]:
        return dict(self._prices)

    def is_stable(self, asset: str) -> bool:
        return asset in self.STABLE_ASSETS

    def tick(self) -> Dict[str, Decimal]:
        """Advance every non-stable price one random-walk step."""
        self.tick_count += 1
        if not self.config.enabled:
            return self.all_prices()

        volatility = self.config.price_volatility
        common = self.rng.symmetric(1.0) if self.config.correlation_enabled else 0.0
        step_returns: List[float] = []

        for asset in sorted(self._prices):
            if self.is_stable(asset):
                continue
            if self.config.correlation_enabled:
                change_pct = volatility * (0.6 * common + 0.4 * self.rng.symmetric(1.0))
            else:
                change_pct = self.rng.symmetric(volatility)

            current = self._prices[asset]
            new_price = current * (Decimal("1") + to_decimal(change_pct) / 100)
            new_price = max(quantize_price(new_price), self.PRICE_FLOOR)
            self._prices[asset] = new_price

            realized = float((new_price - current) / current) if current > 0 else 0.0
            self._returns_for(asset).append(realized)
            step_returns.append(realized)

        index_return = float(np.mean(step_returns)) if step_returns else 0.0
        self._index_returns.append(index_return)
        self._index_level *= 1 + index_return

        logger.debug("market.tick", tick=self.tick_count,
                     prices={a: str(p) for a, p in self._prices.items()})
        return self.all_prices()

    def _returns_for(self, asset: str) -> Deque[float]:
        if asset not in self._asset_returns:
            self._asset_returns[asset] = deque(maxlen=self.settings.return_window)
        return self._asset_returns[asset]

    @property
    def market_index(self) -> float:
        """Equal-weight index of non-stable assets, starting at 1.0."""
        return self._index_level

    @property
    def market_index_returns(self) -> List[float]:
        return list(self._index_returns)

    def last_index_return(self) -> float:
        return self._index_returns[-1] if self._index_returns else 0.0

    # -------------------------------------------------------------------------
    # Regime
    # -------------------------------------------------------------------------

    @property
    def regime(self) -> RegimeState:
        """Current regime with its duration measured on the engine clock."""
        elapsed = (self.clock.now() - self._regime.started_at).total_seconds()
        return self._regime.model_copy(update={"duration_seconds": max(elapsed, 0.0)})

    def force_regime(self, regime: MarketRegime, confidence: float = 0.9) -> RegimeState:
        """Pin the regime (tests and scenario scripts)."""
        self._set_regime(MarketRegime(regime), confidence)
        return self.regime

    def update_regime(self) -> RegimeState:
        """Reclassify the market from recent index returns."""
        if not self.config.market_regime_detection:
            return self.regime
        if len(self._index_returns) < self.MIN_REGIME_SAMPLES:
            return self.regime

        returns = np.array(self._index_returns, dtype=float)
        realized_sigma = float(np.std(returns))
        trend = float(np.mean(returns))
        # Sigma of U(-v, v) percent, as a fraction
        expected_sigma = self.config.price_volatility / 100 / np.sqrt(3)

        if expected_sigma <= 0 or realized_sigma <= 0:
            regime, confidence = MarketRegime.SIDEWAYS, 0.5
        elif realized_sigma > self.VOLATILE_SIGMA_MULTIPLE * expected_sigma:
            regime = MarketRegime.VOLATILE
            confidence = 0.5 + 0.25 * (realized_sigma / expected_sigma - self.VOLATILE_SIGMA_MULTIPLE)
        else:
            trend_threshold = self.TREND_SIGMA_MULTIPLE * expected_sigma
            strength = abs(trend) / trend_threshold
            if trend > trend_threshold:
                regime = MarketRegime.BULL
            elif trend < -trend_threshold:
                regime = MarketRegime.BEAR
            else:
                regime = MarketRegime.SIDEWAYS
                strength = 1 - strength
            confidence = 0.4 + 0.3 * strength

        confidence = float(min(max(confidence, 0.3), 0.95))
        if regime != self._regime.regime:
            logger.info("market.regime_change", previous=self._regime.regime.value,
                        regime=regime.value, confidence=round(confidence, 3))
            self._set_regime(regime, confidence)
        else:
            self._regime = self._regime.model_copy(update={"confidence": confidence})
        return self.regime

    def _set_regime(self, regime: MarketRegime, confidence: float) -> None:
        self._regime = RegimeState(
            regime=regime,
            confidence=min(max(confidence, 0.0), 1.0),
            started_at=self.clock.now(),
        )

    # -------------------------------------------------------------------------
    # Pair microstructure
    # -------------------------------------------------------------------------

    def _major_count(self, asset_in: str, asset_out: str) -> int:
        return int(asset_in in self.MAJOR_ASSETS) + int(asset_out in self.MAJOR_ASSETS)

    def _pair_class_multiplier(self, asset_in: str, asset_out: str) -> float:
        if self.is_stable(asset_in) and self.is_stable(asset_out):
            return 0.5
        return {2: 1.0, 1: 1.3, 0: 1.6}[self._major_count(asset_in, asset_out)]

    def spread(self, asset_in: str, asset_out: str) -> Decimal:
        """Estimated bid-ask spread for the pair, in percent."""
        if not self.config.spread_simulation:
            return ZERO
        low, high = self.config.spread_range.min, self.config.spread_range.max
        regime_mult = self.SPREAD_MULTIPLIER[self._regime.regime]
        raw = self.rng.uniform(low, high) * regime_mult * self._pair_class_multiplier(asset_in, asset_out)
        upper = high * regime_mult
        clamped = min(max(raw, low), upper) if upper >= low else low
        return quantize_price(clamped)

    def liquidity_score(self, asset_in: str, asset_out: str) -> float:
        """Bounded [0, 1] estimate of how much volume the pair absorbs."""
        base = {2: 0.9, 1: 0.75, 0: 0.55}[self._major_count(asset_in, asset_out)]
        score = base * self.LIQUIDITY_FACTOR[self._regime.regime] + self.rng.symmetric(0.05)
        return float(min(max(score, 0.0), 1.0))

    def order_book_depth(self, asset_in: str, asset_out: str,
                         liquidity: Optional[float] = None) -> Decimal:
        """Estimated pair depth in USD, scaled by liquidity."""
        if liquidity is None:
            liquidity = self.liquidity_score(asset_in, asset_out)
        if self.config.order_book_depth_simulation:
            base = self.BASE_DEPTH_USD[self._major_count(asset_in, asset_out)]
        else:
            base = self.DEFAULT_DEPTH_USD
        return (base * to_decimal(round(liquidity, 6))).quantize(Decimal("1"))

    def volatility(self, asset: str) -> float:
        """Realized per-tick volatility in percent, falling back to a per-asset baseline."""
        history = self._asset_returns.get(asset)
        if history is not None and len(history) >= 2:
            return float(np.std(np.array(history, dtype=float))) * 100
        return self.BASE_VOLATILITY.get(asset, self.DEFAULT_VOLATILITY)

    def asset_returns(self, asset: str) -> List[float]:
        return list(self._asset_returns.get(asset, ()))

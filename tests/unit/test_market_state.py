"""Unit tests for the synthetic market."""
import pytest
from decimal import Decimal

from paper_trading.core.config import MarketDataSimulationConfig
from paper_trading.core.models import MarketRegime
from paper_trading.market.state import MarketState
from paper_trading.utils.random_source import RandomSource


@pytest.fixture
def live_config():
    return MarketDataSimulationConfig(enabled=True, price_volatility=0.5)


@pytest.fixture
def live_market(live_config, clock, settings):
    return MarketState(live_config, clock, RandomSource(11), settings)


# =============================================================================
# Price Tests
# =============================================================================

class TestPrices:
    """Test price reads and overrides."""

    def test_default_prices_seeded(self, market):
        assert market.price("ETH") == Decimal("2000")
        assert market.price("WBTC") == Decimal("35000")
        assert market.price("USDC") == Decimal("1")

    def test_unknown_asset(self, market):
        assert market.price("DOGE") == Decimal("0")
        assert market.execution_price("DOGE") == Decimal("1")

    def test_set_price(self, market):
        market.set_price("ETH", "2500.5")
        assert market.price("ETH") == Decimal("2500.5")

    @pytest.mark.parametrize("bad", ["0", "-1", "Infinity"])
    def test_set_price_rejects_non_positive(self, market, bad):
        with pytest.raises(ValueError):
            market.set_price("ETH", bad)

    def test_all_prices_is_a_copy(self, market):
        prices = market.all_prices()
        prices["ETH"] = Decimal("1")
        assert market.price("ETH") == Decimal("2000")


class TestTick:
    """Test the random walk."""

    def test_disabled_market_does_not_move(self, market):
        before = market.all_prices()
        market.tick()
        assert market.all_prices() == before

    def test_stable_assets_do_not_move(self, live_market):
        for _ in range(50):
            live_market.tick()
        assert live_market.price("USDC") == Decimal("1")
        assert live_market.price("USDT") == Decimal("1")

    def test_step_is_bounded(self, live_market):
        for _ in range(50):
            before = live_market.price("ETH")
            live_market.tick()
            change = abs(live_market.price("ETH") - before) / before * 100
            assert change <= Decimal("0.5") + Decimal("0.000001")

    def test_price_floor(self, clock, settings):
        config = MarketDataSimulationConfig(enabled=True, price_volatility=100)
        market = MarketState(config, clock, RandomSource(5), settings,
                             initial_prices={"MEME": "0.011"})
        for _ in range(200):
            market.tick()
            assert market.price("MEME") >= MarketState.PRICE_FLOOR

    def test_tick_records_returns(self, live_market):
        for _ in range(3):
            live_market.tick()
        assert len(live_market.market_index_returns) == 3
        assert len(live_market.asset_returns("ETH")) == 3
        assert live_market.asset_returns("USDC") == []

    def test_seeded_markets_replay(self, live_config, clock, settings):
        a = MarketState(live_config, clock, RandomSource(99), settings)
        b = MarketState(live_config, clock, RandomSource(99), settings)
        for _ in range(10):
            assert a.tick() == b.tick()

    def test_correlated_walk_moves_together(self, clock, settings):
        config = MarketDataSimulationConfig(enabled=True, price_volatility=1.0,
                                            correlation_enabled=True)
        market = MarketState(config, clock, RandomSource(3), settings)
        for _ in range(100):
            market.tick()
        eth = market.asset_returns("ETH")
        sol = market.asset_returns("SOL")
        corr = sum((x - sum(eth) / len(eth)) * (y - sum(sol) / len(sol))
                   for x, y in zip(eth, sol))
        assert corr > 0


# =============================================================================
# Regime Tests
# =============================================================================

class TestRegime:
    """Test regime classification."""

    def test_starts_sideways(self, market):
        assert market.regime.regime == MarketRegime.SIDEWAYS

    def test_detection_disabled_keeps_regime(self, live_market):
        for _ in range(20):
            live_market.tick()
        assert live_market.update_regime().regime == MarketRegime.SIDEWAYS

    def test_steady_uptrend_is_bull(self, clock, settings):
        config = MarketDataSimulationConfig(enabled=True, price_volatility=0.5,
                                            market_regime_detection=True)
        market = MarketState(config, clock, RandomSource(1), settings)
        market._index_returns.extend([0.002, 0.0021, 0.0019, 0.002, 0.0022, 0.0018])
        state = market.update_regime()
        assert state.regime == MarketRegime.BULL
        assert 0.3 <= state.confidence <= 0.95

    def test_steady_downtrend_is_bear(self, clock, settings):
        config = MarketDataSimulationConfig(enabled=True, price_volatility=0.5,
                                            market_regime_detection=True)
        market = MarketState(config, clock, RandomSource(1), settings)
        market._index_returns.extend([-0.002, -0.0021, -0.0019, -0.002, -0.0022, -0.0018])
        assert market.update_regime().regime == MarketRegime.BEAR

    def test_wild_swings_are_volatile(self, clock, settings):
        config = MarketDataSimulationConfig(enabled=True, price_volatility=0.1,
                                            market_regime_detection=True)
        market = MarketState(config, clock, RandomSource(1), settings)
        market._index_returns.extend([0.02, -0.02, 0.02, -0.02, 0.02, -0.02])
        state = market.update_regime()
        assert state.regime == MarketRegime.VOLATILE
        assert state.confidence <= 0.95

    def test_too_few_samples(self, clock, settings):
        config = MarketDataSimulationConfig(enabled=True, market_regime_detection=True)
        market = MarketState(config, clock, RandomSource(1), settings)
        market._index_returns.extend([0.01, 0.01])
        assert market.update_regime().regime == MarketRegime.SIDEWAYS

    def test_force_regime_and_duration(self, market, clock):
        market.force_regime(MarketRegime.BEAR, 0.8)
        clock.advance(120)
        state = market.regime
        assert state.regime == MarketRegime.BEAR
        assert state.confidence == 0.8
        assert state.duration_seconds == pytest.approx(120)


# =============================================================================
# Microstructure Tests
# =============================================================================

class TestMicrostructure:
    """Test spread, liquidity and depth."""

    def test_spread_disabled(self, market):
        assert market.spread("ETH", "USDC") == Decimal("0")

    def test_spread_within_regime_bounds(self, clock, settings):
        config = MarketDataSimulationConfig(spread_simulation=True,
                                            spread_range={"min": 0.01, "max": 0.1})
        market = MarketState(config, clock, RandomSource(2), settings)
        for regime, mult in MarketState.SPREAD_MULTIPLIER.items():
            market.force_regime(regime)
            for _ in range(20):
                spread = market.spread("SOL", "BNB")
                assert Decimal("0.01") <= spread <= Decimal(str(0.1 * mult)) + Decimal("1e-8")

    def test_liquidity_bounded(self, market):
        for regime in MarketRegime:
            market.force_regime(regime)
            for _ in range(20):
                assert 0.0 <= market.liquidity_score("ETH", "USDC") <= 1.0

    def test_major_pairs_more_liquid(self, market):
        majors = [market.liquidity_score("ETH", "USDC") for _ in range(50)]
        minors = [market.liquidity_score("SOL", "BNB") for _ in range(50)]
        assert min(majors) > max(minors)

    def test_volatile_regime_degrades_liquidity(self, market):
        market.force_regime(MarketRegime.BULL)
        bull = [market.liquidity_score("ETH", "WBTC") for _ in range(50)]
        market.force_regime(MarketRegime.VOLATILE)
        volatile = [market.liquidity_score("ETH", "WBTC") for _ in range(50)]
        assert max(volatile) < min(bull)

    def test_order_book_depth(self, market):
        assert market.order_book_depth("ETH", "USDC", liquidity=0.5) == Decimal("500000")

    def test_order_book_depth_simulated(self, clock, settings):
        config = MarketDataSimulationConfig(order_book_depth_simulation=True)
        market = MarketState(config, clock, RandomSource(2), settings)
        assert market.order_book_depth("ETH", "USDC", liquidity=1.0) == Decimal("5000000")
        assert market.order_book_depth("SOL", "BNB", liquidity=1.0) == Decimal("250000")

    def test_volatility_baseline(self, market):
        assert market.volatility("ETH") == 0.02
        assert market.volatility("DOGE") == MarketState.DEFAULT_VOLATILITY

    def test_volatility_realized(self, live_market):
        for _ in range(10):
            live_market.tick()
        assert live_market.volatility("ETH") > 0

"""
Paper Trading Engine - Main Entry Point

Runs a simulated trading session against the synthetic market and prints a
trading report. Time is virtual, so a session of thousands of trades
finishes in seconds.

Usage:
    # Default preset, 100 trades
    python main.py

    # Realistic market conditions, reproducible
    python main.py --preset realistic --trades 500 --seed 42

    # Stress test with a markdown report
    python main.py --preset stress --markdown

    # Validate a preset and exit
    python main.py --check --preset realistic
"""

import argparse
import asyncio
from decimal import Decimal
from typing import Dict, List, Optional

import structlog

from paper_trading.core.config import EngineSettings
from paper_trading.core.engine import PaperTradingEngine
from paper_trading.core.errors import ConfigurationError
from paper_trading.core.models import Trade
from paper_trading.events.bus import Event, EventType
from paper_trading.presets import PRESETS, create_config
from paper_trading.risk.reporting import (calculate_optimal_order_size,
                                          generate_trading_report)
from paper_trading.utils.clock import VirtualClock
from paper_trading.utils.logging_config import setup_logging
from paper_trading.utils.random_source import RandomSource

logger = structlog.get_logger(__name__)


class PaperTradingSession:
    """
    A batch of random swaps driven through the engine.

    Orders are submitted ``concurrency`` at a time. Between batches the
    scheduler is given a chance to tick prices, update the regime and check
    risk limits.
    """

    def __init__(self, preset: str = "default", seed: Optional[int] = None,
                 concurrency: int = 5):
        self.preset = preset
        self.concurrency = max(concurrency, 1)

        settings = EngineSettings(seed=seed) if seed is not None else EngineSettings()
        self.clock = VirtualClock()
        self.engine = PaperTradingEngine(
            create_config(preset),
            settings=settings,
            clock=self.clock,
            rng=RandomSource(settings.seed),
        )
        # Order flow uses its own stream so it does not perturb the market draws
        self.order_rng = RandomSource(None if seed is None else seed + 1)
        self.alerts: List[Event] = []

    async def run(self, trades: int) -> List[Trade]:
        structlog.contextvars.bind_contextvars(preset=self.preset, seed=self.engine.rng.seed)
        self.engine.subscribe(EventType.RISK_ALERT, self.alerts.append)
        await self.engine.start(background=False)

        results: List[Trade] = []
        try:
            while len(results) < trades:
                batch = min(self.concurrency, trades - len(results))
                orders = [self._random_order() for _ in range(batch)]
                results.extend(await asyncio.gather(*(
                    self.engine.execute_trade(*order) for order in orders
                )))
                await self.engine.run_due_jobs()
        finally:
            await self.engine.stop()
            await self.engine.events.flush()

        logger.info(
            "session.finished",
            preset=self.preset,
            trades=len(results),
            alerts=len(self.alerts),
            simulated_seconds=(self.clock.now() - VirtualClock.DEFAULT_START).total_seconds(),
        )
        return results

    def _random_order(self):
        balances: Dict[str, Decimal] = {
            asset: amount
            for asset, amount in self.engine.ledger.balances().items()
            if amount > 0 and self.engine.get_market_price(asset) > 0
        }
        prices = self.engine.get_all_prices()
        asset_in = self.order_rng.choice(sorted(balances))
        asset_out = self.order_rng.choice(sorted(a for a in prices if a != asset_in))

        order_value = calculate_optimal_order_size(
            float(self.engine.ledger.revalue()), risk_tolerance=0.02
        )
        order_value *= 0.5 + self.order_rng.random()
        amount_in = Decimal(str(round(order_value / float(prices[asset_in]), 6)))
        amount_in = min(amount_in, balances[asset_in])

        expected_out = amount_in * prices[asset_in] / prices[asset_out]
        min_amount_out = (expected_out * Decimal("0.98")).quantize(Decimal("0.000001"))
        return asset_in, asset_out, amount_in, min_amount_out, Decimal("1.0")


def print_banner(preset: str, trades: int):
    print("=" * 60)
    print("           PAPER TRADING ENGINE")
    print("=" * 60)
    print(f"Preset: {preset}")
    print(f"Trades: {trades}")
    print("=" * 60)


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Paper Trading Engine - risk-free trade execution simulator"
    )
    parser.add_argument(
        "--preset",
        choices=sorted(PRESETS),
        default="default",
        help="Simulation preset (default: default)",
    )
    parser.add_argument(
        "--trades", type=int, default=100, help="Number of trades to simulate"
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument(
        "--concurrency", type=int, default=5, help="Trades submitted per batch"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="WARNING",
        help="Log level (default: WARNING)",
    )
    parser.add_argument(
        "--markdown", action="store_true", help="Print the report as markdown"
    )
    parser.add_argument(
        "--check", action="store_true", help="Validate the preset and exit"
    )

    args = parser.parse_args()

    # Setup logging
    setup_logging(level=args.log_level)

    if args.check:
        try:
            config = create_config(args.preset)
        except ConfigurationError as e:
            print("✗ Configuration errors:")
            for issue in e.issues:
                print(f"   - {issue}")
            return
        print(f"✓ Preset '{args.preset}' is valid")
        print(f"  Assets: {', '.join(sorted(config.initial_balance))}")
        return

    print_banner(args.preset, args.trades)

    session = PaperTradingSession(args.preset, seed=args.seed, concurrency=args.concurrency)
    try:
        await session.run(args.trades)
    except KeyboardInterrupt:
        print("\n\nShutdown requested by user...")
        return
    except Exception as e:
        logger.error("main.error", error=str(e), exc_info=True)
        print(f"\n✗ Fatal error: {e}")
        raise

    portfolio = session.engine.get_portfolio()
    report = generate_trading_report(portfolio)

    if args.markdown:
        print(report.to_markdown())
    else:
        print(report.summary)
        print(f"\nRisk assessment: {report.risk_assessment}")
        print(f"Risk profile:    {report.risk_profile}")
        if report.recommendations:
            print("\nRecommendations:")
            for recommendation in report.recommendations:
                print(f"  - {recommendation}")
    if session.alerts:
        print(f"\nRisk alerts raised: {len(session.alerts)}")


if __name__ == "__main__":
    asyncio.run(main())

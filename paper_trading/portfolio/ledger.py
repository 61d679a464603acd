"""
Portfolio ledger - the single authoritative holder of virtual balances.

Only the execution simulator's commit path mutates balances (plus the
out-of-band ``add_balance`` top-up and ``reset``). Valuation is always
derived from balances x current market prices and never tracked separately.
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Deque, Dict, List, Mapping, Optional, Set

import structlog

from paper_trading.core.config import EngineSettings
from paper_trading.core.models import PnLBreakdown, Portfolio, Trade, TradeStatus
from paper_trading.market.state import MarketState
from paper_trading.utils.clock import Clock
from paper_trading.utils.precision import (ZERO, Numeric, clamp_non_negative,
                                           quantize_amount, to_decimal)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ValuePoint:
    """One sample of the portfolio value series."""
    timestamp: datetime
    total_value: Decimal
    market_index: float


class PortfolioLedger:
    """
    Balances, trade history, outcome counters and the equity curve.

    Concurrency: the balance check and both legs of a swap must happen under
    ``lock`` so that two concurrent trades can never both spend the same
    balance.

    Generations: every ``reset()`` bumps ``generation``. Trades submitted
    under an older generation are never committed into the new ledger.
    """

    def __init__(
        self,
        initial_balance: Mapping[str, Numeric],
        market: MarketState,
        clock: Clock,
        settings: Optional[EngineSettings] = None,
    ):
        self.market = market
        self.clock = clock
        self.settings = settings or EngineSettings()
        self.lock = asyncio.Lock()
        self.generation = 0

        self._initial_balance: Dict[str, Decimal] = {
            asset: quantize_amount(amount) for asset, amount in initial_balance.items()
        }
        self._init_state()

    def _init_state(self) -> None:
        self._balances: Dict[str, Decimal] = dict(self._initial_balance)
        self.trades: List[Trade] = []
        self._trade_index: Dict[str, Trade] = {}
        self._resolved_ids: Set[str] = set()

        self.successful_trades = 0
        self.failed_trades = 0
        self.cancelled_trades = 0
        self.realized_pnl = ZERO

        # Equity curve: initial value at the prices in force now + cumulative
        # realized P&L. Price ticks alone never move it.
        self.baseline_value = self.initial_value()
        self._peak_equity: Optional[Decimal] = None
        self.max_drawdown = 0.0
        self.current_drawdown = 0.0

        self.value_history: Deque[ValuePoint] = deque(
            maxlen=self.settings.value_history_limit
        )

        self.total_value = ZERO
        self._set_period_anchors(self.clock.now())
        self._day_anchor = self.clock.now()
        self.revalue()
        self._update_equity()

    # -------------------------------------------------------------------------
    # Balances
    # -------------------------------------------------------------------------

    def balance(self, asset: str) -> Decimal:
        return self._balances.get(asset, ZERO)

    def balances(self) -> Dict[str, Decimal]:
        return dict(self._balances)

    @property
    def initial_balance(self) -> Dict[str, Decimal]:
        return dict(self._initial_balance)

    def apply_delta(self, asset: str, amount: Numeric) -> Decimal:
        """Apply a signed change to one balance, clamping the result at zero."""
        current = self.balance(asset)
        new_balance = clamp_non_negative(quantize_amount(current + to_decimal(amount)))
        if current + to_decimal(amount) < 0:
            logger.warning("ledger.balance_clamped", asset=asset,
                           balance=str(current), delta=str(amount))
        self._balances[asset] = new_balance
        return new_balance

    def commit_swap(self, asset_in: str, amount_in: Decimal,
                    asset_out: str, amount_out: Decimal) -> None:
        """
        Apply both legs of a swap.

        The caller holds ``lock`` and has already verified
        ``balance(asset_in) >= amount_in``.
        """
        self.apply_delta(asset_in, -amount_in)
        self.apply_delta(asset_out, amount_out)
        self.revalue()

    def add_balance(self, asset: str, amount: Numeric) -> Decimal:
        """Out-of-band top-up (deposits, test setup)."""
        value = to_decimal(amount)
        if not value.is_finite() or value < 0:
            raise ValueError(f"Top-up amount must be non-negative, got {amount!r}")
        new_balance = self.apply_delta(asset, value)
        self.revalue()
        logger.info("ledger.balance_added", asset=asset, amount=str(value),
                    balance=str(new_balance))
        return new_balance

    # -------------------------------------------------------------------------
    # Valuation
    # -------------------------------------------------------------------------

    def _value_of(self, balances: Mapping[str, Decimal]) -> Decimal:
        return sum(
            (amount * self.market.price(asset) for asset, amount in balances.items()),
            ZERO,
        )

    def revalue(self) -> Decimal:
        """Recompute ``total_value`` from balances x current prices."""
        self.total_value = self._value_of(self._balances)
        return self.total_value

    def initial_value(self) -> Decimal:
        """Configured initial balances valued at current prices."""
        return self._value_of(self._initial_balance)

    def record_value_point(self) -> ValuePoint:
        """Append the current valuation to the value series."""
        point = ValuePoint(
            timestamp=self.clock.now(),
            total_value=self.revalue(),
            market_index=self.market.market_index,
        )
        self.value_history.append(point)
        return point

    def _update_equity(self) -> None:
        equity = self.baseline_value + self.realized_pnl
        if self._peak_equity is None or equity > self._peak_equity:
            self._peak_equity = equity
        if self._peak_equity > 0:
            drawdown = float((self._peak_equity - equity) / self._peak_equity * 100)
        else:
            drawdown = 0.0
        self.current_drawdown = max(drawdown, 0.0)
        self.max_drawdown = max(self.max_drawdown, self.current_drawdown)

    # -------------------------------------------------------------------------
    # Trade history and counters
    # -------------------------------------------------------------------------

    @property
    def total_trades(self) -> int:
        return self.successful_trades + self.failed_trades + self.cancelled_trades

    def get_trade(self, trade_id: str) -> Optional[Trade]:
        return self._trade_index.get(trade_id)

    def record(self, trade: Trade) -> bool:
        """Append a newly created trade to history. Each id is recorded once."""
        if trade.id in self._trade_index:
            logger.warning("ledger.duplicate_trade", trade_id=trade.id)
            return False
        self.trades.append(trade)
        self._trade_index[trade.id] = trade
        return True

    def record_outcome(self, trade: Trade) -> bool:
        """
        Update counters for a terminal trade.

        Returns False (and changes nothing) if the outcome was already counted
        or the trade is still pending.
        """
        if not trade.is_terminal or trade.id in self._resolved_ids:
            return False
        self._resolved_ids.add(trade.id)

        if trade.status == TradeStatus.COMPLETED:
            self.successful_trades += 1
            self.realized_pnl += trade.realized_pnl
            self._update_equity()
            self.record_value_point()
        elif trade.status == TradeStatus.FAILED:
            self.failed_trades += 1
        else:
            self.cancelled_trades += 1
        return True

    # -------------------------------------------------------------------------
    # P&L periods
    # -------------------------------------------------------------------------

    def _set_period_anchors(self, now: datetime) -> None:
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        self._week_anchor = midnight - timedelta(days=now.weekday())
        self._month_anchor = midnight.replace(day=1)

    def _realized_since(self, anchor: datetime) -> Decimal:
        return sum(
            (
                t.realized_pnl
                for t in self.trades
                if t.status == TradeStatus.COMPLETED
                and t.executed_at is not None
                and t.executed_at >= anchor
            ),
            ZERO,
        )

    def daily_reset(self) -> Decimal:
        """Start a new daily P&L period. Returns the closed day's realized P&L."""
        now = self.clock.now()
        closed = self._realized_since(self._day_anchor)
        self._day_anchor = now
        self._set_period_anchors(now)
        logger.info("ledger.daily_reset", daily_pnl=str(closed),
                    total_value=str(self.revalue()))
        return closed

    def pnl(self) -> PnLBreakdown:
        total = self.revalue() - self.initial_value()
        return PnLBreakdown(
            realized=self.realized_pnl,
            unrealized=total - self.realized_pnl,
            total=total,
            daily=self._realized_since(self._day_anchor),
            weekly=self._realized_since(self._week_anchor),
            monthly=self._realized_since(self._month_anchor),
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def on_price_update(self) -> None:
        """Refresh valuation and the value series after a tick."""
        self.record_value_point()

    def reset(self) -> int:
        """Restore initial balances and clear history. Returns the new generation."""
        self.generation += 1
        self._init_state()
        logger.info("ledger.reset", generation=self.generation,
                    total_value=str(self.total_value))
        return self.generation

    def snapshot(self) -> Portfolio:
        """Revalued deep copy of balances, P&L and history."""
        return Portfolio(
            balances=self.balances(),
            total_value=self.revalue(),
            initial_value=self.initial_value(),
            pnl=self.pnl(),
            trades=[t.model_copy(deep=True) for t in self.trades],
            timestamp=self.clock.now(),
        )

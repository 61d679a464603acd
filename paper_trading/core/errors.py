"""Exception hierarchy for the paper trading engine.

Per-trade failures (insufficient balance, slippage, simulated network
failures) are never raised: they are recorded on the Trade itself. Only the
conditions below interrupt the caller.
"""


class PaperTradingError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(PaperTradingError, ValueError):
    """Invalid simulation configuration. Raised at construction time only."""

    def __init__(self, message: str, issues=None):
        super().__init__(message)
        self.issues = list(issues or [])


class EngineStoppedError(PaperTradingError):
    """A trade was submitted after ``stop()``."""


class TradeStateError(PaperTradingError):
    """Attempt to resolve a trade that is already terminal."""

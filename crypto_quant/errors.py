"""
Error Taxonomy
==============
Exceptions raised by the trading core.

Risk rejections and indicator warm-up are NOT errors: they come back as
``ValidationResult`` objects and ``None`` results respectively.
"""


class TradingError(Exception):
    """Base class for all trading core errors."""


class ConfigurationError(TradingError, ValueError):
    """Missing or invalid configuration, strategy definition or risk limits."""


class InsufficientDataError(TradingError, ValueError):
    """Not enough usable candles to run a simulation."""


class DataValidationError(TradingError, ValueError):
    """Malformed market data (negative prices, high < low, unordered times)."""


class ExecutionError(TradingError):
    """Order placement or cancellation failed at the connector boundary."""

    def __init__(self, message: str, symbol: str = "", order_id: str = ""):
        super().__init__(message)
        self.symbol = symbol
        self.order_id = order_id

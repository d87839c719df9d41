"""
Execution Module
================
Narrow order-execution interface consumed by the live engine.

Exchange connectivity (REST/WebSocket, auth, reconnection, retries) lives
outside the core. Executors report failures by raising ``ExecutionError``;
the engine logs them and treats the trade as not taken.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from enum import Enum
import logging
import threading

import pandas as pd

from ..errors import ExecutionError

logger = logging.getLogger(__name__)


class OrderType(Enum):
    """Order types."""
    MARKET = "MARKET"
    LIMIT = "LIMIT"


class OrderSide(Enum):
    """Order side."""
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> 'OrderSide':
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderStatus(Enum):
    """Order status."""
    NEW = "NEW"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"


@dataclass
class OrderResult:
    """Connector response for a placed or cancelled order."""
    order_id: str
    symbol: str
    side: OrderSide
    order_type: OrderType
    quantity: float
    status: OrderStatus
    executed_quantity: float = 0.0
    average_price: float = 0.0
    price: Optional[float] = None  # Limit price
    commission: float = 0.0
    timestamp: Optional[pd.Timestamp] = None

    @property
    def is_filled(self) -> bool:
        return self.status == OrderStatus.FILLED

    @property
    def is_open(self) -> bool:
        return self.status in (OrderStatus.NEW, OrderStatus.PARTIALLY_FILLED)

    def to_dict(self) -> dict:
        return {
            'order_id': self.order_id,
            'symbol': self.symbol,
            'side': self.side.value,
            'type': self.order_type.value,
            'quantity': self.quantity,
            'status': self.status.value,
            'executed_quantity': self.executed_quantity,
            'average_price': self.average_price,
            'price': self.price,
            'commission': self.commission,
            'timestamp': self.timestamp.isoformat() if self.timestamp is not None else None
        }


class OrderExecutor(ABC):
    """Order execution boundary. Both calls are fallible."""

    @abstractmethod
    def place_order(self, symbol: str, side: OrderSide, order_type: OrderType,
                    quantity: float, price: Optional[float] = None) -> OrderResult:
        """Submit an order. Raises ExecutionError on failure."""

    @abstractmethod
    def cancel_order(self, symbol: str, order_id: str) -> OrderResult:
        """Cancel an open order. Raises ExecutionError on failure."""

    def on_market_data(self, symbol: str, price: float, timestamp: Optional[pd.Timestamp] = None):
        """Called by the engine for every processed candle. Exchange connectors ignore it."""


class PaperExecutor(OrderExecutor):
    """
    In-memory executor for paper trading and tests.

    Market orders fill immediately at the last known price adjusted by a
    fixed slippage; limit orders rest until ``set_market_price`` makes
    them marketable. Order ids are sequential, so runs are reproducible.
    """

    def __init__(self, slippage: float = 0.0, commission_rate: float = 0.001):
        self.slippage = slippage
        self.commission_rate = commission_rate

        self.market_prices: Dict[str, float] = {}
        self.orders: Dict[str, OrderResult] = {}
        self.fills: List[OrderResult] = []

        self._sequence = 0
        self._lock = threading.Lock()

    def set_market_price(self, symbol: str, price: float, timestamp: Optional[pd.Timestamp] = None):
        """Update the reference price and fill any marketable resting limits."""
        with self._lock:
            self.market_prices[symbol] = price
            for order in list(self.orders.values()):
                if order.symbol != symbol or not order.is_open:
                    continue
                marketable = (
                    (order.side == OrderSide.BUY and price <= order.price) or
                    (order.side == OrderSide.SELL and price >= order.price)
                )
                if marketable:
                    self._fill(order, order.price, timestamp)

    def on_market_data(self, symbol: str, price: float, timestamp: Optional[pd.Timestamp] = None):
        self.set_market_price(symbol, price, timestamp)

    def place_order(self, symbol: str, side: OrderSide, order_type: OrderType,
                    quantity: float, price: Optional[float] = None) -> OrderResult:
        if quantity <= 0:
            raise ExecutionError(f"Invalid quantity {quantity} for {symbol}", symbol=symbol)

        with self._lock:
            market = self.market_prices.get(symbol)
            if market is None:
                raise ExecutionError(f"No market price for {symbol}", symbol=symbol)
            if order_type == OrderType.LIMIT and (price is None or price <= 0):
                raise ExecutionError(f"Limit order for {symbol} needs a positive price", symbol=symbol)

            self._sequence += 1
            order = OrderResult(
                order_id=f"PAPER-{self._sequence:06d}",
                symbol=symbol,
                side=side,
                order_type=order_type,
                quantity=quantity,
                status=OrderStatus.NEW,
                price=price
            )
            self.orders[order.order_id] = order

            if order_type == OrderType.MARKET:
                adjustment = 1 + self.slippage if side == OrderSide.BUY else 1 - self.slippage
                self._fill(order, market * adjustment, None)
            elif (side == OrderSide.BUY and market <= price) or (side == OrderSide.SELL and market >= price):
                self._fill(order, price, None)

            logger.info(
                f"Paper order {order.order_id}: {side.value} {quantity} {symbol} "
                f"{order_type.value} -> {order.status.value}"
            )
            return order

    def cancel_order(self, symbol: str, order_id: str) -> OrderResult:
        with self._lock:
            order = self.orders.get(order_id)
            if order is None or order.symbol != symbol:
                raise ExecutionError(f"Unknown order {order_id} for {symbol}", symbol=symbol, order_id=order_id)
            if not order.is_open:
                raise ExecutionError(
                    f"Order {order_id} is {order.status.value}, cannot cancel",
                    symbol=symbol,
                    order_id=order_id
                )
            order.status = OrderStatus.CANCELLED
            logger.info(f"Paper order {order_id} cancelled")
            return order

    def get_open_orders(self, symbol: Optional[str] = None) -> List[OrderResult]:
        with self._lock:
            return [
                o for o in self.orders.values()
                if o.is_open and (symbol is None or o.symbol == symbol)
            ]

    def _fill(self, order: OrderResult, price: float, timestamp: Optional[pd.Timestamp]):
        order.status = OrderStatus.FILLED
        order.executed_quantity = order.quantity
        order.average_price = price
        order.commission = order.quantity * price * self.commission_rate
        order.timestamp = timestamp
        self.fills.append(order)

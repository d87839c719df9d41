"""
Event Bus
=========
Typed observer fan-out for engine, risk and alert events.

Event variants are a fixed enum and each variant declares the payload
fields it must carry, so publishers cannot emit misspelled events or
incomplete payloads.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple
from enum import Enum
import logging
import threading

import pandas as pd

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Every event the core can publish."""
    ENGINE_STARTED = "engine_started"
    ENGINE_STOPPED = "engine_stopped"
    MARKET_DATA_PROCESSED = "market_data_processed"
    SIGNAL_GENERATED = "signal_generated"
    TRADE_EXECUTED = "trade_executed"
    TRADE_REJECTED = "trade_rejected"
    TRADE_ERROR = "trade_error"
    POSITION_OPENED = "position_opened"
    POSITION_CLOSED = "position_closed"
    RISK_ALERT = "risk_alert"
    PERFORMANCE_ALERT = "performance_alert"
    CIRCUIT_BREAKER_TRIPPED = "circuit_breaker_tripped"
    CIRCUIT_BREAKER_RESET = "circuit_breaker_reset"
    EMERGENCY_STOP = "emergency_stop"
    DAILY_RESET = "daily_reset"


REQUIRED_FIELDS: Dict[EventType, Tuple[str, ...]] = {
    EventType.ENGINE_STARTED: (),
    EventType.ENGINE_STOPPED: (),
    EventType.MARKET_DATA_PROCESSED: ('symbol', 'close'),
    EventType.SIGNAL_GENERATED: ('symbol', 'strategy_id', 'signal', 'confidence'),
    EventType.TRADE_EXECUTED: ('symbol', 'side', 'quantity', 'price', 'order_id'),
    EventType.TRADE_REJECTED: ('symbol', 'reasons'),
    EventType.TRADE_ERROR: ('symbol', 'error'),
    EventType.POSITION_OPENED: ('symbol', 'side', 'quantity', 'price'),
    EventType.POSITION_CLOSED: ('symbol', 'pnl', 'reason'),
    EventType.RISK_ALERT: ('alerts',),
    EventType.PERFORMANCE_ALERT: ('strategy_id', 'alerts'),
    EventType.CIRCUIT_BREAKER_TRIPPED: ('reason', 'consecutive_losses'),
    EventType.CIRCUIT_BREAKER_RESET: ('reason',),
    EventType.EMERGENCY_STOP: ('reason',),
    EventType.DAILY_RESET: ('date',),
}


@dataclass(frozen=True)
class Event:
    """A published event."""
    type: EventType
    sequence: int
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[pd.Timestamp] = None

    def __getitem__(self, key: str) -> Any:
        return self.payload[key]


EventHandler = Callable[[Event], None]


class EventBus:
    """Synchronous publish/subscribe bus with a bounded audit history."""

    def __init__(self, history_size: int = 1000):
        self._handlers: Dict[EventType, List[EventHandler]] = {t: [] for t in EventType}
        self._wildcard: List[EventHandler] = []
        self._history: Deque[Event] = deque(maxlen=history_size)
        self._sequence = 0
        self._lock = threading.RLock()

    def subscribe(self, event_type: EventType, handler: EventHandler):
        with self._lock:
            self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: EventHandler):
        with self._lock:
            self._wildcard.append(handler)

    def unsubscribe(self, event_type: EventType, handler: EventHandler):
        with self._lock:
            if handler in self._handlers[event_type]:
                self._handlers[event_type].remove(handler)

    def publish(self, event_type: EventType, timestamp: Optional[pd.Timestamp] = None, **payload) -> Event:
        """
        Publish an event to its subscribers.

        Raises:
            ValueError: if the payload lacks a field the variant requires
        """
        missing = [name for name in REQUIRED_FIELDS[event_type] if name not in payload]
        if missing:
            raise ValueError(f"{event_type.value} event missing fields: {missing}")

        with self._lock:
            self._sequence += 1
            event = Event(type=event_type, sequence=self._sequence, payload=payload, timestamp=timestamp)
            self._history.append(event)
            handlers = list(self._handlers[event_type]) + list(self._wildcard)

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                name = getattr(handler, '__qualname__', repr(handler))
                logger.exception(f"Event handler {name} failed on {event_type.value}")

        return event

    def history(self, event_type: Optional[EventType] = None) -> List[Event]:
        with self._lock:
            if event_type is None:
                return list(self._history)
            return [e for e in self._history if e.type == event_type]

    def clear_history(self):
        with self._lock:
            self._history.clear()

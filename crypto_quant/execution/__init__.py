"""
Execution Module
================
"""
from .execution_engine import (
    OrderExecutor,
    PaperExecutor,
    OrderResult,
    OrderType,
    OrderSide,
    OrderStatus
)

__all__ = [
    'OrderExecutor',
    'PaperExecutor',
    'OrderResult',
    'OrderType',
    'OrderSide',
    'OrderStatus'
]

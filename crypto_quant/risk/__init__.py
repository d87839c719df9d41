"""
Risk Module
===========
"""
from .risk_manager import (
    RiskManager,
    Position,
    PositionSide,
    Portfolio,
    TradeRequest,
    RiskCheck,
    RiskSeverity,
    ValidationResult,
    RiskAlert,
    RiskAlertType,
    DailyRiskStats,
    VolatilityData,
    RiskReport,
    CircuitState
)

__all__ = [
    'RiskManager',
    'Position',
    'PositionSide',
    'Portfolio',
    'TradeRequest',
    'RiskCheck',
    'RiskSeverity',
    'ValidationResult',
    'RiskAlert',
    'RiskAlertType',
    'DailyRiskStats',
    'VolatilityData',
    'RiskReport',
    'CircuitState'
]

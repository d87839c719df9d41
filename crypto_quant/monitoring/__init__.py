"""
Monitoring Module
=================
"""
from .events import EventBus, Event, EventType
from .monitoring_system import (
    AlertManager,
    Alert,
    AlertSeverity,
    PerformanceAlert,
    PerformanceAlertType,
    PerformanceTracker,
    PerformanceReport
)

__all__ = [
    'EventBus',
    'Event',
    'EventType',
    'AlertManager',
    'Alert',
    'AlertSeverity',
    'PerformanceAlert',
    'PerformanceAlertType',
    'PerformanceTracker',
    'PerformanceReport'
]

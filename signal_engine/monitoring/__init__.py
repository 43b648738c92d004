"""
Monitoring Module
=================
"""
from .health_monitor import (
    Alert,
    AlertManager,
    AlertSeverity,
    HealthMonitor,
    HealthStatus
)

__all__ = [
    'Alert',
    'AlertManager',
    'AlertSeverity',
    'HealthMonitor',
    'HealthStatus'
]

"""
Monitoring Module
=================
Service health, per-asset error tracking, cycle statistics and alerts.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional
import logging
import threading

import pandas as pd

logger = logging.getLogger(__name__)


class AlertSeverity(Enum):
    """Alert severity levels."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class HealthStatus(Enum):
    """Overall service health."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class Alert:
    """Alert notification."""
    severity: AlertSeverity
    title: str
    message: str
    timestamp: pd.Timestamp = field(default_factory=pd.Timestamp.now)
    source: str = ""

    def to_dict(self) -> dict:
        return {
            'severity': self.severity.value,
            'title': self.title,
            'message': self.message,
            'timestamp': self.timestamp.isoformat(),
            'source': self.source
        }


class AlertManager:
    """Logs alerts and dispatches them to console and custom handlers."""

    def __init__(self, config=None, max_alerts: int = 500):
        from ..config import MonitoringConfig
        self.config = config or MonitoringConfig()
        self.max_alerts = max_alerts

        self.alerts: List[Alert] = []
        self.alert_handlers: List[Callable[[Alert], None]] = []

    def add_handler(self, handler: Callable[[Alert], None]):
        """Add custom alert handler."""
        self.alert_handlers.append(handler)

    def send_alert(self, severity: AlertSeverity, title: str, message: str, source: str = ""):
        """Create and dispatch an alert."""
        alert = Alert(severity=severity, title=title, message=message, source=source)

        self.alerts.append(alert)
        if len(self.alerts) > self.max_alerts:
            self.alerts = self.alerts[-self.max_alerts:]

        log_method = getattr(logger, severity.value)
        log_method(f"[ALERT] {title}: {message}")

        if not self.config.enable_alerts:
            return

        if 'console' in self.config.alert_channels:
            print(f"[{alert.severity.value.upper()}] {alert.title}: {alert.message}")

        for handler in self.alert_handlers:
            try:
                handler(alert)
            except Exception as e:
                logger.error(f"Alert handler error: {e}")

    def get_recent_alerts(self, n: int = 20) -> List[Alert]:
        return self.alerts[-n:]


@dataclass
class CycleStats:
    """Update-cycle statistics."""
    cycles_completed: int = 0
    cycles_failed: int = 0
    stalled_cycles: int = 0
    last_cycle_duration: float = 0.0
    avg_cycle_duration: float = 0.0
    last_cycle_time: Optional[pd.Timestamp] = None


class HealthMonitor:
    """
    Tracks per-asset errors and cycle health.

    An asset with no recent errors is healthy, one with fewer than
    `error_threshold` consecutive errors is degraded, anything above has failed.
    The service score is the share of healthy assets.
    """

    def __init__(self, config=None, error_threshold: int = 5):
        from ..config import MonitoringConfig
        self.config = config or MonitoringConfig()
        self.error_threshold = error_threshold
        self.alerts = AlertManager(self.config)

        self.cycle_stats = CycleStats()
        self._asset_errors: Dict[str, int] = {}
        self._last_errors: Dict[str, str] = {}
        self._lock = threading.Lock()

    def register(self, asset: str):
        with self._lock:
            self._asset_errors.setdefault(asset, 0)

    def unregister(self, asset: str):
        with self._lock:
            self._asset_errors.pop(asset, None)
            self._last_errors.pop(asset, None)

    def record_asset_success(self, asset: str):
        with self._lock:
            self._asset_errors[asset] = 0

    def record_asset_error(self, asset: str, error: Exception):
        with self._lock:
            count = self._asset_errors.get(asset, 0) + 1
            self._asset_errors[asset] = count
            self._last_errors[asset] = str(error)

        if count == self.error_threshold:
            self.alerts.send_alert(
                AlertSeverity.WARNING,
                "Asset failing",
                f"{asset} failed {count} consecutive cycles: {error}",
                source=asset
            )

    def error_count(self, asset: str) -> int:
        with self._lock:
            return self._asset_errors.get(asset, 0)

    def record_cycle(self, duration: float, failed: bool = False):
        with self._lock:
            stats = self.cycle_stats
            if failed:
                stats.cycles_failed += 1
            else:
                stats.cycles_completed += 1
            stats.last_cycle_duration = duration
            if stats.avg_cycle_duration == 0:
                stats.avg_cycle_duration = duration
            else:
                stats.avg_cycle_duration = 0.9 * stats.avg_cycle_duration + 0.1 * duration
            stats.last_cycle_time = pd.Timestamp.now()

    def record_stalled_cycle(self, elapsed: float):
        with self._lock:
            self.cycle_stats.stalled_cycles += 1
        self.alerts.send_alert(
            AlertSeverity.CRITICAL,
            "Cycle stalled",
            f"Update cycle still running after {elapsed:.1f}s",
            source="watchdog"
        )

    def get_service_health(self) -> Dict:
        with self._lock:
            counts = dict(self._asset_errors)

        total = len(counts)
        healthy = sum(1 for c in counts.values() if c == 0)
        degraded = sum(1 for c in counts.values() if 0 < c < self.error_threshold)
        failed = total - healthy - degraded

        score = (healthy / total * 100) if total else 0.0
        if score > self.config.healthy_score:
            status = HealthStatus.HEALTHY
        elif score > self.config.degraded_score:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.UNHEALTHY

        return {
            'status': status.value,
            'score': score,
            'healthy': healthy,
            'degraded': degraded,
            'failed': failed,
            'total': total,
            'stalled_cycles': self.cycle_stats.stalled_cycles,
            'cycles_completed': self.cycle_stats.cycles_completed
        }

    def get_status(self) -> Dict:
        stats = self.cycle_stats
        return {
            'cycles_completed': stats.cycles_completed,
            'cycles_failed': stats.cycles_failed,
            'stalled_cycles': stats.stalled_cycles,
            'last_cycle_duration': stats.last_cycle_duration,
            'avg_cycle_duration': stats.avg_cycle_duration,
            'last_cycle_time': stats.last_cycle_time.isoformat() if stats.last_cycle_time else None,
            'asset_errors': {a: c for a, c in self._asset_errors.items() if c},
            'last_errors': dict(self._last_errors),
            'recent_alerts': [a.to_dict() for a in self.alerts.get_recent_alerts(5)]
        }

    def reset(self):
        with self._lock:
            self._asset_errors = {}
            self._last_errors = {}
            self.cycle_stats = CycleStats()

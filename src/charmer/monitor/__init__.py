"""Background producers and the service that wires them to the state store."""

from charmer.monitor.polling import PollingService, PollStats, SchedulerBackend, backend_for
from charmer.monitor.service import MonitorHealth, MonitorService, resolve_scheduler
from charmer.monitor.watcher import ChangeEvent, ChangeKind, ChangeNotifier, Debouncer

__all__ = [
    "ChangeEvent",
    "ChangeKind",
    "ChangeNotifier",
    "Debouncer",
    "MonitorHealth",
    "MonitorService",
    "PollStats",
    "PollingService",
    "SchedulerBackend",
    "backend_for",
    "resolve_scheduler",
]

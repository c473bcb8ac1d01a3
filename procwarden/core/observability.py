"""
Observability infrastructure for procwarden.

This module provides:
- Structured JSON logging
- Metrics collection (Prometheus format)
"""

import json
import logging
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from procwarden.core.redact import redact_text


class LogLevel(Enum):
    """Log levels for structured logging."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class LogEntry:
    """Structured log entry."""

    timestamp: str
    level: str
    message: str
    run_id: Optional[str] = None
    service: str = "procwarden"
    component: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    duration_ms: Optional[float] = None


class StructuredLogger:
    """Structured JSON logger.

    Runs execute concurrently on one event loop, so the run identifier is
    passed with each call rather than kept as logger-wide context.
    """

    def __init__(self, name: str, output_file: Optional[Path] = None):
        """Initialize structured logger.

        Args:
            name: Logger name (usually module name)
            output_file: Optional file path for JSON log output
        """
        self.name = name
        self.logger = logging.getLogger(name)
        self.output_file = output_file

        if output_file:
            self._setup_json_handler(output_file)

    def _setup_json_handler(self, output_file: Path):
        """Setup JSON file handler."""
        output_file.parent.mkdir(parents=True, exist_ok=True)

        handler = logging.FileHandler(output_file)
        handler.setFormatter(JSONFormatter())
        self.logger.addHandler(handler)

    def _create_entry(self, level: str, message: str, **kwargs) -> LogEntry:
        """Create a structured log entry."""
        return LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            message=message,
            component=self.name,
            **kwargs,
        )

    def _log(self, level: LogLevel, message: str, **kwargs):
        """Internal log method."""
        py_level = getattr(logging, level.name)
        if not self.logger.isEnabledFor(py_level):
            return

        entry = self._create_entry(level.value, message, **kwargs)

        log_dict = asdict(entry)
        log_dict = {k: v for k, v in log_dict.items() if v is not None}

        self.logger.log(py_level, json.dumps(log_dict, default=str))

    def debug(self, message: str, **kwargs):
        """Log debug message."""
        self._log(LogLevel.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        """Log info message."""
        self._log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message."""
        self._log(LogLevel.WARNING, message, **kwargs)

    def error(self, message: str, error: Optional[BaseException] = None, **kwargs):
        """Log error message."""
        error_dict = None
        if error:
            error_dict = {
                "type": type(error).__name__,
                "message": str(error),
            }
        self._log(LogLevel.ERROR, message, error=error_dict, **kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message."""
        self._log(LogLevel.CRITICAL, message, **kwargs)

    @contextmanager
    def timed_operation(self, operation_name: str, **kwargs):
        """Context manager for timing operations.

        Args:
            operation_name: Name of the operation being timed
            **kwargs: Additional metadata to log
        """
        start_time = time.monotonic()

        try:
            yield
        finally:
            duration_ms = (time.monotonic() - start_time) * 1000
            self.debug(
                f"Operation completed: {operation_name}",
                duration_ms=duration_ms,
                metadata={"operation": operation_name, **kwargs},
            )


class JSONFormatter(logging.Formatter):
    """JSON formatter for Python logging."""

    def format(self, record):
        """Format log record as JSON with redaction."""
        if isinstance(record.msg, str) and record.msg.startswith("{"):
            return redact_text(record.getMessage())

        log_dict = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "message": redact_text(record.getMessage()),
            "component": record.name,
        }

        return json.dumps(log_dict)


class MetricsCollector:
    """Metrics collector with Prometheus format support."""

    OUTCOMES = ("exited", "timed_out", "cancelled", "launch_failed", "failed")

    def __init__(self, namespace: str = "procwarden", enabled: bool = True):
        """Initialize metrics collector.

        Args:
            namespace: Prometheus metrics namespace
            enabled: When False, recording calls are no-ops
        """
        self.namespace = namespace
        self.enabled = enabled
        self.registry = CollectorRegistry()

        self._setup_metrics()

    def _setup_metrics(self):
        """Setup Prometheus metrics."""
        self.runs_total = Counter(
            f"{self.namespace}_runs_total",
            "Total number of process runs by outcome",
            ["outcome"],
            registry=self.registry,
        )

        self.run_duration = Histogram(
            f"{self.namespace}_run_duration_seconds",
            "Wall-clock duration of process runs in seconds",
            ["outcome"],
            registry=self.registry,
        )

        self.reaped_processes = Counter(
            f"{self.namespace}_reaped_processes_total",
            "Total number of descendant processes terminated after a timeout",
            registry=self.registry,
        )

        self.reap_failures = Counter(
            f"{self.namespace}_reap_failures_total",
            "Total number of descendant processes that could not be looked up or terminated",
            registry=self.registry,
        )

    def record_run(self, outcome: str, duration: float):
        """Record the conclusion of a process run."""
        if not self.enabled:
            return
        if outcome not in self.OUTCOMES:
            raise ValueError(f"Unknown run outcome: {outcome}")
        self.runs_total.labels(outcome=outcome).inc()
        self.run_duration.labels(outcome=outcome).observe(duration)

    def record_reap(self, killed: int, failures: int):
        """Record the result of one process tree sweep."""
        if not self.enabled:
            return
        if killed:
            self.reaped_processes.inc(killed)
        if failures:
            self.reap_failures.inc(failures)

    def get_metrics(self) -> bytes:
        """Get metrics in Prometheus format."""
        return generate_latest(self.registry)

    def get_sample(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Return the current value of one sample, 0.0 if it was never recorded."""
        value = self.registry.get_sample_value(name, labels or {})
        return value or 0.0


# Global instances
_logger_cache: Dict[str, StructuredLogger] = {}
_metrics_collector: Optional[MetricsCollector] = None


def get_logger(name: str, output_file: Optional[Path] = None) -> StructuredLogger:
    """Get or create a structured logger.

    Args:
        name: Logger name
        output_file: Optional JSON output file

    Returns:
        StructuredLogger instance
    """
    if name not in _logger_cache:
        _logger_cache[name] = StructuredLogger(name, output_file)
    return _logger_cache[name]


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def configure_observability(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    enable_metrics: bool = True,
    namespace: str = "procwarden",
):
    """Configure global observability settings.

    Args:
        log_level: Logging level
        log_file: Optional JSON log file path
        enable_metrics: Enable metrics collection
        namespace: Prometheus metrics namespace
    """
    global _metrics_collector

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("procwarden").setLevel(getattr(logging, log_level.upper()))

    if log_file:
        handler = logging.FileHandler(log_file)
        handler.setFormatter(JSONFormatter())
        logging.getLogger().addHandler(handler)

    _metrics_collector = MetricsCollector(namespace=namespace, enabled=enable_metrics)

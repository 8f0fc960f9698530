"""
Advanced Logging Module

Structured logging for the reachability service:
- structlog configuration on top of stdlib logging (JSON or console output)
- Run ID propagation so every event of one ordering run can be correlated
- Timing of whole operations (PerformanceLogger)
- Throttled progress reporting while a cluster order grows (ProgressLogger)
"""

import contextlib
import contextvars
import logging
import logging.handlers
import time
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import structlog
from structlog.types import EventDict, Processor


_run_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("run_id", default=None)

# Handlers added by configure_logging, replaced on reconfiguration
_installed_handlers: List[logging.Handler] = []


# =============================================================================
# Structured Logging Configuration
# =============================================================================


def add_service_context(service_name: str) -> Processor:
    """Return a processor stamping every event with the service name."""

    def processor(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor


def add_run_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Attach the active run id, if any, to the event."""
    run_id = _run_id.get()
    if run_id is not None:
        event_dict.setdefault("run_id", run_id)
    return event_dict


def _build_handlers(level: int, log_file: Optional[str]) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                path,
                maxBytes=50 * 1024 * 1024,  # 50MB
                backupCount=3,
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter("%(message)s"))
    return handlers


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
    service_name: str = "optics-reachability",
) -> None:
    """
    Route structlog through stdlib logging and pick the renderer.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_format: "json" for machine-readable lines, anything else for console
        log_file: Optional path of a rotating log file
        service_name: Value of the `service` field on every event
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    root = logging.getLogger()
    while _installed_handlers:
        handler = _installed_handlers.pop()
        root.removeHandler(handler)
        handler.close()
    for handler in _build_handlers(level, log_file):
        root.addHandler(handler)
        _installed_handlers.append(handler)
    root.setLevel(level)

    renderer: Processor
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            add_service_context(service_name),
            add_run_id,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


# =============================================================================
# Run ID Context
# =============================================================================


class LogContext:
    """
    Run id of the ordering run in progress.

    Stored in a context variable, so concurrent runs in different threads or
    tasks do not see each other's id.
    """

    @staticmethod
    def set_run_id(run_id: str) -> None:
        _run_id.set(run_id)

    @staticmethod
    def get_run_id() -> Optional[str]:
        return _run_id.get()

    @staticmethod
    def clear_run_id() -> None:
        _run_id.set(None)

    @staticmethod
    @contextlib.contextmanager
    def run_context(run_id: str) -> Iterator[str]:
        """
        Scope a run id to a block.

        Example:
            with LogContext.run_context("a1b2c3"):
                engine.run(object_ids)
        """
        token = _run_id.set(run_id)
        try:
            yield run_id
        finally:
            _run_id.reset(token)


def get_logger(name: str) -> structlog.BoundLogger:
    """
    structlog logger for `name`, pre-bound with the active run id.

    Args:
        name: Logger name (usually __name__)
    """
    logger = structlog.get_logger(name)
    run_id = _run_id.get()
    return logger.bind(run_id=run_id) if run_id else logger


# =============================================================================
# Performance Logger
# =============================================================================


class PerformanceLogger:
    """
    Times a block and logs one completion (or failure) event.

    Example:
        with PerformanceLogger("optics_ordering", item_count=len(vectors)):
            order = engine.run(ids)
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[structlog.BoundLogger] = None,
        log_level: str = "info",
        item_count: Optional[int] = None,
        **extra_context: Any,
    ):
        """
        Args:
            operation: Name reported in the `operation` field
            logger: Target logger (module logger when omitted)
            log_level: Method used for the completion event
            item_count: Objects handled by the block, for a throughput figure
            **extra_context: Extra fields for both events
        """
        self.operation = operation
        self.logger = logger or get_logger(__name__)
        self.log_level = log_level
        self.item_count = item_count
        self.extra_context = extra_context
        self._started: Optional[float] = None
        self._finished: Optional[float] = None

    def __enter__(self) -> "PerformanceLogger":
        self._started = time.perf_counter()
        self.logger.debug("operation_started", operation=self.operation, **self.extra_context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._finished = time.perf_counter()
        fields = self._fields()

        if exc_type is None:
            getattr(self.logger, self.log_level)("operation_completed", **fields)
            return

        fields["error"] = str(exc_val)
        fields["error_type"] = exc_type.__name__
        self.logger.error("operation_failed", **fields)

    def _fields(self) -> Dict[str, Any]:
        elapsed = self.elapsed_time
        fields: Dict[str, Any] = {
            "operation": self.operation,
            "duration_ms": round(elapsed * 1000, 3),
        }
        if self.item_count and elapsed > 0:
            fields["item_count"] = self.item_count
            fields["items_per_second"] = round(self.item_count / elapsed, 2)
        fields.update(self.extra_context)
        return fields

    @property
    def elapsed_time(self) -> float:
        """Seconds spent in the block so far (0.0 before entering)."""
        if self._started is None:
            return 0.0
        end = self._finished if self._finished is not None else time.perf_counter()
        return end - self._started


# =============================================================================
# Progress Logger
# =============================================================================


class ProgressLogger:
    """
    Reports how far a long loop has got, at most once per `log_interval` items.

    The OPTICS engine feeds it the size of the cluster order after every
    commit when running in verbose mode.
    """

    def __init__(
        self,
        total_items: int,
        operation: str,
        log_interval: int = 100,
        logger: Optional[structlog.BoundLogger] = None,
    ):
        self.total_items = total_items
        self.operation = operation
        self.log_interval = max(1, log_interval)
        self.logger = logger or get_logger(__name__)

        self.processed_items = 0
        self._last_reported = 0
        self._started = time.perf_counter()

    def advance(self, count: int = 1) -> None:
        """Count `count` more items as done."""
        self.advance_to(self.processed_items + count)

    def advance_to(self, processed: int) -> None:
        """Set the absolute number of items done."""
        self.processed_items = processed
        due = processed - self._last_reported >= self.log_interval
        if due or processed >= self.total_items:
            self._report()
            self._last_reported = processed

    def _report(self) -> None:
        elapsed = time.perf_counter() - self._started
        rate = self.processed_items / elapsed if elapsed > 0 else 0.0
        remaining = max(self.total_items - self.processed_items, 0)

        self.logger.info(
            "progress",
            operation=self.operation,
            processed=self.processed_items,
            total=self.total_items,
            percent=round(100.0 * self.processed_items / self.total_items, 1) if self.total_items else 100.0,
            items_per_second=round(rate, 2),
            eta_seconds=round(remaining / rate, 1) if rate > 0 else None,
        )

    def finish(self) -> None:
        """Log the final count and overall throughput."""
        elapsed = time.perf_counter() - self._started
        self.logger.info(
            "progress_completed",
            operation=self.operation,
            processed=self.processed_items,
            duration_ms=round(elapsed * 1000, 3),
        )


# =============================================================================
# Utility Functions
# =============================================================================


@contextlib.contextmanager
def log_exceptions(
    logger: Optional[structlog.BoundLogger] = None,
    operation: Optional[str] = None,
    reraise: bool = True,
) -> Iterator[None]:
    """
    Log any exception leaving the block, with its traceback.

    Args:
        logger: Target logger (module logger when omitted)
        operation: Optional `operation` field
        reraise: Re-raise after logging (default) or swallow

    Example:
        with log_exceptions(operation="export_cluster_order"):
            storage.save(order, run_id)
    """
    try:
        yield
    except Exception as e:
        fields: Dict[str, Any] = {"error": str(e), "error_type": type(e).__name__}
        if operation is not None:
            fields["operation"] = operation
        (logger or get_logger(__name__)).error("exception_caught", exc_info=True, **fields)
        if reraise:
            raise

# backend/live_sessions/services/base.py
"""
Base service for the live sessions engine.

Provides common functionality for all service classes:
- The unit of work (``transaction()``), including post-commit event dispatch
- Logging
- Performance monitoring via ``@BaseService.measure_operation``
"""

from contextlib import contextmanager
from functools import wraps
import logging
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import ServiceException
from ..events.publisher import Event, EventPublisher
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

SLOW_OPERATION_SECONDS = 1.0


class BaseService:
    """
    Base class for all service layer components.

    Services own the transaction boundary. Repositories flush but never commit,
    and domain events queued with ``queue_event`` are only published after the
    outermost ``transaction()`` block commits. A rollback drops them.
    """

    # Class-level metrics storage
    _class_metrics: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def __init__(self, db: Session, event_publisher: Optional[EventPublisher] = None):
        self.db = db
        self.event_publisher = event_publisher or EventPublisher()
        self.logger = logging.getLogger(self.__class__.__name__)
        self._tx_depth = 0
        self._pending_events: List[Event] = []

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Unit of work.

        Nested blocks join the outer one; only the outermost block commits or
        rolls back. Database errors are wrapped in ServiceException.

        Usage:
            with self.transaction():
                self.repository.create(...)
                self.queue_event(SomethingHappened(...))
        """
        self._tx_depth += 1
        outermost = self._tx_depth == 1
        try:
            yield self.db
            if outermost:
                self.db.commit()
                self.logger.debug("Transaction committed")
        except SQLAlchemyError as e:
            if outermost:
                self._abort()
            self.logger.error("Transaction failed: %s", e)
            raise ServiceException(f"Database operation failed: {e}") from e
        except Exception:
            if outermost:
                self._abort()
            raise
        finally:
            self._tx_depth -= 1

        if outermost:
            self._flush_events()

    def _abort(self) -> None:
        self.db.rollback()
        if self._pending_events:
            self.logger.debug("Dropping %d events after rollback", len(self._pending_events))
        self._pending_events.clear()

    def queue_event(self, event: Event) -> None:
        """Publish ``event`` once the current unit of work commits."""
        if self._tx_depth == 0:
            self.event_publisher.publish(event)
            return
        self._pending_events.append(event)

    def _flush_events(self) -> None:
        events, self._pending_events = self._pending_events, []
        if events:
            self.event_publisher.publish_all(events)

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Decorator recording duration and outcome of a service operation.

        Usage:
            @BaseService.measure_operation("create_request")
            def create_request(self, ...):
                ...
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
                start_time = time.perf_counter()
                success = False
                error_type: Optional[str] = None
                try:
                    result = func(self, *args, **kwargs)
                    success = True
                    return result
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    elapsed = time.perf_counter() - start_time
                    if hasattr(self, "_record_metric"):
                        self._record_metric(operation_name, elapsed, success)
                    if elapsed > SLOW_OPERATION_SECONDS and hasattr(self, "logger"):
                        self.logger.warning(
                            "Slow operation detected: %s took %.2fs", operation_name, elapsed
                        )
                    prometheus_metrics.record_service_operation(
                        service=self.__class__.__name__,
                        operation=operation_name,
                        duration=elapsed,
                        status="success" if success else "error",
                        error_type=error_type,
                    )

            setattr(wrapper, "_operation_name", operation_name)
            return cast(F, wrapper)

        return decorator

    def log_operation(self, operation: str, **context: Any) -> None:
        """Log an operation with structured context."""
        self.logger.info("Operation: %s", operation, extra={"operation": operation, **context})

    def _record_metric(self, operation: str, elapsed: float, success: bool) -> None:
        metrics = BaseService._class_metrics.setdefault(self.__class__.__name__, {})
        data = metrics.setdefault(
            operation,
            {
                "count": 0,
                "total_time": 0.0,
                "success_count": 0,
                "failure_count": 0,
                "min_time": float("inf"),
                "max_time": 0.0,
            },
        )
        data["count"] += 1
        data["total_time"] += elapsed
        data["min_time"] = min(data["min_time"], elapsed)
        data["max_time"] = max(data["max_time"], elapsed)
        if success:
            data["success_count"] += 1
        else:
            data["failure_count"] += 1

    def get_metrics(self) -> Dict[str, Any]:
        """Per-operation timing summary for this service class."""
        result: Dict[str, Any] = {}
        for operation, data in BaseService._class_metrics.get(self.__class__.__name__, {}).items():
            count = data["count"]
            if not count:
                continue
            result[operation] = {
                "count": count,
                "avg_time": data["total_time"] / count,
                "min_time": data["min_time"],
                "max_time": data["max_time"],
                "success_rate": data["success_count"] / count,
                "failure_count": data["failure_count"],
            }
        return result

    def reset_metrics(self) -> None:
        BaseService._class_metrics.pop(self.__class__.__name__, None)

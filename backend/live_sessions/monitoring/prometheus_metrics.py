"""
Prometheus metrics for the live sessions engine.

Service timings come from the @measure_operation decorator; the domain
counters below are incremented by the booking, session and payout services.
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Dedicated registry so tests and multiple app instances do not collide
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "live_sessions_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "live_sessions_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "live_sessions_errors_total",
    "Total number of failed service operations",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

booking_requests_total = Counter(
    "live_sessions_booking_requests_total",
    "Booking request outcomes",
    ["outcome"],  # auto_accepted | pending | accepted | rejected | cancelled | expired
    registry=REGISTRY,
)

capacity_conflicts_total = Counter(
    "live_sessions_capacity_conflicts_total",
    "Bookings refused because the slot had no capacity left",
    ["stage"],  # precheck | ledger
    registry=REGISTRY,
)

external_call_failures_total = Counter(
    "live_sessions_external_call_failures_total",
    "Failed calls to the payment gateway, video provider or notification channel",
    ["service", "operation"],
    registry=REGISTRY,
)

payouts_total = Counter(
    "live_sessions_payouts_total",
    "Payout batches by resulting status",
    ["status"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin facade over the module-level collectors."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def inc_booking_outcome(outcome: str) -> None:
        booking_requests_total.labels(outcome=outcome).inc()

    @staticmethod
    def inc_capacity_conflict(stage: str) -> None:
        capacity_conflicts_total.labels(stage=stage).inc()

    @staticmethod
    def inc_external_failure(service: str, operation: str) -> None:
        external_call_failures_total.labels(service=service, operation=operation).inc()

    @staticmethod
    def inc_payout(status: str) -> None:
        payouts_total.labels(status=status).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Metrics in the Prometheus text exposition format."""
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)


prometheus_metrics = PrometheusMetrics()

from typing import Optional
from prometheus_client import Counter, Histogram, Info, generate_latest
from prometheus_client.core import CollectorRegistry
import logging

logger = logging.getLogger(__name__)

# Prometheus Registry
REGISTRY = CollectorRegistry()

# Service call metrics
service_requests_total = Counter(
    'vin_registry_requests_total',
    'Total registry service calls',
    ['status', 'service', 'method'],
    registry=REGISTRY
)

service_duration_seconds = Histogram(
    'vin_registry_request_duration_seconds',
    'Registry service call duration in seconds',
    ['service', 'method'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0],
    registry=REGISTRY
)

# Registry business metrics
registrations_total = Counter(
    'vin_registry_registrations_total',
    'Vehicle registrations by outcome',
    ['outcome'],  # created | linked | duplicate
    registry=REGISTRY
)

decodes_total = Counter(
    'vin_registry_decodes_total',
    'VIN decodes by source',
    ['source'],  # oracle | fallback | manual
    registry=REGISTRY
)

oracle_fallbacks_total = Counter(
    'vin_registry_oracle_fallbacks_total',
    'Oracle calls routed to the fallback decoder',
    ['reason'],  # timeout | not_found | unavailable | partial | disabled
    registry=REGISTRY
)

grant_transitions_total = Counter(
    'vin_registry_grant_transitions_total',
    'Shared access grant state transitions',
    ['transition'],
    registry=REGISTRY
)

system_info = Info(
    'vin_registry_info',
    'System information',
    registry=REGISTRY
)


class PrometheusMetricsCollector:
    """Thin facade over the registry's Prometheus instruments"""

    def __init__(self):
        system_info.info({
            'version': '1.0.0',
            'service': 'vin-registry'
        })

    def record_service_call(
        self,
        service_name: str,
        method_name: str,
        duration_seconds: float,
        success: bool,
        tenant_id: Optional[str] = None
    ):
        """Record a service method execution"""
        status = 'success' if success else 'error'

        service_requests_total.labels(
            status=status,
            service=service_name,
            method=method_name
        ).inc()

        service_duration_seconds.labels(
            service=service_name,
            method=method_name
        ).observe(duration_seconds)

    def record_registration(self, outcome: str):
        registrations_total.labels(outcome=outcome).inc()

    def record_decode(self, source: str):
        decodes_total.labels(source=source).inc()

    def record_oracle_fallback(self, reason: str):
        oracle_fallbacks_total.labels(reason=reason).inc()

    def record_grant_transition(self, from_status: str, to_status: str):
        grant_transitions_total.labels(transition=f"{from_status}->{to_status}").inc()

    def get_prometheus_metrics(self) -> bytes:
        """Get Prometheus metrics in text format"""
        return generate_latest(REGISTRY)

# Global instance
prometheus_collector = PrometheusMetricsCollector()

"""Infrastructure shared by the route tracking services.

Database sessions, structured logging, Prometheus metrics, OpenTelemetry
setup and the transactional outbox feeding Kafka.
"""

__all__ = [
    "settings",
    "get_session",
    "setup_logging",
    "route_context",
    "setup_metrics",
    "setup_otel",
    "KafkaProducer",
    "enqueue",
    "drain_outbox",
]

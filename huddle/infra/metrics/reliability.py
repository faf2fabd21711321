# huddle/infra/metrics/reliability.py
"""Circuit breaker and retry metrics."""

from prometheus_client import Counter, Gauge, Histogram

circuit_breaker_state = Gauge(
    'huddle_circuit_breaker_state',
    'Current state (0=closed, 1=open, 2=half_open)',
    ['name']
)

circuit_breaker_failures = Counter(
    'huddle_circuit_breaker_failures_total',
    'Total circuit breaker failures',
    ['name']
)

circuit_breaker_trips = Counter(
    'huddle_circuit_breaker_trips_total',
    'Number of times circuit breaker opened',
    ['name']
)

circuit_breaker_rejections = Counter(
    'huddle_circuit_breaker_rejections_total',
    'Calls rejected without being attempted',
    ['name']
)

retry_attempts = Counter(
    'huddle_retry_attempts_total',
    'Total retry attempts',
    ['name', 'success']
)

retry_exhausted = Counter(
    'huddle_retry_exhausted_total',
    'Total retries exhausted',
    ['name']
)

retry_delay = Histogram(
    'huddle_retry_delay_seconds',
    'Retry delay distribution',
    ['name'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

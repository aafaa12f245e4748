"""
metrics.py - Prometheus metrics for the LUIS transport and training workflow
"""
from prometheus_client import Counter, Histogram, generate_latest
from functools import wraps
import time

request_count = Counter(
    'luis_requests_total',
    'Total requests issued to the LUIS service',
    ['method', 'resource', 'status']
)

request_duration = Histogram(
    'luis_request_duration_seconds',
    'LUIS request duration',
    ['method', 'resource']
)

throttled_requests = Counter(
    'luis_throttled_requests_total',
    'Requests rejected with 429 and scheduled for retry',
    ['surface']  # 'provisioning' or 'query'
)

reconciled_items = Counter(
    'luis_reconciled_items_total',
    'Items created or deleted while reconciling the model',
    ['collection', 'operation']
)

training_duration = Histogram(
    'luis_training_duration_seconds',
    'Time from training start until every model reached a terminal state'
)


def track_stage(histogram: Histogram):
    """Decorator observing the duration of an async stage"""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start = time.time()
            try:
                return await func(*args, **kwargs)
            finally:
                histogram.observe(time.time() - start)
        return wrapper
    return decorator


def get_metrics():
    """Get Prometheus metrics"""
    return generate_latest()

"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name: str, documentation: str, labelnames=()):
    # Re-importing the module (tests, reloads) must not register twice
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


orders_created_counter = _counter(
    'ethioshop_orders_created_total',
    'Total number of orders created',
    ['currency']
)

order_creation_failures_counter = _counter(
    'ethioshop_order_creation_failures_total',
    'Order creation attempts rejected before or during persistence',
    ['reason']
)

payments_initiated_counter = _counter(
    'ethioshop_payments_initiated_total',
    'Checkout sessions created with a payment provider',
    ['provider', 'status']
)

reconciliations_counter = _counter(
    'ethioshop_payment_reconciliations_total',
    'Payment reconciliation attempts by outcome',
    ['provider', 'source', 'result']
)

webhooks_received_counter = _counter(
    'ethioshop_webhooks_received_total',
    'Webhook deliveries received from payment providers',
    ['provider', 'status']
)

orders_expired_counter = _counter(
    'ethioshop_orders_expired_total',
    'Stale pending orders cancelled by the expiry task'
)

order_expiry_runs_counter = _counter(
    'ethioshop_order_expiry_runs_total',
    'Total number of order expiry job runs',
    ['status']
)

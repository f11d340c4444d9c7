"""Prometheus metrics for order creation, signing, collateral checks and ledger oracle performance"""

from prometheus_client import Counter, Histogram

# Order metrics
orders_created_counter = Counter(
    "debt_orders_created_total",
    "Debt orders and loan offers created",
    ["kind"],  # debt_order | max_ltv_offer | ltv_offer
)

signature_counter = Counter(
    "debt_order_signatures_total",
    "Signature attachment attempts by role",
    ["role", "outcome"],  # attached | already_signed | rejected
)

collateral_check_counter = Counter(
    "collateral_checks_total",
    "Collateral sufficiency evaluations",
    ["outcome"],  # sufficient | insufficient
)

# Ledger oracle metrics
ledger_latency_histogram = Histogram(
    "ledger_oracle_latency_seconds",
    "Ledger oracle response time",
    ["operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

ledger_failure_counter = Counter(
    "ledger_oracle_failures_total",
    "Failed ledger oracle calls",
    ["operation"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_order_created(kind: str) -> None:
    orders_created_counter.labels(kind=kind).inc()


def record_signature(role: str, outcome: str) -> None:
    signature_counter.labels(role=role, outcome=outcome).inc()


def record_collateral_check(sufficient: bool) -> None:
    """Record collateral outcomes for monitoring rejection rates"""
    outcome = "sufficient" if sufficient else "insufficient"
    collateral_check_counter.labels(outcome=outcome).inc()

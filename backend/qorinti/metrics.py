"""Prometheus counters for ledger observability."""

from prometheus_client import Counter, Histogram

# Payment request lifecycle
PAYMENT_REQUESTS_SUBMITTED = Counter(
    "qorinti_payment_requests_submitted_total",
    "Total commission payment requests submitted by drivers",
)
PAYMENT_REQUESTS_REVIEWED = Counter(
    "qorinti_payment_requests_reviewed_total",
    "Total commission payment requests reviewed by admins",
    ["outcome"],
)

# Direct ledger movements
MANUAL_PAYMENTS_RECORDED = Counter(
    "qorinti_manual_payments_recorded_total",
    "Total self-service commission payments recorded",
)
TRIP_COMMISSIONS_CHARGED = Counter(
    "qorinti_trip_commissions_charged_total",
    "Total trip commissions charged to drivers",
)

# Receipts
RECEIPTS_EMITTED = Counter(
    "qorinti_receipts_emitted_total",
    "Receipt emission attempts",
    ["status"],
)
RECEIPT_RENDER_DURATION = Histogram(
    "qorinti_receipt_render_duration_seconds",
    "Duration of receipt PDF rendering",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# Scheduler job counters
SCHEDULER_JOB_RUNS = Counter(
    "qorinti_scheduler_job_runs_total",
    "Total scheduler job executions",
    ["job_name", "status"],
)

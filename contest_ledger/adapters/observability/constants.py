"""Constants for OpenTelemetry metrics."""

# Metric name prefixes
METRIC_PREFIX = "contest_ledger"

# Entry metrics
ENTRIES_TOTAL = f"{METRIC_PREFIX}.entries.outcomes_total"
ENTRY_DURATION = f"{METRIC_PREFIX}.entries.duration"
ENTRIES_CANCELLED = f"{METRIC_PREFIX}.entries.cancelled_total"

# Ledger metrics
COMPENSATIONS_TOTAL = f"{METRIC_PREFIX}.ledger.compensations_total"
COMPENSATION_FAILURES = f"{METRIC_PREFIX}.ledger.compensation_failures_total"
RECOVERED_DEBITS = f"{METRIC_PREFIX}.ledger.recovered_debits_total"

# Redemption metrics
REDEMPTIONS_TOTAL = f"{METRIC_PREFIX}.redemptions.outcomes_total"

# Notification metrics
NOTIFICATIONS_PUBLISHED = f"{METRIC_PREFIX}.notifications.published_total"
NOTIFICATION_FAILURES = f"{METRIC_PREFIX}.notifications.failures_total"

# Recovery loop metrics
RECOVERY_ITERATIONS = f"{METRIC_PREFIX}.recovery.iterations_total"
RECOVERY_ERRORS = f"{METRIC_PREFIX}.recovery.errors_total"

# Common label keys
LABEL_STATUS = "status"
LABEL_REASON = "reason"
LABEL_SOURCE = "source"
LABEL_ERROR_TYPE = "error_type"
LABEL_EVENT_TYPE = "event_type"

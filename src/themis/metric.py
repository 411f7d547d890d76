from prometheus_client import Counter, Gauge

request_counter = Counter(
    "themis_num_req", "Total number of requests", labelnames=["path"]
)

error_counter = Counter(
    "themis_error_counter", "Total number of errors", labelnames=["context"]
)

check_triggered_counter = Counter(
    "themis_check_triggered",
    "Number of check runs created",
    labelnames=["check_type"],
)

check_transition_counter = Counter(
    "themis_check_transition",
    "Number of check run state transitions",
    labelnames=["status", "result"],
)

checks_running = Gauge("themis_checks_running", "Number of in-process analysis tasks")

bulk_deleted_counter = Counter(
    "themis_bulk_deleted", "Number of check runs removed by bulk delete"
)

cache_tag_invalidation_counter = Counter(
    "themis_cache_tag_invalidation",
    "Number of cache tag invalidations",
    labelnames=["tag"],
)

installation_cache_counter = Counter(
    "themis_installation_cache",
    "Installation cache lookups",
    labelnames=["result"],
)

notification_counter = Counter(
    "themis_notification",
    "Completion notifications seen by the notifier",
    labelnames=["result"],
)

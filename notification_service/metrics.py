from prometheus_client import Counter

NOTIFICATIONS = Counter(
    "notifications_sent_total",
    "Notifications processed by notification service",
    ["outcome"],  # sent | failed | parse_error
)

"""Monitoring configuration for the alarm service."""
from prometheus_client import Counter, Gauge, start_http_server

# Alarm metrics
active_alarms = Gauge(
    "wakeguard_active_alarms",
    "Number of alarms currently scheduled",
)

alarms_fired = Counter(
    "wakeguard_alarms_fired_total",
    "Total number of alarm firings, including wake-up re-triggers",
    ["reason"],
)

alarms_dismissed = Counter(
    "wakeguard_alarms_dismissed_total",
    "Total number of alarms dismissed after passing every challenge",
)

# Challenge metrics
challenges_presented = Counter(
    "wakeguard_challenges_presented_total",
    "Total number of challenges presented to the user",
    ["kind"],
)

challenge_failures = Counter(
    "wakeguard_challenge_failures_total",
    "Total number of incorrect challenge answers",
    ["kind"],
)

# Wake-up check metrics
wakeup_checks_armed = Counter(
    "wakeguard_wakeup_checks_armed_total",
    "Total number of wake-up re-verification checks armed",
)

wakeup_retriggers = Counter(
    "wakeguard_wakeup_retriggers_total",
    "Total number of alarms re-triggered by an unanswered wake-up check",
)

# Error metrics
scheduling_failures = Counter(
    "wakeguard_scheduling_failures_total",
    "Total number of requests refused by the platform scheduler",
)

storage_failures = Counter(
    "wakeguard_storage_failures_total",
    "Total number of failed writes to the alarm store",
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)

"""
Prometheus metrics for the feature core.

  - featurerev_revisions_published_total   (counter)
  - featurerev_effect_failures_total       (counter, by effect kind)
  - featurerev_scheduled_updates_total     (counter, by outcome)
  - featurerev_payload_keys_refreshed_total (counter)
"""

from prometheus_client import Counter

REVISIONS_PUBLISHED = Counter(
    "featurerev_revisions_published_total",
    "Feature revisions published",
)
EFFECT_FAILURES = Counter(
    "featurerev_effect_failures_total",
    "Post-commit effects that failed",
    ["kind"],
)
SCHEDULED_UPDATES = Counter(
    "featurerev_scheduled_updates_total",
    "Features processed by the scheduled-update scan",
    ["outcome"],
)
PAYLOAD_KEYS_REFRESHED = Counter(
    "featurerev_payload_keys_refreshed_total",
    "SDK payload cache partitions invalidated",
)

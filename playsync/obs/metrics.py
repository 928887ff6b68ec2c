"""Central registry for Prometheus metrics used across the sync layer."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

CACHE_LOOKUPS = Counter(
	"playsync_cache_lookups_total",
	"Fetch cache lookups by result",
	["domain", "result"],
)

CACHE_INVALIDATIONS = Counter(
	"playsync_cache_invalidations_total",
	"Fetch cache entries invalidated",
	["domain"],
)

SINGLEFLIGHT_CALLS = Counter(
	"playsync_singleflight_calls_total",
	"Single-flight callers that started or joined a fetch",
	["role"],
)

REMOTE_READS = Counter(
	"playsync_remote_reads_total",
	"Remote store reads issued by the sync layer",
	["domain", "result"],
)

REMOTE_READ_LATENCY = Histogram(
	"playsync_remote_read_duration_seconds",
	"Remote read latency in seconds",
	["domain"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

INVITATION_MUTATIONS = Counter(
	"playsync_invitation_mutations_total",
	"Invitation lifecycle mutations",
	["action", "result"],
)

PUSH_SUBSCRIPTIONS = Gauge(
	"playsync_push_subscriptions",
	"Active push topic subscriptions",
)

PUSH_EVENTS = Counter(
	"playsync_push_events_total",
	"Push events received per event name",
	["event"],
)

MESSAGE_SENDS = Counter(
	"playsync_message_sends_total",
	"Message sends by result",
	["result"],
)

MESSAGE_RETRIES = Counter(
	"playsync_message_retries_total",
	"Manual retries of failed message sends",
)

MESSAGE_PAGES = Counter(
	"playsync_message_pages_total",
	"Message history pages loaded",
	["result"],
)


def cache_hit(domain: str) -> None:
	CACHE_LOOKUPS.labels(domain=domain, result="hit").inc()


def cache_miss(domain: str) -> None:
	CACHE_LOOKUPS.labels(domain=domain, result="miss").inc()


def cache_invalidated(domain: str) -> None:
	CACHE_INVALIDATIONS.labels(domain=domain).inc()


def singleflight_started() -> None:
	SINGLEFLIGHT_CALLS.labels(role="leader").inc()


def singleflight_joined() -> None:
	SINGLEFLIGHT_CALLS.labels(role="follower").inc()


def observe_remote_read(domain: str, result: str, elapsed_seconds: float) -> None:
	REMOTE_READS.labels(domain=domain, result=result).inc()
	REMOTE_READ_LATENCY.labels(domain=domain).observe(elapsed_seconds)


def inc_invitation_mutation(action: str, result: str) -> None:
	INVITATION_MUTATIONS.labels(action=action, result=result).inc()


def push_subscribed() -> None:
	PUSH_SUBSCRIPTIONS.inc()


def push_unsubscribed() -> None:
	PUSH_SUBSCRIPTIONS.dec()


def push_event(event: str) -> None:
	PUSH_EVENTS.labels(event=event).inc()


def inc_message_send(result: str) -> None:
	MESSAGE_SENDS.labels(result=result).inc()


def inc_message_retry() -> None:
	MESSAGE_RETRIES.inc()


def inc_message_page(result: str) -> None:
	MESSAGE_PAGES.labels(result=result).inc()

"""Central registry for Prometheus metrics used by the messaging backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


REQUEST_COUNTER = Counter(
	"hrm_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"hrm_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"hrm_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"hrm_socketio_events_total",
	"Socket.IO events handled or emitted per namespace",
	["namespace", "event"],
)

SOCKET_AUTH = Counter(
	"hrm_socketio_auth_total",
	"Socket authentication attempts",
	["result"],
)

SOCKET_RATE_LIMITED = Counter(
	"hrm_socketio_rate_limited_total",
	"Socket events dropped by the per-connection budget",
	["event"],
)

PRESENCE_ONLINE = Gauge(
	"hrm_presence_online_profiles",
	"Profiles with an authenticated live connection",
)

BROADCAST_DELIVERIES = Counter(
	"hrm_broadcast_deliveries_total",
	"Broadcast attempts by delivery path",
	["path"],
)

BROADCAST_FAILURES = Counter(
	"hrm_broadcast_failures_total",
	"Broadcast emits that raised inside the transport",
	["path"],
)

PAYLOAD_DEEP_CLEAN = Counter(
	"hrm_payload_deep_clean_total",
	"Broadcast payloads that required the deep-clean fallback",
)

MESSAGES_SENT = Counter(
	"hrm_messages_sent_total",
	"Messages persisted",
	["channel", "approval"],
)

MESSAGES_READ = Counter(
	"hrm_messages_read_total",
	"Read receipts recorded",
)

MESSAGES_APPROVED = Counter(
	"hrm_messages_approved_total",
	"Approval-gated messages approved",
)

MESSAGING_REJECTS = Counter(
	"hrm_messaging_rejects_total",
	"Messaging operations rejected by policy",
	["reason"],
)

CONVERSATIONS_CREATED = Counter(
	"hrm_conversations_created_total",
	"Conversations created",
	["type", "result"],
)

NOTIFICATIONS_DISPATCHED = Counter(
	"hrm_notifications_dispatched_total",
	"Notifications handed off to the outbound stream",
	["result"],
)

CONVERSATION_KEYS_REWRITTEN = Counter(
	"hrm_conversation_keys_rewritten_total",
	"Legacy conversation keys rewritten by the normalization job",
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def socket_auth(result: str) -> None:
	SOCKET_AUTH.labels(result=result).inc()


def socket_rate_limited(event: str) -> None:
	SOCKET_RATE_LIMITED.labels(event=event).inc()


def presence_online(count: int) -> None:
	PRESENCE_ONLINE.set(count)


def broadcast_delivery(path: str) -> None:
	BROADCAST_DELIVERIES.labels(path=path).inc()


def broadcast_failure(path: str) -> None:
	BROADCAST_FAILURES.labels(path=path).inc()


def payload_deep_clean() -> None:
	PAYLOAD_DEEP_CLEAN.inc()


def inc_message_sent(channel: str, *, approved: bool) -> None:
	MESSAGES_SENT.labels(channel=channel, approval="approved" if approved else "pending").inc()


def inc_message_read() -> None:
	MESSAGES_READ.inc()


def inc_message_approved() -> None:
	MESSAGES_APPROVED.inc()


def inc_messaging_reject(reason: str) -> None:
	MESSAGING_REJECTS.labels(reason=reason).inc()


def inc_conversation_created(conversation_type: str, result: str) -> None:
	CONVERSATIONS_CREATED.labels(type=conversation_type, result=result).inc()


def inc_notification(result: str) -> None:
	NOTIFICATIONS_DISPATCHED.labels(result=result).inc()


def inc_conversation_keys_rewritten(count: int = 1) -> None:
	if count > 0:
		CONVERSATION_KEYS_REWRITTEN.inc(count)

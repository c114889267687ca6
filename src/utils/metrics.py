"""
Prometheus metrics for the Dorandoran chat pipeline.

Defines custom metrics and instrumentation logic.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Use standard Prometheus naming conventions: namespace_subsystem_name_unit
NAMESPACE = "dorandoran"

# ============================================================================
# Push Channel Metrics
# ============================================================================

ws_connections_active = Gauge(
    f"{NAMESPACE}_websocket_connections_active",
    "Number of currently active WebSocket subscriptions",
)

ws_connections_total = Counter(
    f"{NAMESPACE}_websocket_connections_total",
    "Total number of WebSocket subscriptions accepted",
)

push_events_total = Counter(
    f"{NAMESPACE}_push_events_total",
    "Push events emitted, by event type and delivery route",
    ["event_type", "route"],  # route: "local", "bus", "relay"
)

# ============================================================================
# Agent / LLM Metrics
# ============================================================================

agent_calls_total = Counter(
    f"{NAMESPACE}_agent_calls_total",
    "Agent invocations by outcome",
    ["agent", "outcome"],  # outcome: "success", "default", "error"
)

agent_call_duration_seconds = Histogram(
    f"{NAMESPACE}_agent_call_duration_seconds",
    "Agent invocation duration in seconds",
    ["agent"],
    buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

llm_tokens_total = Counter(
    f"{NAMESPACE}_llm_tokens_total",
    "Tokens reported by the provider",
    ["model", "type"],  # type values: "input", "output"
)

llm_stream_retries_total = Counter(
    f"{NAMESPACE}_llm_stream_retries_total",
    "Retries of the single-agent streaming call after transient errors",
)

# ============================================================================
# Persistence Metrics
# ============================================================================

progress_write_conflicts_total = Counter(
    f"{NAMESPACE}_progress_write_conflicts_total",
    "IntimacyProgress writes replayed after serialization failure or deadlock",
    ["writer"],  # "intimacy", "summary"
)

billing_records_total = Counter(
    f"{NAMESPACE}_billing_records_total",
    "Usage events written to the billing ledger",
    ["provider"],
)

pipeline_tasks_active = Gauge(
    f"{NAMESPACE}_pipeline_tasks_active",
    "Pipeline turns currently running in the task supervisor",
)

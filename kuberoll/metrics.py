from prometheus_client import REGISTRY, Counter, Gauge, Histogram, write_to_textfile

# ── Metric definitions ──

kubectl_commands_total = Counter(
    "kuberoll_kubectl_commands_total",
    "Total kubectl invocations",
    ["label", "outcome"],
)

kubectl_retries_total = Counter(
    "kuberoll_kubectl_retries_total",
    "kubectl invocations retried after a failure",
    ["label"],
)

poll_ticks_total = Counter("kuberoll_poll_ticks_total", "Convergence poll ticks")

active_targets = Gauge("kuberoll_active_targets", "Rollout targets still being watched")

target_outcomes_total = Counter(
    "kuberoll_target_outcomes_total",
    "Resolved rollout targets by outcome",
    ["status"],
)

rollout_duration_seconds = Histogram(
    "kuberoll_rollout_duration_seconds",
    "Time from first watch until the poll loop finished",
    buckets=[5, 15, 30, 60, 120, 300, 600, 1200],
)


# ── Helper functions ──

def record_command(label: str, ok: bool):
    """Record a single kubectl attempt."""
    kubectl_commands_total.labels(label=label, outcome="ok" if ok else "error").inc()


def record_retry(label: str):
    kubectl_retries_total.labels(label=label).inc()


def record_outcome(status: str):
    """Record a target leaving the active set."""
    target_outcomes_total.labels(status=status).inc()


def write_metrics(path: str) -> None:
    """Dump the registry in the node-exporter textfile format."""
    write_to_textfile(path, REGISTRY)

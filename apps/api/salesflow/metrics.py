from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

salesflow_jobs_total = Counter(
    "salesflow_jobs_total",
    "Total background jobs by status",
    ["job_type", "status"],
)

salesflow_job_duration_seconds = Histogram(
    "salesflow_job_duration_seconds",
    "Background job duration in seconds",
    ["job_type"],
)

sequence_steps_processed_total = Counter(
    "sequence_steps_processed_total",
    "Sequence enrollment steps processed by step type and outcome",
    ["step_type", "outcome"],
)

emails_sent_total = Counter(
    "emails_sent_total",
    "Outbound emails dispatched through the messaging gateway",
    ["provider"],
)

email_sends_blocked_total = Counter(
    "email_sends_blocked_total",
    "Outbound sends refused by policy",
    ["reason"],
)

inbound_emails_ingested_total = Counter(
    "inbound_emails_ingested_total",
    "Inbound emails ingested by inbox sync",
)

workflow_runs_total = Counter(
    "workflow_runs_total",
    "Workflow runs by resulting status",
    ["status"],
)

workflow_guardrail_blocks_total = Counter(
    "workflow_guardrail_blocks_total",
    "Workflow definitions rejected by guardrails",
    ["reason"],
)

approvals_total = Counter(
    "approvals_total",
    "Approval requests by lifecycle event",
    ["entity_type", "event"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_job(job_type: str, status: str, duration: float) -> None:
    salesflow_jobs_total.labels(job_type=job_type, status=status).inc()
    salesflow_job_duration_seconds.labels(job_type=job_type).observe(duration)


def observe_sequence_step(step_type: str, outcome: str) -> None:
    sequence_steps_processed_total.labels(step_type=step_type, outcome=outcome).inc()


def observe_email_sent(provider: str) -> None:
    emails_sent_total.labels(provider=provider).inc()


def observe_send_blocked(reason: str) -> None:
    email_sends_blocked_total.labels(reason=reason).inc()


def observe_inbound_ingested(count: int = 1) -> None:
    if count > 0:
        inbound_emails_ingested_total.inc(count)


def observe_workflow_run(status: str) -> None:
    workflow_runs_total.labels(status=status).inc()


def observe_workflow_guardrail_block(reason: str) -> None:
    workflow_guardrail_blocks_total.labels(reason=reason).inc()


def observe_approval(entity_type: str, event: str) -> None:
    approvals_total.labels(entity_type=entity_type, event=event).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST

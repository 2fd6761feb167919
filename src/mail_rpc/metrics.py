# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for the email RPC controller.

All metrics use the ``mrpc_`` prefix.

Metrics exposed:
    - ``mrpc_requests_total``: Requests sent, per account.
    - ``mrpc_resolved_total``: Requests resolved with a reply, per account.
    - ``mrpc_rejected_total``: Requests rejected, per error code.
    - ``mrpc_duplicates_total``: Replies discarded as duplicates, per kind
      (``message`` for a re-delivered Message-ID, ``resolved`` for a late
      reply to an already resolved request).
    - ``mrpc_expired_responses_total``: Replies dropped with no request.
    - ``mrpc_pending_requests`` / ``mrpc_pending_responses``: Ledger sizes.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest


class RpcMetrics:
    """Prometheus collector for the controller.

    Attributes:
        registry: The CollectorRegistry holding all metrics.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.requests = Counter(
            "mrpc_requests_total",
            "Total requests sent",
            ["account_id"],
            registry=self.registry,
        )
        self.resolved = Counter(
            "mrpc_resolved_total",
            "Total requests resolved",
            ["account_id"],
            registry=self.registry,
        )
        self.rejected = Counter(
            "mrpc_rejected_total",
            "Total requests rejected",
            ["reason"],
            registry=self.registry,
        )
        self.duplicates = Counter(
            "mrpc_duplicates_total",
            "Total duplicate replies discarded",
            ["kind"],
            registry=self.registry,
        )
        self.expired_responses = Counter(
            "mrpc_expired_responses_total",
            "Total unmatched replies expired",
            registry=self.registry,
        )
        self.pending_requests = Gauge(
            "mrpc_pending_requests",
            "Requests waiting for a reply",
            registry=self.registry,
        )
        self.pending_responses = Gauge(
            "mrpc_pending_responses",
            "Replies waiting for a request",
            registry=self.registry,
        )

    def inc_requests(self, account_id: str) -> None:
        self.requests.labels(account_id=account_id or "default").inc()

    def inc_resolved(self, account_id: str) -> None:
        self.resolved.labels(account_id=account_id or "default").inc()

    def inc_rejected(self, reason: str) -> None:
        self.rejected.labels(reason=reason or "unknown").inc()

    def inc_duplicate(self, kind: str) -> None:
        self.duplicates.labels(kind=kind).inc()

    def inc_expired_responses(self, count: int = 1) -> None:
        self.expired_responses.inc(count)

    def set_pending(self, requests: int, responses: int) -> None:
        self.pending_requests.set(requests)
        self.pending_responses.set(responses)

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)

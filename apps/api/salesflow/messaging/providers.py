"""Email provider adapters.

The gateway talks to providers only through ``EmailProvider``. A registry maps
the ``EmailAccount.provider`` value to an adapter instance; deployments register
their Gmail/Outlook adapters at startup.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from functools import lru_cache
from datetime import datetime
from typing import Protocol

from salesflow.core.clock import utcnow
from salesflow.errors import ProviderNotSupported
from salesflow.otel import domain_span


TRACER_NAME = "salesflow.messaging.providers"


@dataclass(frozen=True)
class ProviderSendResult:
    message_id: str
    thread_id: str | None = None


@dataclass(frozen=True)
class InboundEmail:
    message_id: str
    sender: str
    subject: str
    body: str
    received_at: datetime
    thread_id: str | None = None
    in_reply_to: str | None = None


class EmailProvider(Protocol):
    def send(self, access_token: str | None, to: str, subject: str, body: str) -> ProviderSendResult: ...

    def fetch_recent(self, access_token: str | None) -> list[InboundEmail]: ...


@dataclass
class SentEmail:
    to: str
    subject: str
    body: str
    message_id: str
    thread_id: str | None


class StubEmailProvider:
    """In-memory provider: records sends and replays a scripted inbox."""

    def __init__(self, inbox: list[InboundEmail] | None = None) -> None:
        self.outbox: list[SentEmail] = []
        self.inbox: list[InboundEmail] = list(inbox or [])
        self.fail_with: Exception | None = None

    def send(self, access_token: str | None, to: str, subject: str, body: str) -> ProviderSendResult:
        with domain_span(TRACER_NAME, "email_provider.send", provider="stub") as span:
            if self.fail_with is not None:
                raise self.fail_with
            message_id = f"<{uuid.uuid4()}@stub.salesflow>"
            thread_id = f"thread-{uuid.uuid4().hex[:12]}"
            self.outbox.append(SentEmail(to=to, subject=subject, body=body, message_id=message_id, thread_id=thread_id))
            span.set_attribute("message_id", message_id)
            return ProviderSendResult(message_id=message_id, thread_id=thread_id)

    def fetch_recent(self, access_token: str | None) -> list[InboundEmail]:
        with domain_span(TRACER_NAME, "email_provider.fetch_recent", provider="stub") as span:
            if self.fail_with is not None:
                raise self.fail_with
            span.set_attribute("message_count", len(self.inbox))
            return list(self.inbox)

    def deliver(self, sender: str, subject: str, body: str, *, message_id: str | None = None, in_reply_to: str | None = None) -> InboundEmail:
        message = InboundEmail(
            message_id=message_id or f"<{uuid.uuid4()}@inbound.stub>",
            sender=sender,
            subject=subject,
            body=body,
            received_at=utcnow(),
            in_reply_to=in_reply_to,
        )
        self.inbox.append(message)
        return message


@dataclass
class ProviderRegistry:
    providers: dict[str, EmailProvider] = field(default_factory=dict)

    def register(self, name: str, provider: EmailProvider) -> None:
        self.providers[name.lower()] = provider

    def get(self, name: str) -> EmailProvider:
        provider = self.providers.get(name.lower())
        if provider is None:
            raise ProviderNotSupported(f"Unsupported email provider: {name}")
        return provider


@lru_cache
def default_provider_registry() -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register("stub", StubEmailProvider())
    return registry

from __future__ import annotations

import uuid

import pytest

from salesflow import events
from salesflow.context import bound_context
from salesflow.core.events import InProcessEventBus, InternalEvent, event_bus


@pytest.fixture(autouse=True)
def clear_published() -> None:
    events.published_events.clear()


def test_subscribe_many_registers_handler_once_per_event() -> None:
    bus = InProcessEventBus()
    received: list[str] = []

    def handler(event: InternalEvent) -> None:
        received.append(event.name)

    bus.subscribe_many(["lead.created", "lead.stage_changed"], handler)
    bus.subscribe("lead.created", handler)

    bus.publish("lead.created", {})
    bus.publish("lead.stage_changed", {})
    bus.publish("email.received", {})

    assert received == ["lead.created", "lead.stage_changed"]
    assert bus.is_subscribed("lead.created", handler)
    assert not bus.is_subscribed("email.received", handler)


def test_handler_errors_reach_the_publisher() -> None:
    bus = InProcessEventBus()

    def explode(event: InternalEvent) -> None:
        raise RuntimeError("handler failed")

    bus.subscribe("lead.created", explode)
    with pytest.raises(RuntimeError):
        bus.publish("lead.created", {})

    bus.clear()
    bus.publish("lead.created", {})


def test_internal_event_exposes_workspace_id() -> None:
    workspace_id = uuid.uuid4()
    assert InternalEvent("lead.created", {"workspace_id": workspace_id}).workspace_id == str(workspace_id)
    assert InternalEvent("system.started").workspace_id is None


def test_envelope_takes_correlation_id_from_context() -> None:
    workspace_id = uuid.uuid4()
    seen: list[InternalEvent] = []

    def capture(event: InternalEvent) -> None:
        seen.append(event)

    event_bus.subscribe("test.envelope", capture)
    with bound_context("env-corr-1", str(workspace_id)):
        envelope = events.build_envelope("test.envelope", workspace_id, {"lead_id": "L1"})
        events.publish(envelope)

    assert envelope["correlation_id"] == "env-corr-1"
    assert envelope["workspace_id"] == str(workspace_id)
    assert envelope["version"] == events.ENVELOPE_VERSION
    assert events.published_events[-1] is envelope
    assert seen[-1].payload["payload"] == {"lead_id": "L1"}

"""Ambient execution context for a request or a background job.

The correlation id and the workspace id are bound once at the edge (HTTP
middleware or job runner) and read wherever logs, audit entries, event
envelopes and spans are produced.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
workspace_id_var: ContextVar[str | None] = ContextVar("workspace_id", default=None)


@dataclass(frozen=True, slots=True)
class ContextTokens:
    correlation_id: Token[str | None]
    workspace_id: Token[str | None]


def bind_context(correlation_id: str | None, workspace_id: str | None = None) -> ContextTokens:
    return ContextTokens(
        correlation_id=correlation_id_var.set(correlation_id),
        workspace_id=workspace_id_var.set(workspace_id),
    )


def unbind_context(tokens: ContextTokens) -> None:
    workspace_id_var.reset(tokens.workspace_id)
    correlation_id_var.reset(tokens.correlation_id)


@contextmanager
def bound_context(correlation_id: str | None, workspace_id: str | None = None) -> Iterator[None]:
    tokens = bind_context(correlation_id, workspace_id)
    try:
        yield
    finally:
        unbind_context(tokens)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def get_workspace_id() -> str | None:
    return workspace_id_var.get()

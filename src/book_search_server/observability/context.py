"""Trace/span ids carried in a ContextVar so log records can be correlated.

Request middleware seeds the context; :func:`create_span` swaps in the
active span id for the duration of the span and restores the parent id on
exit.
"""

from __future__ import annotations

from contextvars import ContextVar, Token
from uuid import uuid4


trace_context: ContextVar[dict | None] = ContextVar("trace_context", default=None)


def generate_trace_id() -> str:
    return uuid4().hex


def generate_span_id() -> str:
    return uuid4().hex[:16]


def get_trace_context() -> dict:
    """Return the current ids, starting a fresh trace when none is active."""
    ctx = trace_context.get()
    if ctx is None or not ctx.get("trace_id"):
        ctx = {"trace_id": generate_trace_id(), "span_id": generate_span_id()}
        trace_context.set(ctx)
    return ctx


def set_trace_context(trace_id: str, span_id: str, **extra: object) -> None:
    trace_context.set({"trace_id": trace_id, "span_id": span_id, **extra})


def push_span_id(span_id: str) -> Token:
    """Make ``span_id`` current, keeping the trace id; pass the token to :func:`pop_span_id`."""
    ctx = trace_context.get() or {}
    return trace_context.set({**ctx, "span_id": span_id})


def pop_span_id(token: Token) -> None:
    trace_context.reset(token)

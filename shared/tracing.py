"""Tracing utilities backed by Langfuse.

When ``LANGFUSE_ENABLED=true`` and a public/secret key pair is configured,
spans are forwarded to Langfuse: one root span per HTTP request, with the
pipeline steps nested beneath it. Otherwise ``span`` yields a no-op span.
Errors in tracing never affect application logic; a failing backend
degrades to a no-op.

This module also exposes lightweight helpers for observability events
(`log_event`) and crude token estimation (`estimate_tokens`).
"""

from __future__ import annotations

import contextvars
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional

from langfuse import Langfuse

from shared.logger import get_logger
from shared.settings import Settings

logger = get_logger(__name__)

_current_span = contextvars.ContextVar("rag.current_span", default=None)


def _now_ms() -> int:
    return int(time.time() * 1000)


class _Span:
    """A no-op span used when tracing is disabled."""

    def __init__(self, name: str, **attrs: Any) -> None:
        self.name = name
        self.attrs = attrs

    def record(self, **output: Any) -> None:
        return None

    def end(self, error: Optional[BaseException] = None) -> None:
        return None


class _LangfuseSpan(_Span):
    def __init__(self, client: Langfuse, name: str, **attrs: Any) -> None:
        super().__init__(name, **attrs)
        self._start_ms = _now_ms()
        self._output: dict = {}
        parent = _current_span.get()
        try:
            if parent is not None:
                self._span = parent.start_span(name=name, input=attrs)
            else:
                self._span = client.start_span(name=name, input=attrs)
        except Exception as exc:
            logger.debug("Langfuse span start failed: %s", exc)
            self._span = None
        self._token = _current_span.set(self._span) if self._span else None

    def record(self, **output: Any) -> None:
        self._output.update(output)

    def end(self, error: Optional[BaseException] = None) -> None:
        if self._token is not None:
            _current_span.reset(self._token)
        if self._span is None:
            return
        try:
            self._span.update(
                output={
                    **self._output,
                    "error": str(error) if error else None,
                    "duration_ms": max(1, _now_ms() - self._start_ms),
                },
                level="ERROR" if error else None,
            )
            self._span.end()
        except Exception as exc:
            logger.debug("Langfuse span end failed: %s", exc)


class Tracer:
    """Tracer facade: Langfuse when configured, no-op otherwise."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        s = settings or Settings()
        self._client: Optional[Langfuse] = None
        if s.langfuse_enabled and s.langfuse_public_key and s.langfuse_secret_key:
            try:
                self._client = Langfuse(
                    public_key=s.langfuse_public_key,
                    secret_key=s.langfuse_secret_key,
                    host=s.langfuse_host or None,
                )
            except Exception as exc:
                logger.warning("Langfuse unavailable, tracing disabled: %s", exc)
                self._client = None

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def start_span(self, name: str, **attrs: Any) -> _Span:
        if self._client is None:
            return _Span(name, **attrs)
        return _LangfuseSpan(self._client, name, **attrs)


tracer = Tracer()


@contextmanager
def span(name: str, **attrs: Any) -> Iterator[_Span]:
    """Trace the enclosed block.

    Usage:
        with span("query.retrieve", cap=3) as sp:
            ...
            sp.record(items=len(items))
    """
    s = tracer.start_span(name, **attrs)
    try:
        yield s
    except BaseException as exc:
        s.end(error=exc)
        raise
    else:
        s.end()


def install_fastapi_tracing(
    app, service_name: str = "query-service", trace_name: str = "rag-query-trace"
) -> None:
    """Install middleware that opens a root span named ``trace_name`` per request."""
    from fastapi import Request

    @app.middleware("http")
    async def _trace_middleware(request: Request, call_next: Callable):
        # Keep the input concise (no headers/body to avoid leaking PII)
        with span(
            trace_name,
            service=service_name,
            method=request.method,
            path=request.url.path,
        ) as sp:
            response = await call_next(request)
            sp.record(status=response.status_code)
            return response


def log_event(
    name: str, payload: Optional[dict] = None, correlation_id: Optional[str] = None
) -> None:
    """Emit a short-lived structured event span for observability.

    Args:
        name: Logical event name, e.g. "Retrieval", "Generation", "Interaction".
        payload: Arbitrary JSON-serializable dict with event data.
        correlation_id: Optional ID to stitch events of one request.
    """
    meta = dict(payload or {})
    if correlation_id:
        meta["correlation_id"] = correlation_id
    with span(f"event.{name}", **meta):
        pass


def estimate_tokens(text: str) -> int:
    """Very rough subword token estimate (for logging only)."""
    if not text:
        return 0
    # Approximate: 1 token ~= 4 chars for English-like text
    return max(1, int(len(text) / 4))

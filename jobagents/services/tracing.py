# =============================================================================
# Tracing — Span Protocol with No-op and Logging Backends
# =============================================================================
#
# Every agent execution opens one span; generation calls and tool calls
# open child spans beneath it. The tracing collector is an external
# collaborator, so the runtime only talks to the Tracer / Span protocols.
#
# Backends:
#   NoopTracer     — identical shape, discards everything (default)
#   LoggingTracer  — writes each finished span to this module's logger
#
# Selected by settings.tracing_backend ("noop" | "logging").
# =============================================================================

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Protocol

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class Span(Protocol):
    """A node in a trace tree."""

    id: str
    trace_id: str

    def span(
        self,
        name: str,
        input: Any = None,
        metadata: dict[str, Any] | None = None,
    ) -> Span: ...

    def generation(
        self,
        name: str,
        model: str | None = None,
        input: Any = None,
        metadata: dict[str, Any] | None = None,
    ) -> Span: ...

    def update(self, **fields: Any) -> None: ...

    def end(
        self,
        output: Any = None,
        metadata: dict[str, Any] | None = None,
        level: str = "DEFAULT",
        status_message: str | None = None,
    ) -> None: ...


class Tracer(Protocol):
    """Creates root spans and flushes buffered spans to the collector."""

    def trace(
        self,
        name: str,
        user_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Span: ...

    async def flush(self) -> None: ...


# ---------------------------------------------------------------------------
# No-op Backend
# ---------------------------------------------------------------------------


class NoopSpan:
    """Span that records nothing. Children are NoopSpans of the same trace."""

    def __init__(self, trace_id: str | None = None) -> None:
        self.id = uuid.uuid4().hex
        self.trace_id = trace_id or self.id

    def span(self, name, input=None, metadata=None) -> NoopSpan:
        return NoopSpan(self.trace_id)

    def generation(self, name, model=None, input=None, metadata=None) -> NoopSpan:
        return NoopSpan(self.trace_id)

    def update(self, **fields: Any) -> None:
        pass

    def end(self, output=None, metadata=None, level="DEFAULT", status_message=None):
        pass


class NoopTracer:
    def trace(self, name, user_id=None, metadata=None) -> NoopSpan:
        return NoopSpan()

    async def flush(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Logging Backend
# ---------------------------------------------------------------------------


class LoggingSpan:
    """
    Span that logs one line when it ends.

    Levels map onto logging levels: "ERROR" → error, "WARNING" → warning,
    anything else → info. Inputs and outputs are not logged, only names,
    timings and metadata.
    """

    def __init__(
        self,
        name: str,
        trace_id: str | None = None,
        parent_id: str | None = None,
        kind: str = "span",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.id = uuid.uuid4().hex
        self.trace_id = trace_id or self.id
        self.parent_id = parent_id
        self.name = name
        self.kind = kind
        self.metadata: dict[str, Any] = dict(metadata or {})
        self._start = time.perf_counter()
        self.ended = False

    def span(self, name, input=None, metadata=None) -> LoggingSpan:
        return LoggingSpan(name, self.trace_id, self.id, "span", metadata)

    def generation(self, name, model=None, input=None, metadata=None) -> LoggingSpan:
        meta = dict(metadata or {})
        if model:
            meta["model"] = model
        return LoggingSpan(name, self.trace_id, self.id, "generation", meta)

    def update(self, **fields: Any) -> None:
        self.metadata.update(fields)

    def end(self, output=None, metadata=None, level="DEFAULT", status_message=None):
        if self.ended:
            return
        self.ended = True
        if metadata:
            self.metadata.update(metadata)

        duration_ms = (time.perf_counter() - self._start) * 1000
        log_level = {
            "ERROR": logging.ERROR,
            "WARNING": logging.WARNING,
        }.get(level, logging.INFO)
        logger.log(
            log_level,
            "%s %s trace=%s span=%s parent=%s %.1fms %s%s",
            self.kind,
            self.name,
            self.trace_id,
            self.id,
            self.parent_id or "-",
            duration_ms,
            self.metadata,
            f" status={status_message}" if status_message else "",
        )


class LoggingTracer:
    def trace(self, name, user_id=None, metadata=None) -> LoggingSpan:
        meta = dict(metadata or {})
        if user_id:
            meta["user_id"] = user_id
        return LoggingSpan(name, metadata=meta, kind="trace")

    async def flush(self) -> None:
        # Spans are logged as they end; nothing is buffered.
        pass


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_tracer(backend: str) -> Tracer:
    """
    Build the tracer named by settings.tracing_backend.

    Raises:
        ValueError: If the backend name is unknown.
    """
    if backend == "noop":
        return NoopTracer()
    if backend == "logging":
        return LoggingTracer()
    raise ValueError(
        f"Unknown tracing backend '{backend}'. Supported: ['logging', 'noop']"
    )

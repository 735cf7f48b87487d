# packstate/core/tracing.py
from __future__ import annotations
import contextvars
import datetime as dt
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from packstate.core.ids import uuidv7

__all__ = ["TraceSpan", "TraceHub", "Tracer", "getTracer", "getTraceHub"]

JsonDict = dict[str, Any]
TraceListener = Callable[[JsonDict], None]



def _utcNowIso() -> str:
    now = dt.datetime.now(dt.timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")



_spanContextVar: contextvars.ContextVar["TraceSpan | None"] = contextvars.ContextVar(
    "packstate_current_span",
    default=None,
)



_traceContextVar: contextvars.ContextVar[JsonDict] = contextvars.ContextVar(
    "packstate_trace_context",
    default={},
)



@dataclass
class TraceSpan:
    traceId: str
    spanId: str
    parentSpanId: str | None
    spanName: str
    context: JsonDict = field(default_factory=dict)
    startTime: float = field(
        default_factory=lambda: dt.datetime.now(dt.timezone.utc).timestamp()
    )



class TraceHub:
    """
    In-memory ring buffer + synchronous listeners.

    - emit(record): append to buffer, fan out to listeners
    - snapshot(): copy of the buffer
    - subscribe(fn): returns an unsubscribe callable
    """
    def __init__(self, capacity: int = 5000) -> None:
        self.capacity = max(1, capacity)
        self._buffer: deque[JsonDict] = deque(maxlen=self.capacity)
        self._listeners: list[TraceListener] = []
        self._lock = threading.Lock()

    def emit(self, record: JsonDict) -> None:
        with self._lock:
            self._buffer.append(record)
            listeners = list(self._listeners)
        for fn in listeners:
            try:
                fn(record)
            except Exception:
                # Listeners must not break tracing
                pass

    def snapshot(self) -> list[JsonDict]:
        with self._lock:
            return list(self._buffer)

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    def subscribe(self, fn: TraceListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(fn)
        def _unsub() -> None:
            with self._lock:
                try:
                    self._listeners.remove(fn)
                except ValueError:
                    pass
        return _unsub



class Tracer:
    """
    Core tracer implementation.

    - Uses contextvars to track current span + trace context.
    - Emits JSON-serializable dicts to TraceHub.
    - Never raises out of emit().
    """

    def __init__(self, hub: TraceHub | None = None, *, enabled: bool = True) -> None:
        self.hub = hub or TraceHub()
        # debug.tracingEnabled; spans still nest while disabled, nothing is recorded
        self.enabled = enabled
        self._seq = 0
        self._seqLock = threading.Lock()

    # ----- Context / Bookkeeping -----

    def _nextSeq(self) -> int:
        with self._seqLock:
            self._seq += 1
            return self._seq

    def _currentSpan(self) -> TraceSpan | None:
        return _spanContextVar.get(None)

    def _currentContext(self) -> JsonDict:
        # Always clone so callers cannot mutate shared dict.
        return dict(_traceContextVar.get({}))

    def updateTraceContext(self, values: JsonDict) -> None:
        """Merge values into the ambient trace context for this task."""
        current = self._currentContext()
        current.update(values)
        _traceContextVar.set(current)

    def _buildBaseRecord(
        self,
        recordType: str,
        span: TraceSpan | None,
        level: str,
        tags: list[str] | None,
        attrs: JsonDict | None = None,
    ) -> JsonDict:
        ctx = self._currentContext()
        if span is not None:
            ctx = {**ctx, **span.context}
        ctx.pop("_ctxToken", None)
        ctx.pop("_ended", None)

        record: JsonDict = {
            "recordType": recordType,
            "time": _utcNowIso(),
            "seq": self._nextSeq(),
            "traceId": span.traceId if span is not None else ctx.get("traceId", ""),
            "spanId": span.spanId if span is not None else ctx.get("spanId", ""),
            "level": level,
            "tags": tags or [],
            "attrs": {**ctx, **(attrs or {})},
        }

        # Copy known context keys to top-level for easy filtering.
        for key in ("batchId", "operation", "packageName", "groupKey"):
            if key in ctx:
                record[key] = ctx[key]

        return record

    # ----- Spans -----

    def startSpan(
        self,
        spanName: str,
        attrs: JsonDict | None = None,
        level: str = "info",
        tags: list[str] | None = None,
        contextOverrides: JsonDict | None = None,
    ) -> TraceSpan:
        """Start a span, set it as current for this task, and emit spanStart."""
        parent = self._currentSpan()
        baseCtx = self._currentContext()
        if parent is not None:
            baseCtx.setdefault("traceId", parent.traceId)
        if contextOverrides:
            baseCtx.update(contextOverrides)

        traceId = baseCtx.get("traceId") or uuidv7(prefix="trace_")
        spanId = uuidv7(prefix="span_")
        spanCtx = {**baseCtx, "traceId": traceId, "spanId": spanId}

        span = TraceSpan(
            traceId=traceId,
            spanId=spanId,
            parentSpanId=parent.spanId if parent is not None else None,
            spanName=spanName,
            context=spanCtx,
        )

        token = _spanContextVar.set(span)
        span.context["_ctxToken"] = token

        record = self._buildBaseRecord("spanStart", span, level, tags, attrs)
        record["spanName"] = spanName
        record["parentSpanId"] = span.parentSpanId
        record["status"] = None

        self._emit(record)
        return span

    def endSpan(
        self,
        span: TraceSpan,
        status: str = "ok",
        *,
        level: str = "info",
        tags: list[str] | None = None,
        errorType: str | None = None,
        errorMessage: str | None = None,
        attrs: JsonDict | None = None,
    ) -> None:
        """End a span, restore previous current span, and emit spanEnd."""
        if span.context.get("_ended") is True:
            return
        span.context["_ended"] = True

        token = span.context.get("_ctxToken")
        if token is not None:
            try:
                _spanContextVar.reset(token)
            except Exception:
                # Token from another context (span ended in a different task)
                pass

        attrs = dict(attrs or {})
        durationMs = (dt.datetime.now(dt.timezone.utc).timestamp() - span.startTime) * 1000.0
        attrs.setdefault("durationMs", durationMs)

        record = self._buildBaseRecord("spanEnd", span, level, tags, attrs)
        record["spanName"] = span.spanName
        record["status"] = status
        record["errorType"] = errorType
        record["errorMessage"] = errorMessage

        self._emit(record)

    # ----- Events -----

    def traceEvent(
        self,
        eventName: str,
        attrs: JsonDict | None = None,
        *,
        level: str = "debug",
        tags: list[str] | None = None,
        span: TraceSpan | None = None,
    ) -> None:
        """Emit an event attached to the given span or current span."""
        if span is None:
            span = self._currentSpan()

        record = self._buildBaseRecord("event", span, level, tags, attrs)
        record["eventName"] = eventName

        self._emit(record)

    # ----- Low level -----

    def _emit(self, record: JsonDict) -> None:
        if not self.enabled:
            return
        try:
            self.hub.emit(record)
        except Exception:
            # Tracing must not crash
            pass



# Global tracer + hub singletons for now.
_globalHub = TraceHub()
_globalTracer = Tracer(_globalHub)



def getTraceHub() -> TraceHub:
    return _globalHub

def getTracer() -> Tracer:
    return _globalTracer

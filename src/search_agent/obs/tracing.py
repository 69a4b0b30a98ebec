"""Per-request tracing and aggregate pipeline metrics."""

from __future__ import annotations

import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone

from search_agent.types import ToolTrace


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    domain: str
    question: str
    tool_traces: list[ToolTrace]
    final_state: str
    fallback_used: bool
    latency_ms: float
    output_chars: int


class TraceStore:
    """Bounded in-memory trace storage for API-level observability."""

    def __init__(self, *, max_records: int = 1000) -> None:
        self._records: OrderedDict[str, TraceRecord] = OrderedDict()
        self._max_records = max_records

    def create_record(
        self,
        *,
        domain: str,
        question: str,
        tool_traces: list[ToolTrace],
        final_state: str,
        fallback_used: bool,
        latency_ms: float,
        output_chars: int,
    ) -> TraceRecord:
        record = TraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            domain=domain,
            question=question,
            tool_traces=list(tool_traces),
            final_state=final_state,
            fallback_used=fallback_used,
            latency_ms=latency_ms,
            output_chars=output_chars,
        )
        self._records[record.trace_id] = record
        while len(self._records) > self._max_records:
            self._records.popitem(last=False)
        return record

    def get(self, trace_id: str) -> TraceRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        if limit <= 0:
            return []
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate request metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "fallback_rate": 0.0,
                "total_tool_calls": 0,
                "total_tool_errors": 0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        tool_traces = [trace for record in records for trace in record.tool_traces]

        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "fallback_rate": sum(1 for record in records if record.fallback_used) / total,
            "total_tool_calls": len(tool_traces),
            "total_tool_errors": sum(1 for trace in tool_traces if trace.error),
        }


class Timer:
    """Simple context timer used by the orchestrator and tool registry."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0

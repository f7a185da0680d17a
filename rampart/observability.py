"""
Observability for Rampart.

Structured logging, run auditing and metrics for orchestration runs.

Design Philosophy:
- Structured logging by default (JSON-formatted, on top of ``logging``)
- Audit trail for compliance reviews: every run, successful or not
- Metrics collected in-process; export is the host's business
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from rampart.synthesis.context import RunContext
    from rampart.synthesis.result import SynthesisResult

logger = logging.getLogger(__name__)


# =============================================================================
# Log Levels
# =============================================================================


class LogLevel(Enum):
    """Standard log levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


# =============================================================================
# Structured Logger Protocol
# =============================================================================


class StructuredLogger(Protocol):
    """
    Protocol for structured logging implementations.

    Structured loggers emit logs as key-value pairs rather than
    plain strings, enabling better searchability and analysis.
    """

    def debug(self, message: str, **context: Any) -> None:
        ...

    def info(self, message: str, **context: Any) -> None:
        ...

    def warning(self, message: str, **context: Any) -> None:
        ...

    def error(self, message: str, **context: Any) -> None:
        ...


# =============================================================================
# JSON Logger Implementation
# =============================================================================


@dataclass
class JSONLogger:
    """
    Structured logger that outputs JSON-formatted logs.

    Each log entry includes:
    - timestamp (ISO 8601)
    - level
    - message
    - context fields
    - optional run_id for correlation

    Example output:
        {"timestamp": "2026-01-02T10:30:00+00:00", "level": "info",
         "message": "Phase completed", "run_id": "abc-123",
         "phase": "binding", "duration_ms": 1.84}
    """

    name: str = "rampart"
    run_id: str | None = None
    extra_context: dict[str, Any] = field(default_factory=dict)
    _python_logger: logging.Logger | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        self._python_logger = logging.getLogger(self.name)

    def _log(self, level: LogLevel, message: str, context: dict[str, Any]) -> None:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level.value,
            "message": message,
            **self.extra_context,
            **context,
        }

        if self.run_id:
            record["run_id"] = self.run_id

        json_str = json.dumps(record, default=str)
        log_method = getattr(self._python_logger, level.value)
        log_method(json_str)

    def debug(self, message: str, **context: Any) -> None:
        self._log(LogLevel.DEBUG, message, context)

    def info(self, message: str, **context: Any) -> None:
        self._log(LogLevel.INFO, message, context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(LogLevel.WARNING, message, context)

    def error(self, message: str, **context: Any) -> None:
        self._log(LogLevel.ERROR, message, context)

    def with_context(self, **extra: Any) -> JSONLogger:
        """Create a new logger with additional context."""
        return JSONLogger(
            name=self.name,
            run_id=self.run_id,
            extra_context={**self.extra_context, **extra},
        )


# =============================================================================
# Run Logger
# =============================================================================


@dataclass
class RunLogger:
    """
    Specialized logger for orchestration runs.

    Example:
        log = RunLogger(run_id="abc-123", service="orders")
        log.run_started(environment="dev", framework="baseline", components=["api", "jobs"])
        log.phase_started("instantiating")
        log.phase_completed("instantiating", duration_ms=3.2)
        log.run_completed(duration_ms=12.5, components=2, bindings=1, patches_applied=False)
    """

    run_id: str
    service: str = ""
    inner: StructuredLogger = field(default_factory=JSONLogger)

    def __post_init__(self) -> None:
        if isinstance(self.inner, JSONLogger):
            self.inner = JSONLogger(
                name="rampart.synthesis",
                run_id=self.run_id,
                extra_context={"service": self.service} if self.service else {},
            )

    # Run lifecycle
    def run_started(self, environment: str, framework: str, components: list[str]) -> None:
        self.inner.info(
            "Run started",
            environment=environment,
            framework=framework,
            components=components,
            component_count=len(components),
        )

    def run_completed(
        self,
        duration_ms: float,
        components: int,
        bindings: int,
        patches_applied: bool,
        warnings: int = 0,
    ) -> None:
        self.inner.info(
            "Run completed",
            success=True,
            duration_ms=round(duration_ms, 2),
            components=components,
            bindings=bindings,
            patches_applied=patches_applied,
            warnings=warnings,
        )

    def run_failed(
        self,
        duration_ms: float,
        phase: str | None,
        error: str,
        error_type: str,
        component: str | None = None,
    ) -> None:
        self.inner.error(
            "Run failed",
            success=False,
            duration_ms=round(duration_ms, 2),
            phase=phase,
            error=error,
            error_type=error_type,
            component=component,
        )

    # Phase lifecycle
    def phase_started(self, phase: str) -> None:
        self.inner.debug("Phase started", phase=phase)

    def phase_completed(self, phase: str, duration_ms: float) -> None:
        self.inner.debug("Phase completed", phase=phase, duration_ms=round(duration_ms, 2))

    # Bindings
    def binding_applied(self, source: str, target: str, capability: str, strategy: str) -> None:
        self.inner.debug(
            "Binding applied",
            source=source,
            target=target,
            capability=capability,
            strategy=strategy,
        )

    def warning(self, message: str) -> None:
        self.inner.warning("Run warning", warning=message)


# =============================================================================
# Audit Entry
# =============================================================================


@dataclass
class SynthesisAuditEntry:
    """
    Audit log entry for an orchestration run.

    Captures what was synthesized, under which framework and environment,
    and how configuration was resolved (fingerprints per component).
    """

    # Identification
    run_id: str
    timestamp: datetime

    # Run info
    service: str
    environment: str
    framework: str
    components: list[str]

    # Execution details
    status: str  # "completed", "failed", "cancelled"
    duration_ms: float | None = None
    success: bool | None = None
    error: str | None = None
    error_kind: str | None = None
    failed_phase: str | None = None

    # Outcome
    bindings: list[dict[str, Any]] = field(default_factory=list)
    patches_applied: bool = False
    config_fingerprints: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    # Timing breakdown
    phase_timings: dict[str, float] = field(default_factory=dict)

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "timestamp": self.timestamp.isoformat(),
            "service": self.service,
            "environment": self.environment,
            "framework": self.framework,
            "components": self.components,
            "status": self.status,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "error_kind": self.error_kind,
            "failed_phase": self.failed_phase,
            "bindings": self.bindings,
            "patches_applied": self.patches_applied,
            "config_fingerprints": self.config_fingerprints,
            "warnings": self.warnings,
            "phase_timings": self.phase_timings,
            "metadata": self.metadata,
        }


# =============================================================================
# Audit Repository Protocol
# =============================================================================


class AuditRepository(Protocol):
    """
    Protocol for persisting audit entries.

    Implementations can store to a database, a file, or memory (testing).
    """

    async def save(self, entry: SynthesisAuditEntry) -> None:
        ...

    async def find_by_run_id(self, run_id: str) -> SynthesisAuditEntry | None:
        ...

    async def find_by_service(self, service: str) -> list[SynthesisAuditEntry]:
        ...


@dataclass
class InMemoryAuditRepository:
    """
    In-memory audit repository for testing.

    Not suitable for production use.
    """

    entries: list[SynthesisAuditEntry] = field(default_factory=list)
    max_entries: int = 1000

    async def save(self, entry: SynthesisAuditEntry) -> None:
        self.entries.append(entry)

        if len(self.entries) > self.max_entries:
            self.entries = self.entries[-self.max_entries :]

    async def find_by_run_id(self, run_id: str) -> SynthesisAuditEntry | None:
        for entry in reversed(self.entries):
            if entry.run_id == run_id:
                return entry
        return None

    async def find_by_service(self, service: str) -> list[SynthesisAuditEntry]:
        return [e for e in self.entries if e.service == service]

    def clear(self) -> None:
        self.entries.clear()


def create_audit_entry(
    ctx: RunContext,
    status: str,
    result: SynthesisResult | None = None,
    error: BaseException | None = None,
) -> SynthesisAuditEntry:
    """Create an audit entry from a run context (and its result, if any)."""
    error_kind = None
    if error is not None:
        kind = getattr(error, "kind", None)
        error_kind = kind.value if kind is not None else type(error).__name__

    return SynthesisAuditEntry(
        run_id=ctx.run_id,
        timestamp=ctx.started_at,
        service=ctx.manifest.service,
        environment=ctx.environment,
        framework=ctx.framework,
        components=ctx.manifest.component_names,
        status=status,
        duration_ms=result.timing.total_ms if result is not None else ctx.elapsed_ms,
        success=result is not None,
        error=str(error) if error is not None else None,
        error_kind=error_kind,
        failed_phase=ctx.failed_phase,
        bindings=[b.to_dict() for b in ctx.bindings],
        patches_applied=ctx.patches_applied,
        config_fingerprints={name: inst.config.fingerprint() for name, inst in ctx.instances.items()},
        warnings=list(ctx.warnings),
        phase_timings=dict(ctx.phase_timings),
        metadata={"owner": ctx.manifest.owner, "tags": dict(ctx.manifest.tags)},
    )


# =============================================================================
# Metrics
# =============================================================================


@dataclass
class SynthesisMetrics:
    """
    Orchestration metrics.

    Tracks:
    - Run counts (success, failed, cancelled)
    - Run duration histogram
    - Per-phase duration histograms
    - Failures by error kind
    """

    # Counters
    runs_total: int = 0
    runs_success: int = 0
    runs_failed: int = 0
    runs_cancelled: int = 0
    components_synthesized: int = 0
    bindings_applied: int = 0
    failures_by_kind: dict[str, int] = field(default_factory=dict)

    # Histograms (simplified as lists)
    run_durations_ms: list[float] = field(default_factory=list)
    phase_durations_ms: dict[str, list[float]] = field(default_factory=dict)

    max_histogram_entries: int = 1000

    def record_run(
        self,
        success: bool,
        duration_ms: float,
        *,
        components: int = 0,
        bindings: int = 0,
        cancelled: bool = False,
        error_kind: str | None = None,
    ) -> None:
        """Record a finished run."""
        self.runs_total += 1
        if success:
            self.runs_success += 1
            self.components_synthesized += components
            self.bindings_applied += bindings
        elif cancelled:
            self.runs_cancelled += 1
        else:
            self.runs_failed += 1
            if error_kind:
                self.failures_by_kind[error_kind] = self.failures_by_kind.get(error_kind, 0) + 1

        self.run_durations_ms.append(duration_ms)
        self._trim_histogram(self.run_durations_ms)

    def record_phase(self, phase: str, duration_ms: float) -> None:
        """Record one phase's duration."""
        histogram = self.phase_durations_ms.setdefault(phase, [])
        histogram.append(duration_ms)
        self._trim_histogram(histogram)

    def _trim_histogram(self, histogram: list[float]) -> None:
        if len(histogram) > self.max_histogram_entries:
            del histogram[: len(histogram) - self.max_histogram_entries]

    def get_stats(self) -> dict[str, Any]:
        """Get summary statistics."""

        def percentile(data: list[float], p: float) -> float | None:
            if not data:
                return None
            sorted_data = sorted(data)
            k = (len(sorted_data) - 1) * p
            f = int(k)
            c = f + 1 if f + 1 < len(sorted_data) else f
            return sorted_data[f] + (k - f) * (sorted_data[c] - sorted_data[f])

        return {
            "runs": {
                "total": self.runs_total,
                "success": self.runs_success,
                "failed": self.runs_failed,
                "cancelled": self.runs_cancelled,
                "success_rate": (self.runs_success / self.runs_total if self.runs_total > 0 else None),
            },
            "duration_ms": {
                "p50": percentile(self.run_durations_ms, 0.5),
                "p95": percentile(self.run_durations_ms, 0.95),
                "p99": percentile(self.run_durations_ms, 0.99),
            },
            "phases_ms": {
                phase: {"p50": percentile(values, 0.5), "p95": percentile(values, 0.95)}
                for phase, values in self.phase_durations_ms.items()
            },
            "components_synthesized": self.components_synthesized,
            "bindings_applied": self.bindings_applied,
            "failures_by_kind": dict(self.failures_by_kind),
        }

    def reset(self) -> None:
        """Reset all metrics."""
        self.runs_total = 0
        self.runs_success = 0
        self.runs_failed = 0
        self.runs_cancelled = 0
        self.components_synthesized = 0
        self.bindings_applied = 0
        self.failures_by_kind.clear()
        self.run_durations_ms.clear()
        self.phase_durations_ms.clear()


__all__ = [
    # Logging
    "LogLevel",
    "StructuredLogger",
    "JSONLogger",
    "RunLogger",
    # Audit
    "SynthesisAuditEntry",
    "AuditRepository",
    "InMemoryAuditRepository",
    "create_audit_entry",
    # Metrics
    "SynthesisMetrics",
]

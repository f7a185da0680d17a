"""
Run Context for Rampart.

The run context holds all state of one orchestration run: the state
machine, the component instances, the applied bindings, warnings and
phase timings. It is created per run and never shared between runs.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

if TYPE_CHECKING:
    from rampart.bindings.base import BindingResult
    from rampart.components.base import ComponentContext, ComponentInstance
    from rampart.schemas import Manifest


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RunState(str, Enum):
    """Run-scoped state machine."""

    IDLE = "idle"
    INSTANTIATING = "instantiating"
    SYNTHESIZING = "synthesizing"
    BINDING = "binding"
    PATCHING = "patching"
    ASSEMBLED = "assembled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.ASSEMBLED, RunState.FAILED)


_NEXT_STATE: dict[RunState, RunState] = {
    RunState.IDLE: RunState.INSTANTIATING,
    RunState.INSTANTIATING: RunState.SYNTHESIZING,
    RunState.SYNTHESIZING: RunState.BINDING,
    RunState.BINDING: RunState.PATCHING,
    RunState.PATCHING: RunState.ASSEMBLED,
}


class InvalidTransitionError(RuntimeError):
    """Attempted a state transition the run state machine does not allow."""


@dataclass
class RunContext:
    """
    State of one orchestration run.

    Transitions are strictly linear
    (idle -> instantiating -> synthesizing -> binding -> patching -> assembled);
    ``failed`` is reachable from any non-terminal state.
    """

    manifest: Manifest
    environment: str
    run_id: str = field(default_factory=lambda: str(uuid4()))
    started_at: datetime = field(default_factory=_utc_now)

    state: RunState = RunState.IDLE
    component_context: ComponentContext | None = None

    instances: dict[str, ComponentInstance] = field(default_factory=dict)
    bindings: list[BindingResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    patches_applied: bool = False

    phase_timings: dict[str, float] = field(default_factory=dict)
    transitions: list[tuple[str, str]] = field(default_factory=list)
    error: BaseException | None = None
    failed_phase: str | None = None

    _start_counter: float = field(default_factory=time.perf_counter, repr=False)

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since the run started (monotonic)."""
        return (time.perf_counter() - self._start_counter) * 1000

    @property
    def framework(self) -> str:
        return self.manifest.compliance_framework

    def transition(self, new_state: RunState) -> None:
        """
        Move to the next state.

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        if new_state is RunState.FAILED:
            if self.state.is_terminal:
                raise InvalidTransitionError(f"Run {self.run_id} is already {self.state.value}")
        elif _NEXT_STATE.get(self.state) is not new_state:
            raise InvalidTransitionError(
                f"Run {self.run_id}: cannot go from {self.state.value} to {new_state.value}"
            )
        self.transitions.append((self.state.value, new_state.value))
        self.state = new_state

    def fail(self, error: BaseException) -> None:
        """Record the error and move to FAILED."""
        self.failed_phase = self.state.value
        self.error = error
        if not self.state.is_terminal:
            self.transition(RunState.FAILED)

    def record_timing(self, phase: str, duration_ms: float) -> None:
        self.phase_timings[phase] = duration_ms

    def add_instance(self, instance: ComponentInstance) -> None:
        self.instances[instance.name] = instance

    def add_warnings(self, warnings: list[str] | tuple[str, ...]) -> None:
        for warning in warnings:
            if warning not in self.warnings:
                self.warnings.append(warning)

    def run_metadata(self) -> dict[str, Any]:
        """Metadata handed to the patch hook and recorded in audit entries."""
        return {
            "run_id": self.run_id,
            "service": self.manifest.service,
            "owner": self.manifest.owner,
            "environment": self.environment,
            "framework": self.framework,
            "tags": dict(self.manifest.tags),
            "started_at": self.started_at.isoformat(),
            "components": list(self.instances),
        }

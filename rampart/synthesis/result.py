"""
Synthesis Result.

The sole externally consumed output of an orchestration run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from rampart.bindings.base import BindingResult
    from rampart.components.base import ComponentInstance
    from rampart.synthesis.context import RunContext


@dataclass(frozen=True)
class SynthesisTiming:
    """Total and per-phase wall time in milliseconds."""

    total_ms: float
    phases: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_ms": round(self.total_ms, 3),
            "phases": {k: round(v, 3) for k, v in self.phases.items()},
        }


@dataclass(frozen=True)
class SynthesisResult:
    """
    Summary of a successful orchestration run.

    Only ever built once the run reached ``assembled``; failed or
    cancelled runs raise instead.

    Attributes:
        run_id: Run identifier
        service: Service name
        environment: Active environment
        framework: Compliance framework
        components: Instances in declaration order
        bindings: Applied bindings in application order
        patches_applied: Whether a patch hook ran
        timing: Total and per-phase timing
        warnings: Non-fatal issues collected during the run
    """

    run_id: str
    service: str
    environment: str
    framework: str
    components: tuple[ComponentInstance, ...]
    bindings: tuple[BindingResult, ...]
    patches_applied: bool
    timing: SynthesisTiming
    warnings: tuple[str, ...] = ()

    @classmethod
    def from_context(cls, ctx: RunContext) -> SynthesisResult:
        return cls(
            run_id=ctx.run_id,
            service=ctx.manifest.service,
            environment=ctx.environment,
            framework=ctx.framework,
            components=tuple(ctx.instances.values()),
            bindings=tuple(ctx.bindings),
            patches_applied=ctx.patches_applied,
            timing=SynthesisTiming(total_ms=ctx.elapsed_ms, phases=dict(ctx.phase_timings)),
            warnings=tuple(ctx.warnings),
        )

    @property
    def success(self) -> bool:
        return True

    @property
    def component_names(self) -> list[str]:
        return [c.name for c in self.components]

    def get_component(self, name: str) -> ComponentInstance | None:
        for component in self.components:
            if component.name == name:
                return component
        return None

    def bindings_for(self, source: str) -> list[BindingResult]:
        return [b for b in self.bindings if b.source == source]

    def to_dict(self) -> dict[str, Any]:
        """Serialize result for logging/API response."""
        return {
            "run_id": self.run_id,
            "service": self.service,
            "environment": self.environment,
            "framework": self.framework,
            "components": [c.to_dict() for c in self.components],
            "bindings": [b.to_dict() for b in self.bindings],
            "patches_applied": self.patches_applied,
            "timing": self.timing.to_dict(),
            "warnings": list(self.warnings),
        }

    def render_report(self) -> str:
        """Human-readable synthesis report."""
        lines = [
            f"Synthesis report: {self.service} ({self.environment}, framework={self.framework})",
            f"Run: {self.run_id}",
            "",
            f"Components ({len(self.components)}):",
        ]
        for component in self.components:
            lines.append(f"  - {component.name} [{component.type}] via {component.creator}")
            capabilities = list(component.capabilities or {})
            lines.append(f"      capabilities: {', '.join(capabilities) if capabilities else '(none)'}")
            if component.config.layers:
                lines.append(f"      config layers: {', '.join(component.config.layers)}")

        lines.append("")
        lines.append(f"Bindings ({len(self.bindings)}):")
        if not self.bindings:
            lines.append("  (none)")
        for binding in self.bindings:
            lines.append(
                f"  - {binding.source} -> {binding.target} "
                f"{binding.capability} [{binding.access}] via {binding.strategy}"
            )

        lines.append("")
        lines.append(f"Patches applied: {'yes' if self.patches_applied else 'no'}")

        if self.warnings:
            lines.append("")
            lines.append(f"Warnings ({len(self.warnings)}):")
            lines.extend(f"  - {w}" for w in self.warnings)

        lines.append("")
        phases = ", ".join(f"{name}={ms:.1f}ms" for name, ms in self.timing.phases.items())
        lines.append(f"Timing: total={self.timing.total_ms:.1f}ms ({phases})")
        return "\n".join(lines)
